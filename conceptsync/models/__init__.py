"""Data models for ConceptSync."""

from .documents import (
    InlineContent, Block, Document, LedgerEntry,
    INLINE_TEXT, INLINE_LINK, INLINE_CONCEPT, DOC_TYPE_NOTE, DOC_TYPE_CONCEPT
)
from .graph import (
    EmbeddingType, Concept, KnowledgeDatum, ObjectTemplate, PropertyTemplate,
    ObjectTag, ObjectTagProperty, VectorEmbedding, VectorHit, Reference,
    KnowledgeSource, SOURCE_DOCUMENT, AUTOSYNC_DEFAULT, AUTOSYNC_MANUAL
)
from .results import (
    EntityCandidate, TagProposal, PropertyVerdict, PropertyVerdictKind,
    ResolvedConcept, SyncStatus, InspectionReport
)

__all__ = [
    "InlineContent",
    "Block",
    "Document",
    "LedgerEntry",
    "INLINE_TEXT",
    "INLINE_LINK",
    "INLINE_CONCEPT",
    "DOC_TYPE_NOTE",
    "DOC_TYPE_CONCEPT",
    "EmbeddingType",
    "Concept",
    "KnowledgeDatum",
    "ObjectTemplate",
    "PropertyTemplate",
    "ObjectTag",
    "ObjectTagProperty",
    "VectorEmbedding",
    "VectorHit",
    "Reference",
    "KnowledgeSource",
    "SOURCE_DOCUMENT",
    "AUTOSYNC_DEFAULT",
    "AUTOSYNC_MANUAL",
    "EntityCandidate",
    "TagProposal",
    "PropertyVerdict",
    "PropertyVerdictKind",
    "ResolvedConcept",
    "SyncStatus",
    "InspectionReport"
]
