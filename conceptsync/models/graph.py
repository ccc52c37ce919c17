"""
Knowledge-graph data models for ConceptSync.

This module defines concepts, the knowledge data that backs them, the object
tag taxonomy and the vector embeddings used for fuzzy matching.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


SOURCE_DOCUMENT = "document"

AUTOSYNC_DEFAULT = "default"
AUTOSYNC_MANUAL = "manual"


class EmbeddingType(str, Enum):
    """Kinds of text that carry an embedding."""

    CONCEPT_ALIAS = "concept_alias"
    CONCEPT_DESCRIPTION = "concept_description"
    KNOWLEDGE_DATA = "knowledge_data"
    OBJECT_TEMPLATE_NAME = "object_template_name"
    OBJECT_TEMPLATE_DESCRIPTION = "object_template_description"


class Concept(BaseModel):
    """
    A deduplicated named entity of the knowledge graph.
    """

    id: str = Field(...)

    user_id: str = Field(...)

    aliases: List[str] = Field(
        default_factory=list,
        description="Normalized aliases; the first one is the display name"
    )

    alias_string: str = Field(
        default="",
        description="All aliases joined by spaces, used for text search"
    )

    description: Optional[str] = Field(default=None)

    synced: bool = Field(
        default=False,
        description="False while knowledge, taxonomy or description need re-deriving"
    )

    hidden: bool = Field(
        default=False,
        description="The concept has no knowledge but is still a taxonomy parent"
    )

    root_document: Optional[str] = Field(
        default=None,
        description="Auto-created page summarizing the concept"
    )

    @property
    def name(self) -> str:
        """Canonical display name."""
        return self.aliases[0] if self.aliases else ""


class KnowledgeDatum(BaseModel):
    """
    One piece of concept-scoped evidence tied to a source location.
    """

    id: str = Field(...)

    user_id: str = Field(...)

    concept_id: str = Field(...)

    source_type: str = Field(default=SOURCE_DOCUMENT)

    source_id: str = Field(..., description="Document the evidence comes from")

    source_section: str = Field(
        default="",
        description="Block id inside the source document"
    )

    extracted_text: Optional[str] = Field(
        default=None,
        description="Self-contained statements about the concept"
    )

    quotes: List[str] = Field(
        default_factory=list,
        description="Sentences of the source that support the statements"
    )

    processed: bool = Field(
        default=False,
        description="Extraction has run against the current source text"
    )

    updated: bool = Field(
        default=False,
        description="Changed since the last full sync of the concept"
    )


class ObjectTemplate(BaseModel):
    """
    A named table of properties shared by every tag under one parent concept.
    """

    id: str = Field(...)

    user_id: str = Field(...)

    concept_id: str = Field(..., description="Parent concept owning the template")

    template_name: str = Field(...)

    description: Optional[str] = Field(default=None)


class PropertyTemplate(BaseModel):
    """
    One typed column of an object template.
    """

    id: str = Field(...)

    user_id: str = Field(...)

    template_id: str = Field(...)

    name: str = Field(...)

    type: str = Field(default="string")

    autosync: str = Field(default=AUTOSYNC_DEFAULT)

    position: int = Field(default=0)


class ObjectTag(BaseModel):
    """
    "concept_id is an instance of object_concept_id", grouped by a template.
    """

    id: str = Field(...)

    user_id: str = Field(...)

    concept_id: str = Field(..., description="Tagged concept")

    object_concept_id: str = Field(..., description="Parent concept")

    template_id: str = Field(...)

    object_name: str = Field(...)

    object_description: Optional[str] = Field(default=None)

    source_kds: List[str] = Field(
        default_factory=list,
        description="Knowledge data the tag was inferred from"
    )


class ObjectTagProperty(BaseModel):
    """
    The value of one property template for one object tag.
    """

    id: str = Field(...)

    user_id: str = Field(...)

    object_tag_id: str = Field(...)

    concept_id: str = Field(...)

    property_template_id: str = Field(...)

    name: str = Field(...)

    type: str = Field(default="string")

    value: Optional[str] = Field(default=None)

    source_kds: List[str] = Field(default_factory=list)

    autosync: str = Field(
        default=AUTOSYNC_DEFAULT,
        description="'manual' values are never overwritten by the property refresh"
    )


class VectorEmbedding(BaseModel):
    """
    A stored embedding and the entity attribute it was computed from.
    """

    id: str = Field(...)

    user_id: str = Field(...)

    type: EmbeddingType = Field(...)

    source_id: str = Field(...)

    context_id: Optional[str] = Field(default=None)

    file_id: Optional[str] = Field(default=None)

    text: str = Field(default="")

    embedding: List[float] = Field(default_factory=list)


class VectorHit(BaseModel):
    """
    A nearest-neighbour search result.
    """

    embedding_id: str
    source_id: str
    score: float


class Reference(BaseModel):
    """
    A directed edge saying one knowledge datum corroborates or contradicts another.
    """

    id: str = Field(...)

    user_id: str = Field(...)

    source_kd_id: str = Field(...)

    ref_kd_id: str = Field(...)

    description: Optional[str] = Field(default=None)

    affirmation_score: Optional[float] = Field(default=None)


class KnowledgeSource(BaseModel):
    """
    Where a piece of knowledge comes from: a block of a document.
    """

    source_type: str = Field(default=SOURCE_DOCUMENT)

    source_id: str = Field(..., description="Document id")

    source_section: str = Field(default="", description="Block id")
