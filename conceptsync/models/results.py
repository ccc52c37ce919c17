"""
Result models for ConceptSync.

Parsed agent responses and the reports returned by the inspection and
synchronization passes.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class EntityCandidate(BaseModel):
    """
    An entity proposed by the entity extraction agent.
    """

    name: str = Field(..., description="Entity name as written by the model")

    entity_type: str = Field(default="", description="Open-vocabulary entity type")

    description: str = Field(default="", description="Short description of the entity")


class TagProposal(BaseModel):
    """
    An "is-a" classification proposed by the tag proposal agent.
    """

    parent_name: str
    parent_description: str = ""
    tag_name: str
    tag_description: str = ""


class PropertyVerdictKind(str, Enum):
    NEW_VALUE = "new_value"
    SAME_VALUE = "same_value"
    NOT_RELEVANT = "not_relevant"


class PropertyVerdict(BaseModel):
    """
    The agent's answer about one property for one piece of knowledge.
    """

    kind: PropertyVerdictKind
    value: Optional[str] = None


class ResolvedConcept(BaseModel):
    """
    Outcome of the fuzzy dedup procedure for one candidate name.
    """

    concept_id: str
    created: bool = False


class SyncStatus(str, Enum):
    """Outcome of synchronizing one concept."""

    ALREADY_SYNCED = "already_synced"
    SYNCED = "synced"
    HIDDEN = "hidden"
    DELETABLE = "deletable"
    PARTIAL = "partial"


class InspectionReport(BaseModel):
    """
    Summary of one inspection pass over a document.
    """

    document_id: str

    skipped: bool = Field(
        default=False,
        description="Another pass held the document, nothing was done"
    )

    removed_blocks: List[str] = Field(default_factory=list)

    inspected_blocks: List[str] = Field(default_factory=list)

    failed_blocks: List[str] = Field(default_factory=list)

    touched_concepts: List[str] = Field(default_factory=list)

    synced_concepts: List[str] = Field(default_factory=list)

    failed_concepts: List[str] = Field(default_factory=list)
