"""
Document data models for ConceptSync.

Documents are stored as an ordered tree of editor blocks. Each block carries a
list of typed inline items; the inspection ledger keeps one entry per block
recording what still has to be mined or cleaned up.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


INLINE_TEXT = "text"
INLINE_LINK = "link"
INLINE_CONCEPT = "conceptKeyword"

DOC_TYPE_NOTE = "note"
DOC_TYPE_CONCEPT = "concept"


class InlineContent(BaseModel):
    """
    A single run of inline content inside a block.
    """

    type: str = Field(
        default=INLINE_TEXT,
        description="One of 'text', 'link' or 'conceptKeyword'"
    )

    text: Optional[str] = Field(
        default=None,
        description="Literal text for 'text' items and the label of 'link' items"
    )

    href: Optional[str] = Field(
        default=None,
        description="Target of a 'link' item"
    )

    alias: Optional[str] = Field(
        default=None,
        description="Alias shown for a 'conceptKeyword' item"
    )

    concept_id: Optional[str] = Field(
        default=None,
        description="Concept referenced by a 'conceptKeyword' item"
    )


class Block(BaseModel):
    """
    An editor block: typed inline content plus nested child blocks.
    """

    id: str = Field(
        ...,
        description="Stable block identifier assigned by the editor"
    )

    type: str = Field(
        default="paragraph",
        description="Editor block type (paragraph, heading, bulletListItem, ...)"
    )

    content: List[InlineContent] = Field(
        default_factory=list,
        description="Inline content of this block, excluding its children"
    )

    children: List['Block'] = Field(
        default_factory=list,
        description="Nested blocks, each with its own ledger entry"
    )


Block.model_rebuild()


class Document(BaseModel):
    """
    A user document and its document-level inspection state.
    """

    id: str = Field(..., description="Document identifier")

    user_id: str = Field(..., description="Owning user")

    title: str = Field(default="Untitled", description="Document title")

    doc_type: str = Field(
        default=DOC_TYPE_NOTE,
        description="'note' for user documents, 'concept' for a concept's root page"
    )

    blocks: List[Block] = Field(
        default_factory=list,
        description="Ordered block tree"
    )

    is_archived: bool = Field(default=False)

    is_published: bool = Field(default=False)

    concept_id: Optional[str] = Field(
        default=None,
        description="Concept summarized by this page when doc_type is 'concept'"
    )

    inspect_in_progress: bool = Field(
        default=False,
        description="Set while an inspection pass holds the document"
    )

    mentioned_concepts: List[str] = Field(
        default_factory=list,
        description="Every concept mentioned anywhere in the document"
    )


class LedgerEntry(BaseModel):
    """
    Inspection state of one block of one document.
    """

    document_id: str = Field(...)

    block_id: str = Field(...)

    edited: bool = Field(
        default=True,
        description="The block changed since it was last mined"
    )

    to_remove: bool = Field(
        default=False,
        description="The block was deleted from the document"
    )

    concept_synced: bool = Field(
        default=False,
        description="Every concept mentioned by the block has been synced"
    )

    mentioned_concepts: List[str] = Field(default_factory=list)

    references: List[str] = Field(
        default_factory=list,
        description="Reference ids derived from this block"
    )

    content_hash: Optional[str] = Field(
        default=None,
        description="SHA-256 of the block's canonical JSON at the last edit"
    )
