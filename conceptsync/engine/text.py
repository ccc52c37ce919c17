"""
Block text extraction for ConceptSync.

Flattens editor blocks into the plain text the agents read. Links and concept
mentions stay visible to the model as inline markers.
"""

import re
from typing import Iterator, List, Optional

from ..models import Block, InlineContent, INLINE_TEXT, INLINE_LINK, INLINE_CONCEPT


_EDGE_PUNCTUATION = re.compile(r"^[\W_]+|[\W_]+$")


def inline_to_text(item: InlineContent) -> str:
    """Render one inline item, or an empty string for unknown item types."""
    if item.type == INLINE_TEXT:
        return item.text or ""
    if item.type == INLINE_LINK:
        return f"<LINK>{item.href or item.text or ''}</LINK>"
    if item.type == INLINE_CONCEPT:
        return f"<CONCEPT>{item.alias or ''}</CONCEPT>"
    return ""


def block_to_text(block: Block) -> str:
    """
    Flatten the inline content of a block into plain text.

    Children are not included; each nested block is inspected on its own.

    Args:
        block: The block to flatten

    Returns:
        The block text with <LINK> and <CONCEPT> markers
    """
    return "".join(inline_to_text(item) for item in block.content)


def iter_blocks(blocks: List[Block]) -> Iterator[Block]:
    """Walk a block tree in pre-order."""
    for block in blocks:
        yield block
        yield from iter_blocks(block.children)


def find_block(blocks: List[Block], block_id: str) -> Optional[Block]:
    """Find a block anywhere in a block tree."""
    for block in iter_blocks(blocks):
        if block.id == block_id:
            return block
    return None


def blocks_up_to(blocks: List[Block], block_id: str) -> List[Block]:
    """
    Return the blocks in pre-order up to and including the target block.

    An unknown block id yields every block.
    """
    result = []
    for block in iter_blocks(blocks):
        result.append(block)
        if block.id == block_id:
            break
    return result


def build_context(title: str, blocks: List[Block], block_id: str) -> str:
    """Build the running context used to guess which entity types matter."""
    lines = [block_to_text(block) for block in blocks_up_to(blocks, block_id)]
    return f"Title: {title}\n\n" + "\n".join(line for line in lines if line)


def clean_embedding_text(text: Optional[str]) -> str:
    """Trim whitespace and leading/trailing non-alphanumerics before embedding."""
    return _EDGE_PUNCTUATION.sub("", (text or "").strip())


def concept_mentions(block: Block) -> List[str]:
    """Concept ids explicitly mentioned in a block, in order and without repeats."""
    mentions: List[str] = []
    for item in block.content:
        if item.type == INLINE_CONCEPT and item.concept_id and item.concept_id not in mentions:
            mentions.append(item.concept_id)
    return mentions
