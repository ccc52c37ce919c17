"""
Tests for block text extraction and the vector index.
"""

import unittest
from unittest.mock import patch

from conceptsync.engine.text import (
    block_to_text, iter_blocks, find_block, build_context, clean_embedding_text, concept_mentions
)
from conceptsync.errors import LLMError
from conceptsync.models import Block, InlineContent, EmbeddingType, INLINE_LINK, INLINE_CONCEPT

from fakes import EngineTestCase, paragraph, tilted, axis, PINNED_MAIN


class TestBlockText(unittest.TestCase):
    """Test flattening blocks into agent-readable text."""

    def setUp(self):
        """Set up a small block tree."""
        self.mixed = Block(id="mixed", content=[
            InlineContent(text="See "),
            InlineContent(type=INLINE_LINK, text="report", href="https://example.com/r"),
            InlineContent(text=" on "),
            InlineContent(type=INLINE_CONCEPT, alias="TechGlobal", concept_id="c1"),
            InlineContent(type="emoji", text=":)"),
            InlineContent(type=INLINE_CONCEPT, alias="TG", concept_id="c1"),
        ])
        self.tree = [
            paragraph("a", "First", children=[paragraph("a1", "Nested")]),
            self.mixed,
            paragraph("b", "Last"),
        ]

    def test_inline_markers(self):
        """Test links and concept mentions are rendered as markers."""
        self.assertEqual(
            block_to_text(self.mixed),
            "See <LINK>https://example.com/r</LINK> on <CONCEPT>TechGlobal</CONCEPT><CONCEPT>TG</CONCEPT>"
        )

    def test_children_are_not_flattened(self):
        """Test a parent block's text excludes its children."""
        self.assertEqual(block_to_text(self.tree[0]), "First")

    def test_pre_order_walk(self):
        """Test walking and searching the block tree."""
        self.assertEqual([block.id for block in iter_blocks(self.tree)], ["a", "a1", "mixed", "b"])
        self.assertEqual(find_block(self.tree, "a1").id, "a1")
        self.assertIsNone(find_block(self.tree, "missing"))

    def test_context_stops_at_current_block(self):
        """Test the running context includes the blocks up to the current one."""
        context = build_context("Notes", self.tree, "a1")

        self.assertEqual(context, "Title: Notes\n\nFirst\nNested")

    def test_concept_mentions(self):
        """Test explicit mentions are deduplicated."""
        self.assertEqual(concept_mentions(self.mixed), ["c1"])
        self.assertEqual(concept_mentions(self.tree[2]), [])

    def test_clean_embedding_text(self):
        """Test trimming edge punctuation before embedding."""
        self.assertEqual(clean_embedding_text("  **TechGlobal!** "), "TechGlobal")
        self.assertEqual(clean_embedding_text("U.S. Fed"), "U.S. Fed")
        self.assertEqual(clean_embedding_text("---"), "")
        self.assertEqual(clean_embedding_text(None), "")


class TestVectorIndex(EngineTestCase):
    """Test the embedding store."""

    def test_upsert_many_batches_and_skips_empty_texts(self):
        """Test one embedding call per batch."""
        vectors = self.engine.vectors

        ids = vectors.upsert_many(["Alpha", "  ", "Beta."], EmbeddingType.CONCEPT_ALIAS, "c1")

        self.assertEqual(len(ids), 2)
        self.assertEqual(self.runner.embed_calls, [["Alpha", "Beta"]])
        stored = self.db.list_embeddings("c1", EmbeddingType.CONCEPT_ALIAS)
        self.assertEqual([embedding.text for embedding in stored], ["Alpha", "Beta"])

        self.assertEqual(vectors.upsert(None, EmbeddingType.CONCEPT_DESCRIPTION, "c1"), [])
        self.assertEqual(len(self.runner.embed_calls), 1)

    def test_search_ranks_by_similarity(self):
        """Test search results are ranked by cosine similarity."""
        vectors = self.engine.vectors
        self.runner.vectors["Query"] = axis(PINNED_MAIN)
        self.runner.vectors["Close"] = tilted(0.8)
        self.runner.vectors["Closer"] = tilted(0.95)

        vectors.upsert("Close", EmbeddingType.CONCEPT_ALIAS, "close")
        vectors.upsert("Closer", EmbeddingType.CONCEPT_ALIAS, "closer")
        vectors.upsert("Elsewhere", EmbeddingType.CONCEPT_ALIAS, "elsewhere")

        hits = vectors.search("Query", EmbeddingType.CONCEPT_ALIAS, limit=2)

        self.assertEqual([hit.source_id for hit in hits], ["closer", "close"])
        self.assertAlmostEqual(hits[0].score, 0.95, places=5)
        self.assertEqual(vectors.search("...", EmbeddingType.CONCEPT_ALIAS), [])

    def test_replace_swaps_embeddings(self):
        """Test replacing the embeddings of one attribute."""
        vectors = self.engine.vectors
        vectors.upsert_many(["Old one", "Old two"], EmbeddingType.CONCEPT_ALIAS, "c1")
        vectors.upsert("Untouched", EmbeddingType.CONCEPT_DESCRIPTION, "c1")

        vectors.replace(["New"], EmbeddingType.CONCEPT_ALIAS, "c1")

        self.assertEqual(
            [e.text for e in self.db.list_embeddings("c1", EmbeddingType.CONCEPT_ALIAS)], ["New"]
        )
        self.assertEqual(len(self.db.list_embeddings("c1", EmbeddingType.CONCEPT_DESCRIPTION)), 1)

    def test_failed_replace_keeps_old_embeddings(self):
        """Test nothing is deleted when the new texts cannot be embedded."""
        vectors = self.engine.vectors
        vectors.upsert("Old one", EmbeddingType.CONCEPT_ALIAS, "c1")

        with patch.object(self.runner, "embed", side_effect=LLMError("Embedding service unavailable")):
            with self.assertRaises(LLMError):
                vectors.replace(["New"], EmbeddingType.CONCEPT_ALIAS, "c1")

        self.assertEqual(
            [e.text for e in self.db.list_embeddings("c1", EmbeddingType.CONCEPT_ALIAS)], ["Old one"]
        )

    def test_delete_missing_is_noop(self):
        """Test deleting embeddings that do not exist."""
        self.assertEqual(self.engine.vectors.delete("nothing", EmbeddingType.KNOWLEDGE_DATA), 0)


if __name__ == '__main__':
    unittest.main()
