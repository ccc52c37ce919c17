"""
Unit tests for core ConceptSync components.

Tests non-AI components like configuration management, database operations,
data models and the agent registry.
"""

import os
import tempfile
import unittest
from pathlib import Path

from conceptsync.config import ConfigManager
from conceptsync.database import DatabaseManager
from conceptsync.errors import AuthorizationError
from conceptsync.models import (
    Block, InlineContent, Document, LedgerEntry, Concept, KnowledgeDatum,
    VectorEmbedding, EmbeddingType, ObjectTag, ObjectTagProperty, INLINE_CONCEPT
)
from conceptsync.agents.registry import AgentRegistry, AgentConfig


class TestConfigManager(unittest.TestCase):
    """Test configuration management functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "test_config.yaml"

    def tearDown(self):
        """Clean up test fixtures."""
        if self.config_path.exists():
            self.config_path.unlink()
        os.rmdir(self.temp_dir)

    def test_config_creation_with_defaults(self):
        """Test config manager falls back to defaults when file missing."""
        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.ollama_host, "http://localhost:11434")
        self.assertEqual(config.model_name, "gemma3")
        self.assertEqual(config.soft_match_threshold, 0.9)
        self.assertEqual(config.match_threshold, 0.5)
        self.assertEqual(config.candidate_limit, 3)
        self.assertEqual(config.description_weight, 0.75)
        self.assertFalse(config.delete_orphans)
        self.assertEqual(config.max_tag_name_length, 50)
        self.assertEqual(config.agent_definitions, {})

    def test_config_loading_from_file(self):
        """Test loading configuration from YAML file."""
        test_config = """
ai:
  ollama_host: "http://test:11434"
  model: "test-model"
  embedding_model: "test-embed"
  timeout: 30.0

concepts:
  soft_match_threshold: 0.95
  delete_orphans: true

taxonomy:
  default_properties:
    - name: "Status"
      type: "string"
"""
        with open(self.config_path, 'w') as f:
            f.write(test_config)

        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.ollama_host, "http://test:11434")
        self.assertEqual(config.model_name, "test-model")
        self.assertEqual(config.embedding_model, "test-embed")
        self.assertEqual(config.ollama_timeout, 30.0)
        self.assertEqual(config.soft_match_threshold, 0.95)
        self.assertTrue(config.delete_orphans)
        self.assertEqual(config.default_properties, [{"name": "Status", "type": "string"}])
        # Values missing from the file fall back to property defaults
        self.assertEqual(config.match_threshold, 0.5)

    def test_dot_notation_access(self):
        """Test accessing config values with dot notation."""
        config = ConfigManager(str(self.config_path))  # Uses defaults

        self.assertEqual(config.get("ai.model"), "gemma3")
        self.assertEqual(config.get("concepts.candidate_limit"), 3)
        self.assertEqual(config.get("nonexistent.key", "default"), "default")

    def test_config_reload(self):
        """Test configuration reloading."""
        with open(self.config_path, 'w') as f:
            f.write("ai:\n  model: 'model1'")

        config = ConfigManager(str(self.config_path))
        self.assertEqual(config.model_name, "model1")

        with open(self.config_path, 'w') as f:
            f.write("ai:\n  model: 'model2'")

        config.reload()
        self.assertEqual(config.model_name, "model2")


class TestDataModels(unittest.TestCase):
    """Test data model validation and functionality."""

    def test_block_with_children(self):
        """Test Block with nested children."""
        child = Block(id="child", content=[InlineContent(text="Child content")])
        parent = Block(id="parent", content=[InlineContent(text="Parent content")], children=[child])

        self.assertEqual(parent.type, "paragraph")
        self.assertEqual(len(parent.children), 1)
        self.assertEqual(parent.children[0].id, "child")

    def test_concept_name_is_first_alias(self):
        """Test the display name of a concept."""
        concept = Concept(id="c1", user_id="u", aliases=["Federal Reserve", "Fed"])
        self.assertEqual(concept.name, "Federal Reserve")
        self.assertEqual(Concept(id="c2", user_id="u").name, "")

    def test_ledger_entry_defaults(self):
        """Test a fresh ledger entry is waiting to be mined."""
        entry = LedgerEntry(document_id="d", block_id="b")

        self.assertTrue(entry.edited)
        self.assertFalse(entry.to_remove)
        self.assertFalse(entry.concept_synced)
        self.assertEqual(entry.mentioned_concepts, [])

    def test_knowledge_datum_defaults(self):
        """Test a new knowledge datum is unprocessed."""
        kd = KnowledgeDatum(id="k", user_id="u", concept_id="c", source_id="d")

        self.assertEqual(kd.source_type, "document")
        self.assertEqual(kd.source_section, "")
        self.assertFalse(kd.processed)
        self.assertFalse(kd.updated)


class TestAgentRegistry(unittest.TestCase):
    """Test agent registry functionality."""

    def setUp(self):
        """Set up test registry."""
        self.registry = AgentRegistry()

    def test_default_agents_registered(self):
        """Test that every engine agent is registered."""
        agents = self.registry.list_agents()

        for name in [
            "knowledge_extraction", "entity_types", "entity_extraction", "concept_match",
            "tag_proposal", "template_selection", "property_value", "concept_description",
            "concept_presence", "knowledge_quotes"
        ]:
            self.assertIn(name, agents)

    def test_system_prompts_describe_grammar(self):
        """Test the system prompts spell out the delimiters and sentinels."""
        extraction = self.registry.get_agent("entity_extraction")
        self.assertIn("{record_delimiter}", extraction.system_prompt)
        self.assertIn("No additional entities identified", extraction.system_prompt)

        tags = self.registry.get_agent("tag_proposal")
        self.assertIn("no additional object tag detected", tags.system_prompt)

    def test_custom_agent_registration(self):
        """Test registering custom agents."""
        custom_config = AgentConfig(
            name="test_agent",
            description="Test agent",
            system_prompt="Test prompt",
            user_prompt_template="Text: {text}"
        )

        self.registry.register_agent(custom_config)

        retrieved = self.registry.get_agent("test_agent")
        self.assertIsNotNone(retrieved)
        if retrieved:  # Type guard for linter
            self.assertEqual(retrieved.name, "test_agent")
            self.assertEqual(retrieved.timeout, 60.0)


class TestDatabaseManager(unittest.TestCase):
    """Test database management functionality."""

    def setUp(self):
        """Set up test database."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "test.db"

    def tearDown(self):
        """Clean up test database."""
        if self.db_path.exists():
            self.db_path.unlink()
        for leftover in Path(self.temp_dir).iterdir():
            leftover.unlink()
        os.rmdir(self.temp_dir)

    def _document(self, db, document_id="doc-1", text="Hello"):
        document = Document(
            id=document_id,
            user_id=db.user_id,
            title="Notes",
            blocks=[Block(id="b1", content=[InlineContent(text=text)])]
        )
        db.insert_document(document)
        return document

    def test_database_initialization(self):
        """Test database creation and table initialization."""
        with DatabaseManager(str(self.db_path), user_id="tester") as db:
            db.initialize_database()
            # Initializing twice is harmless
            db.initialize_database()

            self.assertTrue(self.db_path.exists())
            self.assertIsNotNone(db.connection)

    def test_document_round_trip(self):
        """Test storing and reading back a document with its block tree."""
        with DatabaseManager(str(self.db_path), user_id="tester") as db:
            db.initialize_database()
            self._document(db)

            retrieved = db.get_document("doc-1")
            self.assertIsNotNone(retrieved)
            self.assertEqual(retrieved.blocks[0].content[0].text, "Hello")
            self.assertEqual(db.find_document_by_title("Notes").id, "doc-1")

            db.update_document("doc-1", is_archived=True)
            self.assertEqual(db.list_documents(), [])
            self.assertEqual(len(db.list_documents(include_archived=True)), 1)

    def test_rows_of_other_users_are_rejected(self):
        """Test ownership checks on lookups by id."""
        with DatabaseManager(str(self.db_path), user_id="alice") as db:
            db.initialize_database()
            self._document(db)

        with DatabaseManager(str(self.db_path), user_id="bob") as db:
            with self.assertRaises(AuthorizationError):
                db.get_document("doc-1")
            self.assertEqual(db.list_documents(), [])

    def test_content_hash_ignores_children(self):
        """Test block hashing covers only the block's own content."""
        with DatabaseManager(str(self.db_path), user_id="tester") as db:
            plain = Block(id="b1", content=[InlineContent(text="Same")])
            with_child = Block(
                id="b1",
                content=[InlineContent(text="Same")],
                children=[Block(id="b2", content=[InlineContent(text="Child")])]
            )
            changed = Block(id="b1", content=[InlineContent(text="Different")])

            self.assertEqual(db.calculate_content_hash(plain), db.calculate_content_hash(with_child))
            self.assertNotEqual(db.calculate_content_hash(plain), db.calculate_content_hash(changed))

    def test_ledger_operations(self):
        """Test ledger entries and change detection."""
        with DatabaseManager(str(self.db_path), user_id="tester") as db:
            db.initialize_database()
            block = Block(id="b1", content=[InlineContent(text="Text")])

            self.assertTrue(db.block_needs_processing("doc-1", block))

            db.upsert_ledger_entry(LedgerEntry(
                document_id="doc-1",
                block_id="b1",
                content_hash=db.calculate_content_hash(block)
            ))
            self.assertFalse(db.block_needs_processing("doc-1", block))

            db.update_ledger_entry("doc-1", "b1", edited=False, references=["r1"])
            entry = db.get_ledger_entry("doc-1", "b1")
            self.assertFalse(entry.edited)
            self.assertEqual(entry.references, ["r1"])

            db.delete_ledger_entry("doc-1", "b1")
            self.assertIsNone(db.get_ledger_entry("doc-1", "b1"))

    def test_inspection_guard_is_exclusive(self):
        """Test the inspection guard can only be claimed once."""
        with DatabaseManager(str(self.db_path), user_id="tester") as db:
            db.initialize_database()
            self._document(db)

            self.assertTrue(db.try_begin_inspection("doc-1"))
            self.assertFalse(db.try_begin_inspection("doc-1"))

            db.end_inspection("doc-1")
            self.assertTrue(db.try_begin_inspection("doc-1"))

    def test_knowledge_data_dedup(self):
        """Test one knowledge datum per (concept, source) tuple."""
        with DatabaseManager(str(self.db_path), user_id="tester") as db:
            db.initialize_database()

            first_id, created = db.add_knowledge_data(KnowledgeDatum(
                id="kd-1", user_id="tester", concept_id="c1", source_id="doc-1", source_section="b1"
            ))
            second_id, created_again = db.add_knowledge_data(KnowledgeDatum(
                id="kd-2", user_id="tester", concept_id="c1", source_id="doc-1", source_section="b1"
            ))

            self.assertTrue(created)
            self.assertFalse(created_again)
            self.assertEqual(first_id, second_id)
            self.assertEqual(len(db.list_knowledge_data(concept_id="c1")), 1)

    def test_source_kd_filters(self):
        """Test filtering tags and properties by the knowledge backing them."""
        with DatabaseManager(str(self.db_path), user_id="tester") as db:
            db.initialize_database()
            db.insert_object_tag(ObjectTag(
                id="t1", user_id="tester", concept_id="c1", object_concept_id="p1",
                template_id="tpl", object_name="Chip Maker", source_kds=["kd-10", "kd-2"]
            ))
            db.insert_object_tag_property(ObjectTagProperty(
                id="p1", user_id="tester", object_tag_id="t1", concept_id="c1",
                property_template_id="pt", name="Share", source_kds=["kd-1"]
            ))

            self.assertEqual([t.id for t in db.list_object_tags(source_kd_id="kd-2")], ["t1"])
            # "kd-1" is a substring of "kd-10" but not a source of the tag
            self.assertEqual(db.list_object_tags(source_kd_id="kd-1"), [])
            self.assertEqual([p.id for p in db.list_object_tag_properties(source_kd_id="kd-1")], ["p1"])

    def test_embedding_search(self):
        """Test cosine search is scoped by type and context and ranked by score."""
        with DatabaseManager(str(self.db_path), user_id="tester") as db:
            db.initialize_database()

            def store(embedding_id, source_id, vector, context_id=None):
                db.insert_embedding(VectorEmbedding(
                    id=embedding_id, user_id="tester", type=EmbeddingType.CONCEPT_ALIAS,
                    source_id=source_id, context_id=context_id, embedding=vector
                ))

            store("e1", "close", [1.0, 0.1, 0.0])
            store("e2", "far", [0.0, 1.0, 0.0])
            store("e3", "scoped", [1.0, 0.0, 0.0], context_id="ctx")

            hits = db.search_embeddings([1.0, 0.0, 0.0], EmbeddingType.CONCEPT_ALIAS, limit=3)
            self.assertEqual([hit.source_id for hit in hits], ["scoped", "close", "far"])
            self.assertAlmostEqual(hits[0].score, 1.0, places=6)

            hits = db.search_embeddings([1.0, 0.0, 0.0], EmbeddingType.CONCEPT_ALIAS, context_id="ctx")
            self.assertEqual([hit.source_id for hit in hits], ["scoped"])

            self.assertEqual(
                db.search_embeddings([1.0, 0.0, 0.0], EmbeddingType.CONCEPT_DESCRIPTION), []
            )
            self.assertEqual(
                db.search_embeddings([1.0, 0.0, 0.0], EmbeddingType.CONCEPT_ALIAS, source_ids=[]), []
            )

            self.assertEqual(db.delete_embeddings("close", EmbeddingType.CONCEPT_ALIAS), 1)
            self.assertEqual(db.delete_embeddings("close", EmbeddingType.CONCEPT_ALIAS), 0)

    def test_alias_search(self):
        """Test case-insensitive alias text search."""
        with DatabaseManager(str(self.db_path), user_id="tester") as db:
            db.initialize_database()
            db.insert_concept(Concept(
                id="c1", user_id="tester", aliases=["Federal Reserve", "Fed"],
                alias_string="Federal Reserve Fed"
            ))

            self.assertEqual([c.id for c in db.search_concepts_by_alias("reserve")], ["c1"])
            self.assertEqual(db.search_concepts_by_alias("ecb"), [])

    def test_ai_agent_call_logging(self):
        """Test AI calls are logged and can be reproduced."""
        with DatabaseManager(str(self.db_path), user_id="tester") as db:
            db.initialize_database()

            call_id = db.log_ai_agent_call(
                agent_name="concept_match",
                input_data="{}",
                system_prompt="system",
                user_prompt="user",
                model_name="gemma3",
                raw_response="0",
                parsed_response="0",
                concept_id="c1"
            )

            calls = db.get_ai_agent_calls(agent_name="concept_match")
            self.assertEqual(len(calls), 1)
            self.assertEqual(calls[0]["concept_id"], "c1")

            reproduced = db.reproduce_ai_agent_call(call_id)
            self.assertEqual(reproduced["parsed_response"], "0")
            self.assertEqual(reproduced["user_prompt"], "user")


if __name__ == '__main__':
    unittest.main()
