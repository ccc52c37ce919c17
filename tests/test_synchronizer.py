"""
Tests for concept synchronization.
"""

from conceptsync.errors import ConceptNotFoundError, LLMError
from conceptsync.models import KnowledgeDatum, KnowledgeSource, ObjectTag, SyncStatus

from fakes import EngineTestCase, paragraph


NO_TAGS = "**no additional object tag detected**"


class SynchronizerTestCase(EngineTestCase):
    """Shared setup: one note and one concept with unprocessed knowledge."""

    def setUp(self):
        super().setUp()
        self.synchronizer = self.engine.synchronizer
        self.concepts = self.engine.concepts
        self.document_id = self.engine.documents.create_document("Semiconductor Market Notes", [
            paragraph("b1", "TechGlobal powers 85% of premium smartphones."),
            paragraph("b2", "Analysts expect growth."),
        ])
        self.concept_id = self.concepts.create_concept(["TechGlobal"])
        self.kd_id, _ = self.concepts.attach_source(
            self.concept_id, KnowledgeSource(source_id=self.document_id, source_section="b1")
        )


class TestSyncConcept(SynchronizerTestCase):
    """Test syncing a single concept."""

    def test_full_sync(self):
        """Test extraction, taxonomy and description all run before the concept is synced."""
        self.runner.script("knowledge_extraction", "TechGlobal powers 85% of premium smartphones.")
        self.runner.script("tag_proposal", NO_TAGS)
        self.runner.script("concept_description", "A chip designer powering premium smartphones.")

        self.assertEqual(self.synchronizer.sync_concept(self.concept_id), SyncStatus.SYNCED)

        concept = self.concepts.get(self.concept_id)
        self.assertTrue(concept.synced)
        self.assertEqual(concept.description, "A chip designer powering premium smartphones.")

        kd = self.db.get_knowledge_data(self.kd_id)
        self.assertTrue(kd.processed)
        self.assertFalse(kd.updated)
        self.assertEqual(kd.extracted_text, "TechGlobal powers 85% of premium smartphones.")

        extraction = self.runner.calls_to("knowledge_extraction")[0]
        self.assertEqual(extraction["text"], "TechGlobal powers 85% of premium smartphones.")
        description = self.runner.calls_to("concept_description")[0]
        self.assertEqual(description["old_definition"], "None")

    def test_synced_concept_is_a_noop(self):
        """Test re-running on a synced concept calls nothing."""
        self.concepts.update_concept(self.concept_id, synced=True)

        self.assertEqual(self.synchronizer.sync_concept(self.concept_id), SyncStatus.ALREADY_SYNCED)
        self.assertEqual(self.runner.calls, [])

    def test_unchanged_description(self):
        """Test "no change needed" keeps the description."""
        self.concepts.update_concept(self.concept_id, description="A chip designer.")
        self.runner.script("knowledge_extraction", "TechGlobal designs chips.")
        self.runner.script("tag_proposal", NO_TAGS)
        self.runner.script("concept_description", "No change needed")

        self.assertEqual(self.synchronizer.sync_concept(self.concept_id), SyncStatus.SYNCED)
        self.assertEqual(self.concepts.get(self.concept_id).description, "A chip designer.")
        self.assertEqual(
            self.runner.calls_to("concept_description")[0]["old_definition"], "A chip designer."
        )

    def test_failed_extraction_is_retried_next_pass(self):
        """Test a partial sync keeps the flags and a later pass finishes the work."""
        self.runner.script("knowledge_extraction", "")

        self.assertEqual(self.synchronizer.sync_concept(self.concept_id), SyncStatus.PARTIAL)
        self.assertFalse(self.concepts.get(self.concept_id).synced)
        self.assertFalse(self.db.get_knowledge_data(self.kd_id).processed)

        self.runner.script("knowledge_extraction", "TechGlobal designs chips.")
        self.runner.script("tag_proposal", NO_TAGS)
        self.runner.script("concept_description", "A chip designer.")

        self.assertEqual(self.synchronizer.sync_concept(self.concept_id), SyncStatus.SYNCED)

    def test_llm_outage_keeps_processed_knowledge(self):
        """Test only the failed stage is redone after an LLM outage."""
        self.runner.script("knowledge_extraction", "TechGlobal designs chips.")
        self.runner.script("tag_proposal", NO_TAGS, NO_TAGS)
        self.runner.script("concept_description", LLMError("offline"), "A chip designer.")

        self.assertEqual(self.synchronizer.sync_concept(self.concept_id), SyncStatus.PARTIAL)
        kd = self.db.get_knowledge_data(self.kd_id)
        self.assertTrue(kd.processed)
        self.assertTrue(kd.updated)

        self.assertEqual(self.synchronizer.sync_concept(self.concept_id), SyncStatus.SYNCED)
        self.assertEqual(len(self.runner.calls_to("knowledge_extraction")), 1)
        self.assertFalse(self.db.get_knowledge_data(self.kd_id).updated)

    def test_vanished_source_removes_knowledge(self):
        """Test knowledge whose block is gone is removed."""
        self.engine.documents.update_content(self.document_id, [paragraph("b2", "Analysts expect growth.")])

        self.assertEqual(self.synchronizer.sync_concept(self.concept_id), SyncStatus.DELETABLE)
        self.assertIsNone(self.db.get_knowledge_data(self.kd_id))
        self.assertEqual(self.runner.calls, [])

    def test_emptied_source_removes_knowledge(self):
        """Test knowledge whose block was cleared is removed instead of retried forever."""
        self.engine.documents.update_content(self.document_id, [
            paragraph("b1", ""),
            paragraph("b2", "Analysts expect growth."),
        ])

        self.assertEqual(self.synchronizer.sync_concept(self.concept_id), SyncStatus.DELETABLE)
        self.assertIsNone(self.db.get_knowledge_data(self.kd_id))
        self.assertEqual(self.runner.calls, [])

    def test_unsupported_source_is_partial(self):
        """Test knowledge from an unknown source type cannot be processed."""
        self.db.add_knowledge_data(KnowledgeDatum(
            id="kd-url", user_id="tester", concept_id=self.concept_id,
            source_type="url", source_id="https://example.com"
        ))
        self.runner.script("knowledge_extraction", "TechGlobal designs chips.")
        self.runner.script("tag_proposal", NO_TAGS)
        self.runner.script("concept_description", "A chip designer.")

        self.assertEqual(self.synchronizer.sync_concept(self.concept_id), SyncStatus.PARTIAL)
        self.assertFalse(self.concepts.get(self.concept_id).synced)
        self.assertFalse(self.db.get_knowledge_data("kd-url").processed)

    def test_concept_without_knowledge(self):
        """Test empty concepts are hidden when they are parents, deletable otherwise."""
        parent_id = self.concepts.create_concept(["Company"])
        self.db.insert_object_tag(ObjectTag(
            id="tag-1", user_id="tester", concept_id=self.concept_id, object_concept_id=parent_id,
            template_id="tpl", object_name="Chip Designer"
        ))
        lonely_id = self.concepts.create_concept(["Verdantis"])

        self.assertEqual(self.synchronizer.sync_concept(parent_id), SyncStatus.HIDDEN)
        parent = self.concepts.get(parent_id)
        self.assertTrue(parent.hidden)
        self.assertTrue(parent.synced)

        self.assertEqual(self.synchronizer.sync_concept(lonely_id), SyncStatus.DELETABLE)
        self.assertIsNotNone(self.concepts.find(lonely_id))

    def test_missing_concept(self):
        """Test syncing an unknown concept fails fast."""
        with self.assertRaises(ConceptNotFoundError):
            self.synchronizer.sync_concept("missing")


class TestSyncAllConcepts(SynchronizerTestCase):
    """Test the batch sync loop."""

    settings_overrides = {"delete_orphans": True}

    def test_sync_all(self):
        """Test every unsynced concept is synced and orphans are deleted."""
        lonely_id = self.concepts.create_concept(["Verdantis"])
        self.runner.script("knowledge_extraction", "TechGlobal designs chips.")
        self.runner.script("tag_proposal", NO_TAGS)
        self.runner.script("concept_description", "A chip designer.")

        results = self.synchronizer.sync_all_concepts()

        self.assertEqual(results, {self.concept_id: SyncStatus.SYNCED, lonely_id: SyncStatus.DELETABLE})
        self.assertIsNone(self.concepts.find(lonely_id))

    def test_failures_do_not_stop_the_loop(self):
        """Test one failing concept leaves the others synced."""
        other_id = self.concepts.create_concept(["Verdantis"])
        self.concepts.attach_source(other_id, KnowledgeSource(source_id=self.document_id, source_section="b2"))

        def extraction(concept_name, **_):
            if concept_name == "TechGlobal":
                raise RuntimeError("unexpected")
            return "Verdantis is mentioned by analysts."

        self.runner.set_default("knowledge_extraction", extraction)
        self.runner.script("tag_proposal", NO_TAGS)
        self.runner.script("concept_description", "An island nation.")

        results = self.synchronizer.sync_all_concepts()

        self.assertEqual(results[self.concept_id], SyncStatus.PARTIAL)
        self.assertEqual(results[other_id], SyncStatus.SYNCED)
