"""
Tests for the block inspector.
"""

from conceptsync.errors import DocumentNotFoundError
from conceptsync.models import Block, InlineContent, INLINE_CONCEPT

from fakes import EngineTestCase, entities, paragraph


NOTHING = "**No additional entities identified**"


def extract_entities(text, **_):
    if "unreadable" in text:
        return "This block mentions some things."
    records = []
    if "TechGlobal" in text:
        records.append(("TechGlobal", "ORGANIZATION", "A chip designer company"))
    if "Verdantis" in text:
        records.append(("Verdantis", "COUNTRY", "An island nation"))
    return entities(*records) if records else NOTHING


class TestBlockInspector(EngineTestCase):
    """Test inspection passes over documents."""

    def setUp(self):
        super().setUp()
        self.inspector = self.engine.inspector
        self.runner.set_default("entity_types", "[ORGANIZATION, COUNTRY]")
        self.runner.set_default("entity_extraction", extract_entities)
        self.runner.set_default("knowledge_extraction", lambda text, **_: text)
        self.runner.set_default("tag_proposal", "**no additional object tag detected**")
        self.runner.set_default("concept_description", "Known from market notes.")

        self.document_id = self.engine.documents.create_document("Market Notes", [
            paragraph("b1", "TechGlobal powers 85% of premium smartphones."),
            paragraph("b2", "Rates rose in Verdantis."),
        ])

    def _concept_named(self, name):
        return self.engine.concepts.search_concept_alias(name, limit=1)[0]

    def test_inspect_document(self):
        """Test a pass mines edited blocks and syncs the concepts they touch."""
        report = self.inspector.inspect_document(self.document_id)

        self.assertFalse(report.skipped)
        self.assertEqual(report.inspected_blocks, ["b1", "b2"])
        techglobal = self._concept_named("TechGlobal")
        verdantis = self._concept_named("Verdantis")
        self.assertEqual(report.touched_concepts, [techglobal.id, verdantis.id])
        self.assertEqual(report.synced_concepts, [techglobal.id, verdantis.id])

        self.assertTrue(self.engine.concepts.get(techglobal.id).synced)
        kds = self.db.list_knowledge_data(concept_id=techglobal.id)
        self.assertEqual([(kd.source_section, kd.extracted_text) for kd in kds],
                         [("b1", "TechGlobal powers 85% of premium smartphones.")])

        entry = self.db.get_ledger_entry(self.document_id, "b1")
        self.assertFalse(entry.edited)
        self.assertTrue(entry.concept_synced)
        self.assertEqual(entry.mentioned_concepts, [techglobal.id])

        document = self.db.get_document(self.document_id)
        self.assertEqual(document.mentioned_concepts, [techglobal.id, verdantis.id])
        self.assertFalse(document.inspect_in_progress)

    def test_second_pass_is_a_noop(self):
        """Test nothing is mined again when no block changed."""
        self.inspector.inspect_document(self.document_id)
        calls_before = len(self.runner.calls)

        report = self.inspector.inspect_document(self.document_id)

        self.assertEqual(report.inspected_blocks, [])
        self.assertEqual(report.synced_concepts, [])
        self.assertEqual(len(self.runner.calls), calls_before)

    def test_concurrent_pass_is_skipped(self):
        """Test a pass is skipped while another holds the document."""
        self.assertTrue(self.db.try_begin_inspection(self.document_id))

        report = self.inspector.inspect_document(self.document_id)

        self.assertTrue(report.skipped)
        self.assertEqual(self.runner.calls, [])

    def test_unreadable_block_stays_edited(self):
        """Test a block whose entities cannot be read is retried on the next pass."""
        self.engine.documents.update_content(self.document_id, [
            paragraph("b1", "TechGlobal powers 85% of premium smartphones."),
            paragraph("b2", "An unreadable remark."),
        ])

        report = self.inspector.inspect_document(self.document_id)

        self.assertEqual(report.inspected_blocks, ["b1"])
        self.assertEqual(report.failed_blocks, ["b2"])
        self.assertTrue(self.db.get_ledger_entry(self.document_id, "b2").edited)
        self.assertFalse(self.db.get_document(self.document_id).inspect_in_progress)

    def test_removed_block_is_purged(self):
        """Test knowledge of a deleted block is removed on the next pass."""
        self.inspector.inspect_document(self.document_id)
        techglobal = self._concept_named("TechGlobal")

        self.engine.documents.update_content(self.document_id, [paragraph("b2", "Rates rose in Verdantis.")])
        report = self.inspector.inspect_document(self.document_id)

        self.assertEqual(report.removed_blocks, ["b1"])
        self.assertEqual(report.touched_concepts, [techglobal.id])
        self.assertEqual(self.db.list_knowledge_data(concept_id=techglobal.id), [])
        self.assertIsNone(self.db.get_ledger_entry(self.document_id, "b1"))
        self.assertNotIn(techglobal.id, self.db.get_document(self.document_id).mentioned_concepts)

    def test_edited_block_is_reextracted(self):
        """Test editing a block refreshes the knowledge it backs."""
        self.inspector.inspect_document(self.document_id)
        techglobal = self._concept_named("TechGlobal")

        self.engine.documents.update_content(self.document_id, [
            paragraph("b1", "TechGlobal now powers 90% of premium smartphones."),
            paragraph("b2", "Rates rose in Verdantis."),
        ])
        report = self.inspector.inspect_document(self.document_id)

        self.assertEqual(report.inspected_blocks, ["b1"])
        kds = self.db.list_knowledge_data(concept_id=techglobal.id)
        self.assertEqual(len(kds), 1)
        self.assertEqual(kds[0].extracted_text, "TechGlobal now powers 90% of premium smartphones.")
        self.assertTrue(self.engine.concepts.get(techglobal.id).synced)

    def test_cleared_block_drops_knowledge(self):
        """Test emptying a block removes the knowledge it backed."""
        self.inspector.inspect_document(self.document_id)
        techglobal = self._concept_named("TechGlobal")

        self.engine.documents.update_content(self.document_id, [
            paragraph("b1", ""),
            paragraph("b2", "Rates rose in Verdantis."),
        ])
        report = self.inspector.inspect_document(self.document_id)

        self.assertEqual(report.inspected_blocks, ["b1"])
        self.assertEqual(report.touched_concepts, [techglobal.id])
        self.assertNotIn(techglobal.id, report.failed_concepts)
        self.assertEqual(self.db.list_knowledge_data(concept_id=techglobal.id), [])
        self.assertEqual(self.db.get_ledger_entry(self.document_id, "b1").mentioned_concepts, [])

    def test_block_no_longer_naming_a_concept_drops_it(self):
        """Test an edit that removes every alias of a concept removes its knowledge from the block."""
        self.inspector.inspect_document(self.document_id)
        techglobal = self._concept_named("TechGlobal")

        self.engine.documents.update_content(self.document_id, [
            paragraph("b1", "Premium smartphones sold well this quarter."),
            paragraph("b2", "Rates rose in Verdantis."),
        ])
        report = self.inspector.inspect_document(self.document_id)

        self.assertNotIn(techglobal.id, report.failed_concepts)
        self.assertEqual(self.db.list_knowledge_data(concept_id=techglobal.id), [])
        self.assertNotIn(techglobal.id, self.db.get_document(self.document_id).mentioned_concepts)

    def test_known_concept_stays_while_named(self):
        """Test a concept the miner skips as known keeps its knowledge while the block still names it."""
        self.inspector.inspect_document(self.document_id)
        techglobal = self._concept_named("TechGlobal")
        self.runner.script("entity_extraction", NOTHING)

        self.engine.documents.update_content(self.document_id, [
            paragraph("b1", "TechGlobal now powers 90% of premium smartphones."),
            paragraph("b2", "Rates rose in Verdantis."),
        ])
        self.inspector.inspect_document(self.document_id)

        kds = self.db.list_knowledge_data(concept_id=techglobal.id)
        self.assertEqual([kd.extracted_text for kd in kds], ["TechGlobal now powers 90% of premium smartphones."])
        self.assertEqual(self.db.get_ledger_entry(self.document_id, "b1").mentioned_concepts, [techglobal.id])

    def test_new_concept_collects_earlier_mentions(self):
        """Test a concept created by mining picks up the other notes that name it."""
        other_id = self.engine.documents.create_document("Older Notes", [
            paragraph("o1", "Everyone watches TechGlobal."),
            paragraph("o2", "Nothing to see here."),
        ])
        self.runner.script("concept_presence", "TechGlobal")

        self.inspector.inspect_document(self.document_id)

        techglobal = self._concept_named("TechGlobal")
        kds = self.db.list_knowledge_data(concept_id=techglobal.id)
        self.assertEqual(sorted((kd.source_id, kd.source_section) for kd in kds),
                         sorted([(self.document_id, "b1"), (other_id, "o1")]))
        self.assertTrue(all(kd.processed for kd in kds))
        self.assertEqual(len(self.runner.calls_to("concept_presence")), 1)

        # Known concepts are not collected again
        self.engine.documents.update_content(self.document_id, [
            paragraph("b1", "TechGlobal now powers 90% of premium smartphones."),
            paragraph("b2", "Rates rose in Verdantis."),
        ])
        self.inspector.inspect_document(self.document_id)
        self.assertEqual(len(self.runner.calls_to("concept_presence")), 1)

    def test_explicit_mentions_become_knowledge(self):
        """Test a concept mentioned inline gets knowledge even when not mined."""
        concept_id = self.engine.concepts.create_concept(["Bank of England"])
        self.engine.documents.update_content(self.document_id, [Block(id="b3", content=[
            InlineContent(text="Rates were held by "),
            InlineContent(type=INLINE_CONCEPT, alias="the BoE", concept_id=concept_id),
        ])])

        report = self.inspector.inspect_document(self.document_id)

        self.assertEqual(report.inspected_blocks, ["b3"])
        kds = self.db.list_knowledge_data(concept_id=concept_id)
        self.assertEqual([kd.source_section for kd in kds], ["b3"])
        self.assertEqual(
            self.runner.calls_to("entity_extraction")[-1]["known_entities"], "Bank of England"
        )

    def test_archived_document_is_purged(self):
        """Test archiving a document removes its knowledge on the next pass."""
        self.inspector.inspect_document(self.document_id)
        techglobal = self._concept_named("TechGlobal")

        self.engine.documents.archive_document(self.document_id)
        reports = self.inspector.inspect_all_documents()

        archived = next(r for r in reports if r.document_id == self.document_id)
        self.assertEqual(sorted(archived.removed_blocks), ["b1", "b2"])
        self.assertEqual(self.db.list_knowledge_data(concept_id=techglobal.id), [])

    def test_missing_document(self):
        """Test inspecting an unknown document fails fast."""
        with self.assertRaises(DocumentNotFoundError):
            self.inspector.inspect_document("missing")


class TestDocumentLedger(EngineTestCase):
    """Test how content updates mark the inspection ledger."""

    def setUp(self):
        super().setUp()
        self.documents = self.engine.documents
        self.document_id = self.documents.create_document("Notes", [
            paragraph("b1", "TechGlobal designs chips."),
            paragraph("b2", "Rates rose in Verdantis."),
        ])
        for block_id in ["b1", "b2"]:
            self.db.update_ledger_entry(self.document_id, block_id, edited=False)

    def test_only_changed_blocks_are_marked(self):
        """Test unchanged blocks are left alone and changed ones marked edited."""
        changed = self.documents.update_content(self.document_id, [
            paragraph("b1", "TechGlobal designs chips."),
            paragraph("b2", "Rates fell in Verdantis."),
        ])

        self.assertEqual(changed, ["b2"])
        self.assertFalse(self.db.get_ledger_entry(self.document_id, "b1").edited)
        self.assertTrue(self.db.get_ledger_entry(self.document_id, "b2").edited)

    def test_restored_block_is_unmarked(self):
        """Test a block that comes back unchanged is no longer queued for removal."""
        self.assertEqual(
            self.documents.update_content(self.document_id, [paragraph("b1", "TechGlobal designs chips.")]), []
        )
        self.assertTrue(self.db.get_ledger_entry(self.document_id, "b2").to_remove)

        changed = self.documents.update_content(self.document_id, [
            paragraph("b1", "TechGlobal designs chips."),
            paragraph("b2", "Rates rose in Verdantis."),
        ])

        self.assertEqual(changed, [])
        entry = self.db.get_ledger_entry(self.document_id, "b2")
        self.assertFalse(entry.to_remove)
        self.assertFalse(entry.edited)
