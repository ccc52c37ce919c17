"""
Block inspection for ConceptSync.

Works through a document's inspection ledger: removed blocks are purged
first, edited blocks are mined for concepts and turned into knowledge data,
then every concept touched by the pass is synchronized. One failing block or
concept never stops the rest of the pass.
"""

import logging
from typing import List

from ..database import DatabaseManager
from ..errors import AuthorizationError, ConceptSyncError, NotFoundError
from ..models import Document, InspectionReport, LedgerEntry, SyncStatus, SOURCE_DOCUMENT
from .concepts import ConceptStore
from .documents import DocumentService
from .knowledge import KnowledgeExtractor
from .mining import EntityMiner
from .synchronizer import ConceptSynchronizer
from .text import block_to_text, concept_mentions, find_block


def _merge(existing: List[str], new: List[str]) -> List[str]:
    return existing + [item for item in new if item not in existing]


class BlockInspector:
    """
    Drives mining and synchronization for edited documents.
    """

    def __init__(
        self,
        db: DatabaseManager,
        documents: DocumentService,
        concepts: ConceptStore,
        knowledge: KnowledgeExtractor,
        miner: EntityMiner,
        synchronizer: ConceptSynchronizer,
        collect_mentions: bool = False
    ):
        self.db = db
        self.documents = documents
        self.concepts = concepts
        self.knowledge = knowledge
        self.miner = miner
        self.synchronizer = synchronizer
        self.collect_mentions = collect_mentions

    def _purge_block(self, document: Document, entry: LedgerEntry) -> List[str]:
        """Remove the knowledge of a deleted block and drop its ledger entry."""
        touched = []
        kds = self.db.list_knowledge_data(
            source_type=SOURCE_DOCUMENT, source_id=document.id, source_section=entry.block_id
        )
        for kd in kds:
            self.knowledge.remove_kd(kd.id)
            touched.append(kd.concept_id)

        self.db.delete_ledger_entry(document.id, entry.block_id)
        logging.info(f"Purged block {entry.block_id} of document {document.id} ({len(kds)} knowledge data)")
        return touched

    def _inspect_block(self, document: Document, entry: LedgerEntry, created: List[str]) -> List[str]:
        """
        Mine one edited block and record its knowledge data.

        Concepts the block no longer names lose the knowledge it backed.

        Args:
            document: The document holding the block
            entry: Ledger entry of the block
            created: Receives the ids of concepts created while mining

        Returns:
            Ids of the concepts whose knowledge the block changed

        Raises:
            ConceptSyncError: If the entities of the block could not be read
        """
        block = find_block(document.blocks, entry.block_id)

        mined = self.miner.mine_entities(document, entry.block_id, created=created)
        if mined is None:
            raise ConceptSyncError(f"Entity mining gave no usable answer for block {entry.block_id}")

        concept_ids: List[str] = []
        for _, concept_id in mined:
            if concept_id not in concept_ids:
                concept_ids.append(concept_id)

        for concept_id in concept_mentions(block):
            if concept_id not in concept_ids and self.concepts.find(concept_id):
                concept_ids.append(concept_id)

        existing = self.knowledge.reset_block_kds(document.id, block.id)

        # The miner skips concepts already recorded for the block; they stay while an alias is still there
        text = block_to_text(block).lower()
        for concept_id in _merge(entry.mentioned_concepts, [kd.concept_id for kd in existing]):
            if concept_id in concept_ids:
                continue
            concept = self.concepts.find(concept_id)
            if concept and any(alias.lower() in text for alias in concept.aliases):
                concept_ids.append(concept_id)

        for kd in existing:
            if kd.concept_id not in concept_ids:
                self.knowledge.remove_kd(kd.id)

        for concept_id in concept_ids:
            self.knowledge.create_or_get_kd(concept_id, SOURCE_DOCUMENT, document.id, block.id)
            self.concepts.mark_unsynced(concept_id)

        self.db.update_ledger_entry(
            document.id,
            block.id,
            edited=False,
            concept_synced=False,
            mentioned_concepts=concept_ids
        )

        return _merge(concept_ids, [kd.concept_id for kd in existing])

    def _collect_mentions(self, concept_ids: List[str]) -> None:
        """Attach the other blocks that talk about newly created concepts."""
        for concept_id in concept_ids:
            try:
                self.knowledge.collect_mentions(concept_id)
            except AuthorizationError:
                raise
            except Exception as e:
                logging.error(f"Failed to collect mentions of concept {concept_id}: {e}")

    def inspect_document(self, document_id: str) -> InspectionReport:
        """
        Run one inspection pass over a document.

        The document's inspect_in_progress guard is claimed atomically; a
        second caller gets a skipped report. The guard is always released.

        Args:
            document_id: The document to inspect

        Returns:
            What the pass did

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        document = self.documents.get_document(document_id)
        report = InspectionReport(document_id=document_id)

        if not self.db.try_begin_inspection(document_id):
            logging.info(f"Document {document_id} is already being inspected, skipping")
            report.skipped = True
            return report

        try:
            document = self.documents.get_document(document_id)
            self.documents.sync_ledger(document)
            entries = self.db.list_ledger_entries(document_id)
            touched: List[str] = []
            created: List[str] = []

            for entry in entries:
                if entry.to_remove or not find_block(document.blocks, entry.block_id):
                    touched = _merge(touched, self._purge_block(document, entry))
                    report.removed_blocks.append(entry.block_id)

            for entry in entries:
                if entry.block_id in report.removed_blocks or not entry.edited:
                    continue

                try:
                    concept_ids = self._inspect_block(document, entry, created)
                except AuthorizationError:
                    raise
                except Exception as e:
                    logging.error(f"Failed to inspect block {entry.block_id} of document {document_id}: {e}")
                    report.failed_blocks.append(entry.block_id)
                    continue

                touched = _merge(touched, concept_ids)
                report.inspected_blocks.append(entry.block_id)

            if self.collect_mentions:
                self._collect_mentions(created)

            mentioned = []
            for entry in self.db.list_ledger_entries(document_id):
                mentioned = _merge(mentioned, entry.mentioned_concepts)
            if mentioned != document.mentioned_concepts:
                self.db.update_document(document_id, mentioned_concepts=mentioned)

            report.touched_concepts = touched
            self._sync_touched(touched, report)
            self._mark_concept_synced(document_id)

        finally:
            self.db.end_inspection(document_id)

        logging.info(
            f"Inspected document '{document.title}': {len(report.inspected_blocks)} blocks mined, "
            f"{len(report.removed_blocks)} removed, {len(report.failed_blocks)} failed"
        )
        return report

    def _sync_touched(self, concept_ids: List[str], report: InspectionReport) -> None:
        for concept_id in concept_ids:
            concept = self.concepts.find(concept_id)
            if not concept or concept.synced:
                continue

            try:
                status = self.synchronizer.sync_concept(concept_id)
            except AuthorizationError:
                raise
            except Exception as e:
                logging.error(f"Failed to sync concept {concept_id}: {e}")
                report.failed_concepts.append(concept_id)
                continue

            if status == SyncStatus.PARTIAL:
                report.failed_concepts.append(concept_id)
            else:
                report.synced_concepts.append(concept_id)

    def _mark_concept_synced(self, document_id: str) -> None:
        """Flag ledger entries whose concepts are all synced."""
        for entry in self.db.list_ledger_entries(document_id):
            if entry.edited or entry.concept_synced:
                continue

            concepts = [self.concepts.find(concept_id) for concept_id in entry.mentioned_concepts]
            if all(concept is None or concept.synced for concept in concepts):
                self.db.update_ledger_entry(document_id, entry.block_id, concept_synced=True)

    def inspect_all_documents(self) -> List[InspectionReport]:
        """
        Inspect every document of the user, one at a time.

        Archived documents are included so their removed blocks get purged.
        """
        reports = []
        for document in self.documents.list_documents(include_archived=True):
            try:
                reports.append(self.inspect_document(document.id))
            except AuthorizationError:
                raise
            except NotFoundError as e:
                logging.info(f"Skipping document {document.id}: {e}")
            except Exception as e:
                logging.error(f"Failed to inspect document {document.id}: {e}")
        return reports
