"""
Concept synchronization for ConceptSync.

Brings one unsynced concept up to date with its knowledge: re-extracts
unprocessed knowledge data from the current source text, refreshes the
taxonomy and the description, and only then clears the dirty flags. A failed
stage leaves the flags set so the next pass retries exactly that work.
"""

import logging
from typing import Dict, List, Tuple

from ..agents.parsing import parse_description
from ..database import DatabaseManager
from ..errors import AuthorizationError, LLMError, LLMFormatError, NotFoundError
from ..models import Concept, KnowledgeDatum, SyncStatus
from .concepts import ConceptStore
from .documents import DocumentService
from .knowledge import KnowledgeExtractor
from .taxonomy import TaxonomySynchronizer


class ConceptSynchronizer:
    """
    Reconciles concepts with their knowledge data.
    """

    def __init__(
        self,
        db: DatabaseManager,
        runner,
        concepts: ConceptStore,
        knowledge: KnowledgeExtractor,
        documents: DocumentService,
        taxonomy: TaxonomySynchronizer,
        delete_orphans: bool = False
    ):
        self.db = db
        self.runner = runner
        self.concepts = concepts
        self.knowledge = knowledge
        self.documents = documents
        self.taxonomy = taxonomy
        self.delete_orphans = delete_orphans

    def _settle_empty(self, concept: Concept) -> SyncStatus:
        """A concept without knowledge is hidden if it is still a parent, else deletable."""
        if self.db.list_object_tags(object_concept_id=concept.id):
            self.db.update_concept(concept.id, hidden=True, synced=True)
            logging.info(f"Concept '{concept.name}' has no knowledge left, hidden")
            return SyncStatus.HIDDEN

        logging.info(f"Concept '{concept.name}' has no knowledge left, deletable")
        return SyncStatus.DELETABLE

    def _process_pending(self, kds: List[KnowledgeDatum]) -> bool:
        """Re-extract unprocessed knowledge, grouped by source. Returns False on any failure."""
        groups: Dict[Tuple[str, str, str], List[KnowledgeDatum]] = {}
        for kd in kds:
            if not kd.processed:
                groups.setdefault((kd.source_type, kd.source_id, kd.source_section), []).append(kd)

        ok = True
        for (source_type, source_id, source_section), group in groups.items():
            try:
                text = self.documents.get_source_text(source_type, source_id, source_section)
            except ValueError as e:
                logging.warning(f"Cannot read knowledge source {source_id}: {e}")
                ok = False
                continue

            if text is None or not text.strip():
                # The source block is gone or empty, and so is the evidence
                for kd in group:
                    self.knowledge.remove_kd(kd.id)
                continue

            for kd in group:
                if not self.knowledge.process_kd(kd, text):
                    ok = False

        return ok

    def regenerate_description(self, concept: Concept, updated_kds: List[KnowledgeDatum]) -> bool:
        """
        Let the concept_description agent decide whether new knowledge changes the description.

        Returns:
            True if the answer was usable

        Raises:
            LLMError: If the agent call fails
        """
        knowledge = "\n".join(kd.extracted_text for kd in updated_kds if kd.extracted_text)
        if not knowledge:
            return True

        response = self.runner.run_agent(
            "concept_description",
            concept_id=concept.id,
            old_definition=concept.description or "None",
            new_knowledges=knowledge
        )

        try:
            description = parse_description(response)
        except LLMFormatError as e:
            logging.warning(f"Unusable description for '{concept.name}': {e}")
            return False

        if description and description != concept.description:
            self.concepts.update_concept(concept.id, description=description)
            logging.info(f"Updated description of '{concept.name}'")
        return True

    def sync_concept(self, concept_id: str) -> SyncStatus:
        """
        Synchronize one concept.

        Re-running on a synced concept is a no-op; re-running after a partial
        sync redoes only the work still flagged.

        Args:
            concept_id: The concept to sync

        Returns:
            The outcome of the sync

        Raises:
            ConceptNotFoundError: If the concept does not exist
        """
        concept = self.concepts.get(concept_id)
        if concept.synced:
            return SyncStatus.ALREADY_SYNCED

        kds = self.db.list_knowledge_data(concept_id=concept_id)
        if not kds:
            return self._settle_empty(concept)

        ok = True
        try:
            ok = self._process_pending(kds)

            kds = self.db.list_knowledge_data(concept_id=concept_id)
            if not kds:
                return self._settle_empty(concept)

            updated = [kd for kd in kds if kd.updated and kd.processed]
            if updated:
                concept = self.concepts.get(concept_id)
                if not self.taxonomy.sync_taxonomy(concept, updated):
                    ok = False

                concept = self.concepts.get(concept_id)
                if not self.regenerate_description(concept, updated):
                    ok = False
        except LLMError as e:
            logging.error(f"LLM call failed while syncing '{concept.name}': {e}")
            ok = False

        if not ok:
            logging.warning(f"Concept '{concept.name}' partially synced, will retry on the next pass")
            return SyncStatus.PARTIAL

        self.knowledge.mark_consumed([kd.id for kd in updated])
        self.db.update_concept(concept_id, synced=True, hidden=False)
        logging.info(f"Synced concept '{concept.name}'")
        return SyncStatus.SYNCED

    def sync_all_concepts(self) -> Dict[str, SyncStatus]:
        """
        Sync every unsynced concept of the user, one at a time.

        A failing concept does not stop the loop. Deletable concepts are
        removed when delete_orphans is set.

        Returns:
            Sync status per concept id
        """
        results: Dict[str, SyncStatus] = {}

        for concept in self.concepts.get_unsynced_concepts():
            try:
                status = self.sync_concept(concept.id)
                if status == SyncStatus.DELETABLE and self.delete_orphans:
                    self.concepts.remove_concept(concept.id)
            except AuthorizationError:
                raise
            except NotFoundError:
                logging.info(f"Concept {concept.id} disappeared before it was synced")
                continue
            except Exception as e:
                logging.error(f"Failed to sync concept {concept.id}: {e}")
                status = SyncStatus.PARTIAL

            results[concept.id] = status

        logging.info(f"Synced {len(results)} concepts")
        return results
