"""
The ConceptSync engine.

KnowledgeEngine wires the components together for one user and one database
connection.
"""

import logging
from typing import Optional

from ..config import config
from ..database import DatabaseManager
from .concepts import ConceptStore, better_name, normalize_aliases
from .documents import DocumentService
from .inspector import BlockInspector
from .knowledge import KnowledgeExtractor
from .mining import EntityMiner
from .resolution import ConceptResolver
from .synchronizer import ConceptSynchronizer
from .taxonomy import TaxonomySynchronizer
from .vectors import VectorIndex


class KnowledgeEngine:
    """
    Entry point to every engine operation.
    """

    def __init__(self, db: DatabaseManager, runner, settings=None):
        """
        Args:
            db: Connected database manager
            runner: Agent runner (run_agent and embed)
            settings: Optional ConfigManager, defaults to the global config
        """
        settings = settings or config
        self.db = db
        self.runner = runner

        self.vectors = VectorIndex(db, runner)
        self.documents = DocumentService(db)
        self.concepts = ConceptStore(
            db,
            self.vectors,
            runner,
            soft_match_threshold=settings.soft_match_threshold,
            match_threshold=settings.match_threshold,
            candidate_limit=settings.candidate_limit,
            description_weight=settings.description_weight
        )
        self.knowledge = KnowledgeExtractor(
            db,
            self.vectors,
            runner,
            self.concepts,
            self.documents,
            extract_quotes=settings.extract_quotes
        )
        self.miner = EntityMiner(db, runner, self.concepts)
        self.taxonomy = TaxonomySynchronizer(
            db,
            self.vectors,
            runner,
            self.concepts,
            max_name_length=settings.max_tag_name_length,
            default_properties=settings.default_properties,
            description_weight=settings.description_weight
        )
        self.synchronizer = ConceptSynchronizer(
            db,
            runner,
            self.concepts,
            self.knowledge,
            self.documents,
            self.taxonomy,
            delete_orphans=settings.delete_orphans
        )
        self.inspector = BlockInspector(
            db,
            self.documents,
            self.concepts,
            self.knowledge,
            self.miner,
            self.synchronizer,
            collect_mentions=settings.collect_mentions
        )

    def inspect_document(self, document_id: str):
        return self.inspector.inspect_document(document_id)

    def inspect_all_documents(self):
        return self.inspector.inspect_all_documents()

    def sync_concept(self, concept_id: str):
        return self.synchronizer.sync_concept(concept_id)

    def sync_all_concepts(self):
        return self.synchronizer.sync_all_concepts()

    def search_knowledge(self, query: str, concept_id: Optional[str] = None, limit: int = 10):
        return self.knowledge.search_knowledge(query, concept_id=concept_id, limit=limit)

    def collect_mentions(self, concept_id: str) -> int:
        return self.knowledge.collect_mentions(concept_id)

    def delete_concept(self, concept_id: str) -> bool:
        """
        Delete a concept together with its knowledge.

        A concept still used as a taxonomy parent keeps existing, hidden.

        Returns:
            True if the concept row was deleted
        """
        for kd in self.db.list_knowledge_data(concept_id=concept_id):
            self.knowledge.remove_kd(kd.id)

        deleted = self.concepts.remove_concept(concept_id)
        logging.info(f"Concept {concept_id} {'deleted' if deleted else 'hidden'}")
        return deleted


__all__ = [
    "KnowledgeEngine",
    "ConceptStore",
    "ConceptResolver",
    "DocumentService",
    "BlockInspector",
    "KnowledgeExtractor",
    "EntityMiner",
    "ConceptSynchronizer",
    "TaxonomySynchronizer",
    "VectorIndex",
    "better_name",
    "normalize_aliases"
]
