"""
Knowledge extraction for ConceptSync.

A knowledge datum (KD) is the evidence one source block gives about one
concept. Its text is produced by the knowledge_extraction agent, embedded for
search, and flagged as updated so the concept's description and taxonomy get
re-derived on the next sync.
"""

import logging
import uuid
from typing import List, Optional, Tuple

from ..agents.parsing import parse_atomic_knowledge, parse_presence, parse_quotes
from ..database import DatabaseManager
from ..errors import KnowledgeDataNotFoundError, LLMError, LLMFormatError
from ..models import (
    Concept, EmbeddingType, KnowledgeDatum, Reference, SOURCE_DOCUMENT, DOC_TYPE_NOTE
)
from .concepts import ConceptStore
from .documents import DocumentService
from .text import block_to_text, iter_blocks
from .vectors import VectorIndex


class KnowledgeExtractor:
    """
    Creates, refreshes and removes knowledge data.
    """

    def __init__(
        self,
        db: DatabaseManager,
        vectors: VectorIndex,
        runner,
        concepts: ConceptStore,
        documents: DocumentService,
        extract_quotes: bool = False
    ):
        self.db = db
        self.vectors = vectors
        self.runner = runner
        self.concepts = concepts
        self.documents = documents
        self.extract_quotes = extract_quotes

    def extract_knowledge(
        self,
        concept: Concept,
        source_text: str,
        document_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Rewrite what a text says about a concept as self-contained statements.

        Args:
            concept: The concept the knowledge is about
            source_text: Text of the source block
            document_id: Source document, logged with the agent call

        Returns:
            The extracted statements joined into one text, or None when the
            model gave nothing usable
        """
        if not source_text or not source_text.strip():
            return None

        try:
            response = self.runner.run_agent(
                "knowledge_extraction",
                document_id=document_id,
                concept_id=concept.id,
                concept_name=concept.name,
                concept_description=concept.description or "",
                text=source_text
            )
            return parse_atomic_knowledge(response)
        except (LLMError, LLMFormatError) as e:
            logging.warning(f"Knowledge extraction failed for concept '{concept.name}': {e}")
            return None

    def find_quotes(
        self,
        concept: Concept,
        knowledge: str,
        source_text: str,
        document_id: Optional[str] = None
    ) -> List[str]:
        """
        Quote the sentences of a source that support extracted knowledge.

        Returns:
            The supporting sentences, empty when the model gave nothing usable
        """
        try:
            response = self.runner.run_agent(
                "knowledge_quotes",
                document_id=document_id,
                concept_id=concept.id,
                concept_name=concept.name,
                concept_description=concept.description or "",
                knowledge=knowledge,
                text=source_text
            )
            return parse_quotes(response)
        except (LLMError, LLMFormatError) as e:
            logging.warning(f"Finding quotes failed for concept '{concept.name}': {e}")
            return []

    def get(self, kd_id: str) -> KnowledgeDatum:
        """
        Return a knowledge datum.

        Raises:
            KnowledgeDataNotFoundError: If it does not exist
        """
        kd = self.db.get_knowledge_data(kd_id)
        if not kd:
            raise KnowledgeDataNotFoundError(f"Knowledge datum {kd_id} not found")
        return kd

    def create_or_get_kd(
        self,
        concept_id: str,
        source_type: str,
        source_id: str,
        source_section: str = "",
        extracted_text: Optional[str] = None
    ) -> str:
        """
        Create the knowledge datum of a (concept, source) tuple, or return the existing one.

        A datum created without text is left unprocessed for the next sync.
        An existing datum is returned untouched.

        Returns:
            The knowledge datum id

        Raises:
            ConceptNotFoundError: If the concept does not exist
        """
        self.concepts.get(concept_id)

        kd_id, created = self.db.add_knowledge_data(KnowledgeDatum(
            id=str(uuid.uuid4()),
            user_id=self.db.user_id,
            concept_id=concept_id,
            source_type=source_type,
            source_id=source_id,
            source_section=source_section,
            extracted_text=extracted_text,
            processed=extracted_text is not None,
            updated=extracted_text is not None
        ))

        if created:
            if extracted_text:
                self.vectors.upsert(
                    extracted_text, EmbeddingType.KNOWLEDGE_DATA, kd_id,
                    context_id=concept_id, file_id=source_id
                )
            self.concepts.mark_unsynced(concept_id)
            logging.info(f"Created knowledge datum {kd_id} for concept {concept_id}")

        return kd_id

    def update_kd(
        self,
        kd_id: str,
        text: Optional[str],
        processed: Optional[bool] = None,
        quotes: Optional[List[str]] = None
    ) -> None:
        """
        Replace the text of a knowledge datum and flag it as updated.

        The embedding is rebuilt only when the text changed, and before the
        row is patched, so a failed embedding call leaves the datum as it was.

        Raises:
            KnowledgeDataNotFoundError: If it does not exist
        """
        kd = self.get(kd_id)

        if text != kd.extracted_text:
            self.vectors.replace(
                [text] if text else [], EmbeddingType.KNOWLEDGE_DATA, kd_id,
                context_id=kd.concept_id, file_id=kd.source_id
            )

        fields = {"extracted_text": text, "updated": True}
        if processed is not None:
            fields["processed"] = processed
        if quotes is not None:
            fields["quotes"] = quotes
        self.db.update_knowledge_data(kd_id, **fields)

    def mark_consumed(self, kd_ids: List[str]) -> None:
        """Clear the updated flag of knowledge the concept has absorbed."""
        for kd_id in kd_ids:
            self.db.update_knowledge_data(kd_id, updated=False)

    def process_kd(self, kd: KnowledgeDatum, source_text: str) -> bool:
        """
        Run extraction for an unprocessed knowledge datum.

        With extract_quotes set the supporting sentences are stored too;
        missing quotes never fail the datum.

        Returns:
            True if the datum now holds fresh text
        """
        concept = self.concepts.get(kd.concept_id)
        extracted = self.extract_knowledge(concept, source_text, document_id=kd.source_id)
        if extracted is None:
            return False

        quotes = None
        if self.extract_quotes:
            quotes = self.find_quotes(concept, extracted, source_text, document_id=kd.source_id)

        self.update_kd(kd.id, extracted, processed=True, quotes=quotes)
        return True

    def search_knowledge(
        self,
        query: str,
        concept_id: Optional[str] = None,
        limit: int = 10
    ) -> List[Tuple[KnowledgeDatum, float]]:
        """
        Semantic search over settled knowledge.

        Only processed knowledge already absorbed by its concept (not
        updated) is returned.

        Args:
            query: Free text to look for
            concept_id: Optional concept to search within
            limit: Maximum number of results

        Returns:
            (knowledge datum, similarity) pairs, most similar first
        """
        hits = self.vectors.search(
            query, EmbeddingType.KNOWLEDGE_DATA, context_id=concept_id, limit=limit * 3
        )

        results: List[Tuple[KnowledgeDatum, float]] = []
        seen = set()
        for hit in hits:
            if hit.source_id in seen:
                continue
            seen.add(hit.source_id)

            kd = self.db.get_knowledge_data(hit.source_id)
            if kd and kd.processed and not kd.updated:
                results.append((kd, hit.score))
            if len(results) >= limit:
                break

        return results

    def remove_kd(self, kd_id: str) -> None:
        """
        Delete a knowledge datum and everything derived only from it.

        Tags and properties backed by other knowledge as well just lose this
        datum from their sources.

        Raises:
            KnowledgeDataNotFoundError: If it does not exist
        """
        kd = self.get(kd_id)

        self.vectors.delete(kd_id, EmbeddingType.KNOWLEDGE_DATA)

        for prop in self.db.list_object_tag_properties(source_kd_id=kd_id):
            remaining = [source for source in prop.source_kds if source != kd_id]
            if remaining:
                self.db.update_object_tag_property(prop.id, source_kds=remaining)
            else:
                self.db.delete_object_tag_property(prop.id)

        for tag in self.db.list_object_tags(source_kd_id=kd_id):
            remaining = [source for source in tag.source_kds if source != kd_id]
            if remaining:
                self.db.update_object_tag(tag.id, source_kds=remaining)
            else:
                self.db.delete_object_tag(tag.id)

        self.db.delete_references(kd_id)
        self.db.delete_knowledge_data(kd_id)

        if self.concepts.find(kd.concept_id):
            self.concepts.mark_unsynced(kd.concept_id)

        logging.info(f"Removed knowledge datum {kd_id} of concept {kd.concept_id}")

    def reset_block_kds(self, document_id: str, block_id: str) -> List[KnowledgeDatum]:
        """
        Mark every knowledge datum of an edited block for re-extraction.

        Returns:
            The knowledge data of the block
        """
        kds = self.db.list_knowledge_data(
            source_type=SOURCE_DOCUMENT, source_id=document_id, source_section=block_id
        )
        for kd in kds:
            if kd.processed:
                self.db.update_knowledge_data(kd.id, processed=False)
            self.concepts.mark_unsynced(kd.concept_id)
        return kds

    def add_reference(
        self,
        source_kd_id: str,
        ref_kd_id: str,
        description: Optional[str] = None,
        affirmation_score: Optional[float] = None
    ) -> str:
        """Record that one knowledge datum corroborates or contradicts another."""
        self.get(source_kd_id)
        self.get(ref_kd_id)

        reference_id = str(uuid.uuid4())
        self.db.insert_reference(Reference(
            id=reference_id,
            user_id=self.db.user_id,
            source_kd_id=source_kd_id,
            ref_kd_id=ref_kd_id,
            description=description,
            affirmation_score=affirmation_score
        ))
        return reference_id

    def collect_mentions(self, concept_id: str) -> int:
        """
        Find blocks of the user's notes that talk about a concept.

        Blocks whose text contains one of the aliases are confirmed by the
        concept_presence agent; confirmed blocks become knowledge of the
        concept and the names used there are merged into its aliases.

        Returns:
            Number of knowledge data created
        """
        concept = self.concepts.get(concept_id)
        added = 0

        for document in self.documents.list_documents():
            if document.doc_type != DOC_TYPE_NOTE:
                continue

            for block in iter_blocks(document.blocks):
                text = block_to_text(block)
                lowered = text.lower()
                if not any(alias.lower() in lowered for alias in concept.aliases):
                    continue
                if self.db.find_knowledge_data(concept.id, SOURCE_DOCUMENT, document.id, block.id):
                    continue

                try:
                    response = self.runner.run_agent(
                        "concept_presence",
                        document_id=document.id,
                        concept_id=concept.id,
                        concept_name=concept.name,
                        concept_description=concept.description or "",
                        aliases=", ".join(concept.aliases),
                        text=text
                    )
                except LLMError as e:
                    logging.warning(f"Presence check failed for block {block.id}: {e}")
                    continue

                names = parse_presence(response)
                if not names:
                    continue

                self.create_or_get_kd(concept.id, SOURCE_DOCUMENT, document.id, block.id)
                added += 1

                if self.concepts.merge_aliases(concept.id, names):
                    concept = self.concepts.get(concept.id)

        logging.info(f"Collected {added} new mentions of concept '{concept.name}'")
        return added
