"""
Concept store for ConceptSync.

Owns alias normalization, concept creation with its embeddings and root page,
partial updates that only re-embed what changed, and the removal rules that
keep taxonomy parents alive.
"""

import logging
import re
import uuid
from typing import List, Optional, Tuple

from ..database import DatabaseManager
from ..errors import ConceptNotFoundError, ConceptSyncError
from ..models import (
    Concept, Document, EmbeddingType, KnowledgeDatum, KnowledgeSource, ResolvedConcept,
    DOC_TYPE_CONCEPT
)
from .resolution import ConceptResolver
from .vectors import VectorIndex


LOWERCASE_WORDS = {
    "a", "an", "the", "and", "but", "or", "nor",
    "in", "on", "at", "to", "for", "of", "with", "by", "as"
}

_EDGE_PUNCTUATION = re.compile(r"^[^0-9A-Za-z]+|[^0-9A-Za-z]+$")


def better_name(text: str) -> str:
    """
    Normalize a concept alias to title case.

    Small words (articles, conjunctions, short prepositions) are lowercase
    unless they are the first or last word. Words written entirely in
    capitals are lowered first unless they look like an acronym (four
    letters or fewer); mixed-case words such as "TechGlobal" keep their
    inner capitals.

    Args:
        text: Raw alias

    Returns:
        The normalized alias, or an empty string
    """
    cleaned = _EDGE_PUNCTUATION.sub("", (text or "").strip())
    words = cleaned.split()
    result = []

    for position, word in enumerate(words):
        lowered = word.lower()
        if lowered in LOWERCASE_WORDS and 0 < position < len(words) - 1:
            result.append(lowered)
            continue

        if word.isupper() and (len(word) > 4 or lowered in LOWERCASE_WORDS):
            word = lowered
        result.append(word[0].upper() + word[1:])

    return " ".join(result)


def normalize_aliases(aliases: List[str]) -> List[str]:
    """Normalize aliases, dropping empty ones and case-insensitive duplicates."""
    normalized: List[str] = []
    seen = set()
    for alias in aliases:
        name = better_name(alias)
        if name and name.lower() not in seen:
            seen.add(name.lower())
            normalized.append(name)
    return normalized


class ConceptStore:
    """
    CRUD and dedup-aware creation of concepts.
    """

    def __init__(
        self,
        db: DatabaseManager,
        vectors: VectorIndex,
        runner,
        soft_match_threshold: float = 0.9,
        match_threshold: float = 0.5,
        candidate_limit: int = 3,
        description_weight: float = 0.75
    ):
        self.db = db
        self.vectors = vectors
        self.runner = runner
        self.soft_match_threshold = soft_match_threshold
        self.resolver = ConceptResolver(
            self,
            vectors,
            runner,
            match_threshold=match_threshold,
            candidate_limit=candidate_limit,
            description_weight=description_weight
        )

    def find(self, concept_id: str) -> Optional[Concept]:
        """Return a concept, or None if it does not exist."""
        return self.db.get_concept(concept_id)

    def get(self, concept_id: str) -> Concept:
        """
        Return a concept.

        Raises:
            ConceptNotFoundError: If the concept does not exist
        """
        concept = self.db.get_concept(concept_id)
        if not concept:
            raise ConceptNotFoundError(f"Concept {concept_id} not found")
        return concept

    def create_concept(
        self,
        aliases: List[str],
        description: Optional[str] = None,
        synced: bool = False,
        hidden: bool = False,
        root_document: Optional[str] = None
    ) -> str:
        """
        Create a concept, its embeddings and its root page.

        Args:
            aliases: Names of the concept; the first becomes the display name
            description: Optional description
            synced: Initial synced flag
            hidden: Initial hidden flag
            root_document: Existing page to use instead of creating one

        Returns:
            The new concept id

        Raises:
            ValueError: If no alias survives normalization
        """
        normalized = normalize_aliases(aliases)
        if not normalized:
            raise ValueError(f"Cannot create a concept without a usable alias: {aliases!r}")

        concept_id = str(uuid.uuid4())

        if root_document is None:
            root_document = str(uuid.uuid4())
            self.db.insert_document(Document(
                id=root_document,
                user_id=self.db.user_id,
                title=normalized[0],
                doc_type=DOC_TYPE_CONCEPT,
                concept_id=concept_id
            ))

        self.db.insert_concept(Concept(
            id=concept_id,
            user_id=self.db.user_id,
            aliases=normalized,
            alias_string=" ".join(normalized),
            description=description or None,
            synced=synced,
            hidden=hidden,
            root_document=root_document
        ))

        self.vectors.upsert_many(normalized, EmbeddingType.CONCEPT_ALIAS, concept_id)
        self.vectors.upsert(description, EmbeddingType.CONCEPT_DESCRIPTION, concept_id)

        logging.info(f"Created concept '{normalized[0]}' ({concept_id})")
        return concept_id

    def update_concept(self, concept_id: str, **fields) -> None:
        """
        Patch a concept.

        None values are dropped, so a field is never cleared by omission.
        Alias and description embeddings are rebuilt only when those fields
        actually change.

        Raises:
            ConceptNotFoundError: If the concept does not exist
        """
        concept = self.get(concept_id)
        fields = {key: value for key, value in fields.items() if value is not None}

        if "aliases" in fields:
            fields["aliases"] = normalize_aliases(fields["aliases"])
            if not fields["aliases"]:
                del fields["aliases"]
            else:
                fields["alias_string"] = " ".join(fields["aliases"])

        aliases_changed = "aliases" in fields and fields["aliases"] != concept.aliases
        description_changed = "description" in fields and fields["description"] != concept.description

        if not fields:
            return

        # Embeddings first: the row only records a change once it is searchable
        if aliases_changed:
            self.vectors.replace(fields["aliases"], EmbeddingType.CONCEPT_ALIAS, concept_id)
        if description_changed:
            self.vectors.replace([fields["description"]], EmbeddingType.CONCEPT_DESCRIPTION, concept_id)

        self.db.update_concept(concept_id, **fields)

        if aliases_changed and concept.root_document and fields["aliases"][0] != concept.name:
            self.db.update_document(concept.root_document, title=fields["aliases"][0])

    def mark_unsynced(self, concept_id: str) -> None:
        self.db.update_concept(concept_id, synced=False)

    def merge_aliases(self, concept_id: str, names: List[str]) -> List[str]:
        """
        Append new aliases to a concept.

        Returns:
            The aliases that were actually added
        """
        concept = self.get(concept_id)
        known = {alias.lower() for alias in concept.aliases}
        added = [name for name in normalize_aliases(names) if name.lower() not in known]

        if added:
            self.update_concept(concept_id, aliases=concept.aliases + added)
            logging.info(f"Added aliases {added} to concept '{concept.name}'")
        return added

    def attach_source(self, concept_id: str, source: KnowledgeSource) -> Tuple[str, bool]:
        """
        Record a source location as unprocessed knowledge of a concept.

        Returns:
            The knowledge datum id and whether it was created
        """
        kd_id, created = self.db.add_knowledge_data(KnowledgeDatum(
            id=str(uuid.uuid4()),
            user_id=self.db.user_id,
            concept_id=concept_id,
            source_type=source.source_type,
            source_id=source.source_id,
            source_section=source.source_section
        ))
        if created:
            self.mark_unsynced(concept_id)
        return kd_id, created

    def resolve_or_create_concept(
        self,
        name: str,
        description: Optional[str] = None,
        soft_match: bool = False,
        source: Optional[KnowledgeSource] = None,
        document_id: Optional[str] = None
    ) -> ResolvedConcept:
        """
        Find the concept a name refers to, creating it when nothing matches.

        With soft_match, a concept whose alias embedding is at least
        soft_match_threshold similar to the name is reused and anything less
        similar creates a new concept. Without it the full dedup procedure
        runs.

        Args:
            name: Candidate name
            description: Candidate description
            soft_match: Try the high-similarity alias shortcut first
            source: Optional source to attach as knowledge of the result
            document_id: Document being processed, logged with agent calls

        Returns:
            The resolved concept and whether it was created
        """
        name = better_name(name)

        if soft_match:
            hits = self.vectors.search(name, EmbeddingType.CONCEPT_ALIAS, limit=1)
            if hits and hits[0].score >= self.soft_match_threshold and self.find(hits[0].source_id):
                logging.info(f"Soft matched '{name}' to concept {hits[0].source_id} ({hits[0].score:.3f})")
                resolved = ResolvedConcept(concept_id=hits[0].source_id, created=False)
            else:
                resolved = ResolvedConcept(
                    concept_id=self.create_concept([name], description), created=True
                )
        else:
            resolved = self.resolver.resolve(name, description, document_id=document_id)

        if source:
            self.attach_source(resolved.concept_id, source)

        return resolved

    def remove_concept(self, concept_id: str) -> bool:
        """
        Remove a concept that no longer has knowledge.

        A concept still used as a taxonomy parent is hidden instead.

        Returns:
            True if the concept was deleted, False if it was hidden

        Raises:
            ConceptNotFoundError: If the concept does not exist
            ConceptSyncError: If the concept still has knowledge data
        """
        concept = self.get(concept_id)

        if self.db.list_object_tags(object_concept_id=concept_id):
            self.db.update_concept(concept_id, hidden=True)
            logging.info(f"Concept '{concept.name}' is still a taxonomy parent, hiding it")
            return False

        if self.db.list_knowledge_data(concept_id=concept_id):
            raise ConceptSyncError(f"Concept '{concept.name}' still has knowledge data")

        self.vectors.delete(concept_id, EmbeddingType.CONCEPT_ALIAS)
        self.vectors.delete(concept_id, EmbeddingType.CONCEPT_DESCRIPTION)

        for tag in self.db.list_object_tags(concept_id=concept_id):
            self.db.delete_object_tag(tag.id)

        for template in self.db.list_object_templates(concept_id):
            self.vectors.delete(template.id, EmbeddingType.OBJECT_TEMPLATE_NAME)
            self.vectors.delete(template.id, EmbeddingType.OBJECT_TEMPLATE_DESCRIPTION)
            self.db.delete_object_template(template.id)

        if concept.root_document and self.db.get_document(concept.root_document):
            self.db.update_document(concept.root_document, is_archived=True)

        self.db.delete_concept(concept_id)
        logging.info(f"Removed concept '{concept.name}' ({concept_id})")
        return True

    def search_concept_alias(self, query: str, limit: int = 10) -> List[Concept]:
        """Text search over concept aliases."""
        return self.db.search_concepts_by_alias(query, limit)

    def get_visible_concepts(self) -> List[Tuple[Concept, int]]:
        """Visible concepts with their knowledge data counts."""
        return self.db.list_concepts_with_counts()

    def get_unsynced_concepts(self) -> List[Concept]:
        return self.db.list_concepts(synced=False)

    def get_parent_concepts(self, concept_id: str) -> List[Concept]:
        """Direct taxonomy parents of a concept."""
        parents: List[Concept] = []
        for tag in self.db.list_object_tags(concept_id=concept_id):
            parent = self.find(tag.object_concept_id)
            if parent and parent.id not in [p.id for p in parents]:
                parents.append(parent)
        return parents

    def get_child_concepts(self, concept_id: str) -> List[Concept]:
        """
        Every descendant of a concept through object tags.

        Cycles in the taxonomy are walked only once.
        """
        children: List[Concept] = []
        seen = {concept_id}
        queue = [concept_id]

        while queue:
            current = queue.pop(0)
            for tag in self.db.list_object_tags(object_concept_id=current):
                if tag.concept_id in seen:
                    continue
                seen.add(tag.concept_id)
                child = self.find(tag.concept_id)
                if child:
                    children.append(child)
                    queue.append(child.id)

        return children
