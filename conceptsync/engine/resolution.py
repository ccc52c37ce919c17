"""
Fuzzy concept deduplication.

A candidate name is compared against the alias and description embeddings of
every concept. The best scoring concepts are kept; a single one is reused, and
several are arbitrated by the concept_match agent. Every call ends with an
existing or a newly created concept.
"""

import json
import logging
from typing import Dict, List, Optional, Tuple

from ..agents.parsing import parse_match_index
from ..errors import LLMFormatError
from ..models import EmbeddingType, ResolvedConcept


class ConceptResolver:
    """
    Resolves a (name, description) pair to a concept id.
    """

    def __init__(
        self,
        store,
        vectors,
        runner,
        match_threshold: float = 0.5,
        candidate_limit: int = 3,
        description_weight: float = 0.75
    ):
        """
        Args:
            store: ConceptStore used to read and create concepts
            vectors: VectorIndex holding the concept embeddings
            runner: Agent runner used for arbitration
            match_threshold: Minimum weighted similarity of a candidate
            candidate_limit: Maximum number of candidates kept
            description_weight: Multiplier applied to description similarity
        """
        self.store = store
        self.vectors = vectors
        self.runner = runner
        self.match_threshold = match_threshold
        self.candidate_limit = candidate_limit
        self.description_weight = description_weight

    def find_candidates(self, name: str, description: Optional[str] = None) -> List[Tuple[str, float]]:
        """
        Rank existing concepts by weighted similarity to a candidate.

        Alias similarity counts fully, description similarity is weighted down.
        Each concept keeps its best score.

        Returns:
            (concept_id, score) pairs, best first, ties broken by concept id
        """
        search_limit = self.candidate_limit * 3
        scores: Dict[str, float] = {}

        for hit in self.vectors.search(name, EmbeddingType.CONCEPT_ALIAS, limit=search_limit):
            scores[hit.source_id] = max(scores.get(hit.source_id, 0.0), hit.score)

        if description:
            for hit in self.vectors.search(description, EmbeddingType.CONCEPT_DESCRIPTION, limit=search_limit):
                weighted = hit.score * self.description_weight
                scores[hit.source_id] = max(scores.get(hit.source_id, 0.0), weighted)

        ranked = sorted(
            ((concept_id, score) for concept_id, score in scores.items() if score >= self.match_threshold),
            key=lambda item: (-item[1], item[0])
        )
        # Embeddings can outlive a concept deleted by another pass
        ranked = [item for item in ranked if self.store.find(item[0])]
        return ranked[:self.candidate_limit]

    def choose(
        self,
        name: str,
        description: Optional[str],
        candidate_ids: List[str],
        document_id: Optional[str] = None
    ) -> Optional[str]:
        """
        Pick the concept a candidate refers to.

        Returns:
            The matching concept id, or None when a new concept is needed

        Raises:
            LLMError: If the arbitration call fails
        """
        if not candidate_ids:
            return None
        if len(candidate_ids) == 1:
            return candidate_ids[0]

        candidates = []
        for index, concept_id in enumerate(candidate_ids):
            concept = self.store.get(concept_id)
            candidates.append({
                "index": index,
                "name": concept.name,
                "description": concept.description or ""
            })

        response = self.runner.run_agent(
            "concept_match",
            document_id=document_id,
            name=name,
            description=description or "",
            candidates=json.dumps(candidates, ensure_ascii=False)
        )

        try:
            index = parse_match_index(response, len(candidate_ids))
        except LLMFormatError as e:
            logging.warning(f"Unusable concept match answer for '{name}', creating a new concept: {e}")
            return None

        return candidate_ids[index] if index is not None else None

    def resolve(
        self,
        name: str,
        description: Optional[str] = None,
        document_id: Optional[str] = None
    ) -> ResolvedConcept:
        """
        Reuse the concept a candidate refers to, or create it.

        Args:
            name: Candidate name
            description: Candidate description
            document_id: Document being mined, logged with the agent call

        Returns:
            The resolved concept and whether it was created
        """
        candidates = self.find_candidates(name, description)
        match = self.choose(name, description, [concept_id for concept_id, _ in candidates], document_id)

        if match:
            logging.info(f"Resolved '{name}' to existing concept {match}")
            return ResolvedConcept(concept_id=match, created=False)

        concept_id = self.store.create_concept([name], description=description)
        return ResolvedConcept(concept_id=concept_id, created=True)
