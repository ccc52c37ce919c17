"""
Entity mining for ConceptSync.

Two agent calls per block: one guesses which entity types matter given the
document so far, the other lists the entities of those types in the block.
Every candidate is resolved to a concept through the fuzzy dedup procedure.
"""

import logging
from typing import List, Optional, Tuple

from ..agents.parsing import parse_entities, parse_entity_types
from ..database import DatabaseManager
from ..errors import BlockNotFoundError, LLMFormatError
from ..models import Document
from .concepts import ConceptStore, better_name
from .text import block_to_text, build_context, concept_mentions, find_block


class EntityMiner:
    """
    Finds the concepts a block talks about.
    """

    def __init__(self, db: DatabaseManager, runner, concepts: ConceptStore):
        self.db = db
        self.runner = runner
        self.concepts = concepts

    def _known_names(self, document: Document, block_id: str, block) -> List[str]:
        """Canonical names of the concepts already recorded for a block."""
        concept_ids = concept_mentions(block)
        entry = self.db.get_ledger_entry(document.id, block_id)
        if entry:
            concept_ids += [c for c in entry.mentioned_concepts if c not in concept_ids]

        names = []
        for concept_id in concept_ids:
            concept = self.concepts.find(concept_id)
            if concept:
                names.append(concept.name)
        return names

    def mine_entities(
        self,
        document: Document,
        block_id: str,
        created: Optional[List[str]] = None
    ) -> Optional[List[Tuple[str, str]]]:
        """
        List the entities of one block and resolve each to a concept.

        Args:
            document: The document holding the block
            block_id: The block to mine
            created: Optional list that receives the ids of concepts created
                while resolving

        Returns:
            (name, concept_id) pairs, or None when the model's answer could
            not be parsed

        Raises:
            BlockNotFoundError: If the block is not in the document
            LLMError: If an agent call fails
        """
        block = find_block(document.blocks, block_id)
        if not block:
            raise BlockNotFoundError(f"Block {block_id} not found in document {document.id}")

        text = block_to_text(block)
        if not text.strip():
            return []

        known = self._known_names(document, block_id, block)
        known_lower = {name.lower() for name in known}

        try:
            types_response = self.runner.run_agent(
                "entity_types",
                document_id=document.id,
                context=build_context(document.title, document.blocks, block_id),
                current_block=text
            )
            entity_types = parse_entity_types(types_response)

            entities_response = self.runner.run_agent(
                "entity_extraction",
                document_id=document.id,
                entity_types=", ".join(entity_types),
                known_entities=", ".join(known) if known else "None",
                text=text
            )
            candidates = parse_entities(entities_response)
        except LLMFormatError as e:
            logging.warning(f"Could not parse entities of block {block_id}: {e}")
            return None

        results = []
        for candidate in candidates:
            if better_name(candidate.name).lower() in known_lower:
                continue

            try:
                resolved = self.concepts.resolve_or_create_concept(
                    candidate.name,
                    candidate.description,
                    document_id=document.id
                )
            except ValueError as e:
                logging.warning(f"Skipping entity '{candidate.name}': {e}")
                continue

            results.append((candidate.name, resolved.concept_id))
            if resolved.created and created is not None:
                created.append(resolved.concept_id)

        logging.info(f"Mined {len(results)} entities from block {block_id}")
        return results
