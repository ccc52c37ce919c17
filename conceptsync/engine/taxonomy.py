"""
Taxonomy synchronization for ConceptSync.

From a concept's fresh knowledge the tag_proposal agent suggests "is-a"
classifications. Each one is anchored on a parent concept and grouped under an
object template of that parent; the template's property columns are then
filled from the same knowledge by the property_value agent.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from ..agents.parsing import parse_property_verdict, parse_tag_proposals, parse_template_choice
from ..database import DatabaseManager
from ..errors import LLMFormatError, NotFoundError
from ..models import (
    Concept, EmbeddingType, KnowledgeDatum, ObjectTag, ObjectTagProperty, ObjectTemplate,
    PropertyTemplate, PropertyVerdictKind, TagProposal, AUTOSYNC_DEFAULT, AUTOSYNC_MANUAL
)
from .concepts import ConceptStore
from .vectors import VectorIndex


class TaxonomySynchronizer:
    """
    Maintains object tags, templates and tag properties.
    """

    def __init__(
        self,
        db: DatabaseManager,
        vectors: VectorIndex,
        runner,
        concepts: ConceptStore,
        max_name_length: int = 50,
        default_properties: Optional[List[Dict[str, Any]]] = None,
        description_weight: float = 0.75
    ):
        self.db = db
        self.vectors = vectors
        self.runner = runner
        self.concepts = concepts
        self.max_name_length = max_name_length
        self.default_properties = default_properties or []
        self.description_weight = description_weight

    def sync_taxonomy(self, concept: Concept, updated_kds: List[KnowledgeDatum]) -> bool:
        """
        Derive new tags from updated knowledge and refresh tag properties.

        Args:
            concept: The concept being synced
            updated_kds: Its knowledge data flagged as updated

        Returns:
            True if every step produced a usable answer

        Raises:
            LLMError: If an agent call fails
        """
        knowledge = " ".join(kd.extracted_text for kd in updated_kds if kd.extracted_text)
        if not knowledge:
            return True

        proposals = self.propose_tags(concept, knowledge)
        if proposals is None:
            return False

        for proposal in proposals:
            self.apply_proposal(concept, proposal, updated_kds)

        return self.sync_object_tag_properties(concept, updated_kds)

    def propose_tags(self, concept: Concept, knowledge: str) -> Optional[List[TagProposal]]:
        """
        Ask for new classifications of a concept.

        A malformed answer is retried once with the same prompt.

        Returns:
            The proposals, or None when both answers were malformed
        """
        existing = [
            {"name": tag.object_name, "description": tag.object_description or ""}
            for tag in self.db.list_object_tags(concept_id=concept.id)
        ]

        for attempt in range(2):
            response = self.runner.run_agent(
                "tag_proposal",
                concept_id=concept.id,
                concept_name=concept.name,
                concept_description=concept.description or "",
                knowledge=knowledge,
                existing_tags=json.dumps(existing, ensure_ascii=False)
            )
            try:
                return parse_tag_proposals(response)
            except LLMFormatError as e:
                logging.warning(f"Malformed tag proposal for '{concept.name}' (attempt {attempt + 1}): {e}")

        return None

    def _valid_name(self, name: str) -> bool:
        return bool(name) and len(name) <= self.max_name_length

    def apply_proposal(
        self,
        concept: Concept,
        proposal: TagProposal,
        source_kds: List[KnowledgeDatum]
    ) -> Optional[str]:
        """
        Turn one proposal into an object tag.

        Returns:
            The new tag id, or None if the proposal was skipped
        """
        if not self._valid_name(proposal.parent_name) or not self._valid_name(proposal.tag_name):
            logging.info(f"Skipping tag proposal with unusable names: {proposal.parent_name!r} / {proposal.tag_name!r}")
            return None

        parent = self.concepts.resolve_or_create_concept(
            proposal.parent_name,
            proposal.parent_description,
            soft_match=True
        )
        if parent.concept_id == concept.id:
            logging.info(f"Skipping tag '{proposal.tag_name}': '{concept.name}' cannot be its own parent")
            return None

        template_id = self.resolve_template(parent.concept_id, proposal)
        return self.add_object_tag(
            concept.id,
            parent.concept_id,
            template_id,
            proposal.tag_name,
            proposal.tag_description,
            [kd.id for kd in source_kds]
        )

    def _ordered_templates(
        self,
        parent_id: str,
        tag_name: str,
        tag_description: Optional[str] = None
    ) -> List[ObjectTemplate]:
        """
        Templates of a parent, most similar first.

        A template scores the best of its name similarity to the tag name and
        its description similarity to the tag description, the latter scaled
        by description_weight. Unscored templates keep their stored order.
        """
        templates = self.db.list_object_templates(parent_id)
        if not templates:
            return []

        scores: Dict[str, float] = {}
        hits = self.vectors.search(
            tag_name, EmbeddingType.OBJECT_TEMPLATE_NAME, context_id=parent_id, limit=len(templates)
        )
        for hit in hits:
            scores[hit.source_id] = max(scores.get(hit.source_id, -1.0), hit.score)

        if tag_description:
            hits = self.vectors.search(
                tag_description, EmbeddingType.OBJECT_TEMPLATE_DESCRIPTION,
                context_id=parent_id, limit=len(templates)
            )
            for hit in hits:
                weighted = hit.score * self.description_weight
                scores[hit.source_id] = max(scores.get(hit.source_id, -1.0), weighted)

        return sorted(templates, key=lambda t: -scores.get(t.id, -1.0))

    def resolve_template(self, parent_id: str, proposal: TagProposal) -> str:
        """
        Pick or create the template a new tag belongs to.

        No template creates one, a single template is reused, several are
        arbitrated by the template_selection agent. An unparsable answer falls
        back to the most similar template.

        Returns:
            The template id
        """
        templates = self.db.list_object_templates(parent_id)
        if not templates:
            return self.create_template(parent_id, proposal.tag_name, proposal.tag_description)
        if len(templates) == 1:
            return templates[0].id

        templates = self._ordered_templates(parent_id, proposal.tag_name, proposal.tag_description)
        parent = self.concepts.get(parent_id)
        options = [
            {"index": index, "name": template.template_name, "description": template.description or ""}
            for index, template in enumerate(templates)
        ]

        response = self.runner.run_agent(
            "template_selection",
            concept_id=parent_id,
            parent_name=parent.name,
            tag_name=proposal.tag_name,
            tag_description=proposal.tag_description,
            templates=json.dumps(options, ensure_ascii=False)
        )

        try:
            index = parse_template_choice(response, len(templates))
        except LLMFormatError as e:
            logging.warning(f"Unusable template choice for '{proposal.tag_name}', using the closest one: {e}")
            return templates[0].id

        if index is None:
            return self.create_template(parent_id, proposal.tag_name, proposal.tag_description)
        return templates[index].id

    def create_template(self, parent_id: str, name: str, description: Optional[str] = None) -> str:
        """
        Create an object template under a parent concept.

        The configured default properties are added to it.

        Returns:
            The template id
        """
        template_id = str(uuid.uuid4())
        self.db.insert_object_template(ObjectTemplate(
            id=template_id,
            user_id=self.db.user_id,
            concept_id=parent_id,
            template_name=name,
            description=description or None
        ))

        self.vectors.upsert(name, EmbeddingType.OBJECT_TEMPLATE_NAME, template_id, context_id=parent_id)
        self.vectors.upsert(description, EmbeddingType.OBJECT_TEMPLATE_DESCRIPTION, template_id, context_id=parent_id)

        for prop in self.default_properties:
            self.add_property_template(template_id, prop["name"], prop.get("type", "string"))

        logging.info(f"Created object template '{name}' under concept {parent_id}")
        return template_id

    def add_property_template(
        self,
        template_id: str,
        name: str,
        property_type: str = "string",
        autosync: str = AUTOSYNC_DEFAULT
    ) -> str:
        """
        Append a property column to a template and add it to every existing tag.

        Returns:
            The property template id

        Raises:
            NotFoundError: If the template does not exist
        """
        if not self.db.get_object_template(template_id):
            raise NotFoundError(f"Object template {template_id} not found")

        property_template = PropertyTemplate(
            id=str(uuid.uuid4()),
            user_id=self.db.user_id,
            template_id=template_id,
            name=name,
            type=property_type,
            autosync=autosync,
            position=len(self.db.list_property_templates(template_id))
        )
        self.db.insert_property_template(property_template)

        for tag in self.db.list_object_tags(template_id=template_id):
            self._add_tag_property(tag, property_template)

        return property_template.id

    def _add_tag_property(self, tag: ObjectTag, property_template: PropertyTemplate) -> None:
        self.db.insert_object_tag_property(ObjectTagProperty(
            id=str(uuid.uuid4()),
            user_id=self.db.user_id,
            object_tag_id=tag.id,
            concept_id=tag.concept_id,
            property_template_id=property_template.id,
            name=property_template.name,
            type=property_template.type,
            autosync=property_template.autosync
        ))

    def add_object_tag(
        self,
        concept_id: str,
        object_concept_id: str,
        template_id: str,
        object_name: str,
        object_description: Optional[str] = None,
        source_kds: Optional[List[str]] = None
    ) -> Optional[str]:
        """
        Tag a concept as an instance of a parent concept.

        Nothing happens when the concept would be its own parent or when it
        already has a tag under the template.

        Returns:
            The new tag id, or None if nothing was created
        """
        if concept_id == object_concept_id:
            logging.warning(f"Refusing to tag concept {concept_id} with itself")
            return None

        if self.db.find_object_tag(concept_id, template_id):
            return None

        tag = ObjectTag(
            id=str(uuid.uuid4()),
            user_id=self.db.user_id,
            concept_id=concept_id,
            object_concept_id=object_concept_id,
            template_id=template_id,
            object_name=object_name,
            object_description=object_description or None,
            source_kds=list(dict.fromkeys(source_kds or []))
        )
        self.db.insert_object_tag(tag)

        for property_template in self.db.list_property_templates(template_id):
            self._add_tag_property(tag, property_template)

        logging.info(f"Tagged concept {concept_id} as '{object_name}'")
        return tag.id

    def remove_object_tag(self, tag_id: str) -> None:
        """
        Delete an object tag and its properties.

        Raises:
            NotFoundError: If the tag does not exist
        """
        if not self.db.get_object_tag(tag_id):
            raise NotFoundError(f"Object tag {tag_id} not found")
        self.db.delete_object_tag(tag_id)

    def sync_object_tag_properties(self, concept: Concept, updated_kds: List[KnowledgeDatum]) -> bool:
        """
        Refresh the property values of a concept's tags from updated knowledge.

        Manual properties are never touched. Each (property, knowledge) pair
        is one agent call answering a new value, the same value, or nothing
        relevant.

        Returns:
            True if every answer was usable

        Raises:
            LLMError: If an agent call fails
        """
        ok = True

        for tag in self.db.list_object_tags(concept_id=concept.id):
            for prop in self.db.list_object_tag_properties(object_tag_id=tag.id):
                if prop.autosync == AUTOSYNC_MANUAL:
                    continue

                value = prop.value
                sources = list(prop.source_kds)

                for kd in updated_kds:
                    if not kd.extracted_text:
                        continue

                    response = self.runner.run_agent(
                        "property_value",
                        concept_id=concept.id,
                        concept_name=concept.name,
                        concept_description=concept.description or "",
                        tag_name=tag.object_name,
                        tag_description=tag.object_description or "",
                        property_name=prop.name,
                        property_type=prop.type,
                        previous_value=value if value is not None else "None",
                        knowledge=kd.extracted_text
                    )

                    try:
                        verdict = parse_property_verdict(response)
                    except LLMFormatError as e:
                        logging.warning(f"Unusable value for property '{prop.name}' of '{concept.name}': {e}")
                        ok = False
                        continue

                    if verdict.kind == PropertyVerdictKind.NEW_VALUE:
                        value = verdict.value
                        if kd.id not in sources:
                            sources.append(kd.id)
                    elif verdict.kind == PropertyVerdictKind.SAME_VALUE:
                        if kd.id not in sources:
                            sources.append(kd.id)

                if value != prop.value or sources != prop.source_kds:
                    self.db.update_object_tag_property(prop.id, value=value, source_kds=sources)

        return ok
