"""
Agent Manager for ConceptSync.

This module provides the AgentManager class that layers prompt overrides from
configuration on top of the built-in agents and renders the prompts sent to
the model.
"""

import logging
import re
from typing import Dict, List, Optional, Any
from dataclasses import dataclass

from .registry import AgentConfig, AgentRegistry
from ..config import config


# Template variables the engine passes to each built-in agent
AGENT_VARIABLES = {
    "knowledge_extraction": ["concept_name", "concept_description", "text"],
    "knowledge_quotes": ["concept_name", "concept_description", "knowledge", "text"],
    "entity_types": ["context", "current_block"],
    "entity_extraction": ["entity_types", "known_entities", "text"],
    "concept_match": ["name", "description", "candidates"],
    "tag_proposal": ["concept_name", "concept_description", "knowledge", "existing_tags"],
    "template_selection": ["parent_name", "tag_name", "tag_description", "templates"],
    "property_value": [
        "concept_name", "concept_description", "tag_name", "tag_description",
        "property_name", "property_type", "previous_value", "knowledge"
    ],
    "concept_description": ["old_definition", "new_knowledges"],
    "concept_presence": ["concept_name", "concept_description", "aliases", "text"],
}


@dataclass
class AgentDefinition:
    """
    Configuration-based agent definition loaded from YAML.
    """
    name: str
    description: str
    system_prompt: str
    user_prompt_template: str
    timeout: float = 60.0

    def to_agent_config(self) -> AgentConfig:
        """Convert to the AgentConfig stored in the registry."""
        return AgentConfig(
            name=self.name,
            description=self.description,
            system_prompt=self.system_prompt,
            user_prompt_template=self.user_prompt_template,
            timeout=self.timeout
        )


class AgentManager:
    """
    Manages AI agents: built-in prompts plus overrides from configuration.
    """

    def __init__(self, agent_registry: Optional[AgentRegistry] = None):
        """
        Initialize the agent manager.

        Args:
            agent_registry: Optional agent registry to use
        """
        self.agent_registry = agent_registry or AgentRegistry()
        self.agent_definitions: Dict[str, AgentDefinition] = {}
        self._load_agent_definitions()

    def _load_agent_definitions(self):
        """Load agent definitions from configuration."""
        try:
            agent_defs = config.agent_definitions

            for agent_name, agent_config in agent_defs.items():
                try:
                    base = self.agent_registry.get_agent(agent_name)

                    # A new agent needs every field, an override only the changed ones
                    if not base:
                        for field_name in ['description', 'system_prompt', 'user_prompt_template']:
                            if field_name not in agent_config:
                                raise ValueError(f"Missing required field '{field_name}' in agent '{agent_name}'")

                    agent_def = AgentDefinition(
                        name=agent_name,
                        description=agent_config.get('description', base.description if base else ""),
                        system_prompt=agent_config.get('system_prompt', base.system_prompt if base else ""),
                        user_prompt_template=agent_config.get(
                            'user_prompt_template', base.user_prompt_template if base else ""
                        ),
                        timeout=agent_config.get('timeout', base.timeout if base else 60.0)
                    )

                    self.agent_definitions[agent_name] = agent_def
                    self.agent_registry.register_agent(agent_def.to_agent_config())

                    logging.info(f"Loaded agent definition: {agent_name}")

                except Exception as e:
                    logging.error(f"Failed to load agent definition '{agent_name}': {e}")

        except Exception as e:
            logging.error(f"Failed to load agent definitions: {e}")

    def get_agent(self, agent_name: str) -> Optional[AgentConfig]:
        """
        Get the effective configuration of an agent.

        Args:
            agent_name: Name of the agent

        Returns:
            Agent configuration or None if not found
        """
        return self.agent_registry.get_agent(agent_name)

    def get_agent_definition(self, agent_name: str) -> Optional[AgentDefinition]:
        """
        Get the configuration override of an agent, if one was loaded.

        Args:
            agent_name: Name of the agent

        Returns:
            Agent definition or None if the agent is not overridden
        """
        return self.agent_definitions.get(agent_name)

    def list_agents(self) -> List[str]:
        """
        Get a list of all available agent names.

        Returns:
            List of agent names
        """
        return self.agent_registry.list_agents()

    def render_user_prompt(self, agent_name: str, **kwargs) -> str:
        """
        Render a user prompt for an agent using its template.

        Args:
            agent_name: Name of the agent
            **kwargs: Template variables

        Returns:
            Rendered user prompt

        Raises:
            ValueError: If agent not found or template rendering fails
        """
        agent = self.get_agent(agent_name)
        if not agent:
            raise ValueError(f"Agent '{agent_name}' not found")

        try:
            # Use string format method for {variable} syntax
            return agent.user_prompt_template.format(**kwargs)
        except KeyError as e:
            raise ValueError(f"Missing template variable {e} for agent '{agent_name}'")
        except Exception as e:
            raise ValueError(f"Failed to render template for agent '{agent_name}': {e}")

    def get_system_prompt(self, agent_name: str) -> str:
        """
        Get the system prompt for an agent.

        Args:
            agent_name: Name of the agent

        Returns:
            System prompt

        Raises:
            ValueError: If agent not found
        """
        agent = self.get_agent(agent_name)
        if not agent:
            raise ValueError(f"Agent '{agent_name}' not found")

        return agent.system_prompt

    def validate_agent_definition(self, agent_name: str) -> Dict[str, Any]:
        """
        Validate an agent and return validation results.

        Args:
            agent_name: Name of the agent to validate

        Returns:
            Dictionary with validation results
        """
        results = {
            'valid': True,
            'errors': [],
            'warnings': []
        }

        agent = self.get_agent(agent_name)
        if not agent:
            results['valid'] = False
            results['errors'].append(f"Agent '{agent_name}' not found")
            return results

        if not agent.system_prompt.strip():
            results['valid'] = False
            results['errors'].append("System prompt cannot be empty")

        if not agent.user_prompt_template.strip():
            results['valid'] = False
            results['errors'].append("User prompt template cannot be empty")

        # A template using a variable the engine never passes cannot be rendered
        template_vars = self._extract_template_variables(agent.user_prompt_template)
        if agent_name in AGENT_VARIABLES:
            unknown_vars = set(template_vars) - set(AGENT_VARIABLES[agent_name])
            if unknown_vars:
                results['valid'] = False
                results['errors'].append(f"Unknown template variables: {', '.join(sorted(unknown_vars))}")

            missing_vars = set(AGENT_VARIABLES[agent_name]) - set(template_vars)
            if missing_vars:
                results['warnings'].append(f"Template ignores variables: {', '.join(sorted(missing_vars))}")

        if agent.timeout <= 0:
            results['valid'] = False
            results['errors'].append("Timeout must be positive")

        return results

    def _extract_template_variables(self, template: str) -> List[str]:
        """
        Extract template variables from a template string.

        Args:
            template: Template string

        Returns:
            List of variable names
        """
        # Find all {variable} patterns, skipping escaped {{ }}
        pattern = r'(?<!\{)\{([^{}]+)\}(?!\})'
        matches = re.findall(pattern, template)

        return list(set(matches))

    def reload_definitions(self):
        """Reload agent definitions from configuration."""
        self.agent_definitions.clear()
        self.agent_registry = AgentRegistry()
        config.reload()
        self._load_agent_definitions()
        logging.info("Agent definitions reloaded")


# Global agent manager instance
agent_manager = AgentManager()
