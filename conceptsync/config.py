"""
Configuration management for ConceptSync.

This module handles loading and accessing configuration values from config.yaml.
Every threshold the engine uses for matching concepts, every model name and the
prompt overrides for the agents live here so they can be tuned without code
changes.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging


class ConfigManager:
    """
    Manages configuration loading and access for ConceptSync.
    """

    def __init__(self, config_path: str = "config.yaml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}

            logging.info(f"Configuration loaded from {self.config_path}")

        except Exception as e:
            logging.error(f"Failed to load configuration: {e}")
            # Fall back to default configuration
            self._config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values as fallback."""
        return {
            "ai": {
                "ollama_host": "http://localhost:11434",
                "model": "gemma3",
                "embedding_model": "nomic-embed-text",
                "timeout": 60.0
            },
            "database": {
                "filename": "conceptsync.db",
                "user_id": "local"
            },
            "concepts": {
                "soft_match_threshold": 0.9,
                "match_threshold": 0.5,
                "candidate_limit": 3,
                "description_weight": 0.75,
                "delete_orphans": False
            },
            "knowledge": {
                "extract_quotes": True,
                "collect_mentions": True
            },
            "taxonomy": {
                "max_name_length": 50,
                "default_properties": []
            },
            "paths": {
                "log_file": "conceptsync.log"
            },
            "logging": {
                "level": "INFO",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "import": {
                "default_json_path": "./documents.json"
            },
            "agents": {
                "definitions": {}
            }
        }

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "ai.model")
            default: Default value if key is not found

        Returns:
            The configuration value

        Examples:
            config.get("ai.model")  # Returns "gemma3"
            config.get("concepts.match_threshold")  # Returns 0.5
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get an entire configuration section.

        Args:
            section: Name of the configuration section

        Returns:
            Dictionary containing the section configuration
        """
        return self._config.get(section, {})

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    # Convenience properties for commonly used values

    @property
    def ollama_host(self) -> str:
        """Get Ollama host URL."""
        return self.get("ai.ollama_host", "http://localhost:11434")

    @property
    def model_name(self) -> str:
        """Get the completion model name."""
        return self.get("ai.model", "gemma3")

    @property
    def embedding_model(self) -> str:
        """Get the embedding model name."""
        return self.get("ai.embedding_model", "nomic-embed-text")

    @property
    def ollama_timeout(self) -> float:
        """Get Ollama timeout."""
        return self.get("ai.timeout", 60.0)

    @property
    def database_filename(self) -> str:
        """Get database filename."""
        return self.get("database.filename", "conceptsync.db")

    @property
    def user_id(self) -> str:
        """Get the id of the user that owns every row written by this process."""
        return self.get("database.user_id", "local")

    @property
    def soft_match_threshold(self) -> float:
        """Similarity at or above which a soft match reuses an existing concept."""
        return self.get("concepts.soft_match_threshold", 0.9)

    @property
    def match_threshold(self) -> float:
        """Minimum weighted similarity for a concept to become a dedup candidate."""
        return self.get("concepts.match_threshold", 0.5)

    @property
    def candidate_limit(self) -> int:
        """Maximum number of dedup candidates shown to the LLM."""
        return self.get("concepts.candidate_limit", 3)

    @property
    def description_weight(self) -> float:
        """Weight applied to description similarity during dedup."""
        return self.get("concepts.description_weight", 0.75)

    @property
    def delete_orphans(self) -> bool:
        """Whether concepts left without knowledge or tags are deleted by sync-all."""
        return self.get("concepts.delete_orphans", False)

    @property
    def extract_quotes(self) -> bool:
        """Whether processed knowledge data get their supporting quotes."""
        return self.get("knowledge.extract_quotes", True)

    @property
    def collect_mentions(self) -> bool:
        """Whether new concepts are looked up in the rest of the user's notes."""
        return self.get("knowledge.collect_mentions", True)

    @property
    def max_tag_name_length(self) -> int:
        """Longest accepted parent or tag name in a tag proposal."""
        return self.get("taxonomy.max_name_length", 50)

    @property
    def default_properties(self) -> List[Dict[str, str]]:
        """Property templates added to every newly created object template."""
        return self.get("taxonomy.default_properties", []) or []

    @property
    def log_filename(self) -> str:
        """Get log file name."""
        return self.get("paths.log_file", "conceptsync.log")

    @property
    def agent_definitions(self) -> Dict[str, Any]:
        """Get agent definitions from configuration."""
        return self.get("agents.definitions", {}) or {}

    def get_agent_definition(self, agent_name: str) -> Optional[Dict[str, Any]]:
        """
        Get a specific agent definition by name.

        Args:
            agent_name: Name of the agent

        Returns:
            Agent definition dictionary or None if not found
        """
        return self.agent_definitions.get(agent_name)


# Global configuration instance
config = ConfigManager()


def get_config() -> ConfigManager:
    """
    Get the global configuration instance.

    Returns:
        The global ConfigManager instance
    """
    return config
