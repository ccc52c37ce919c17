"""
AI Agent runner for ConceptSync.

This module handles communication with Ollama: text completion for the agents
registered in the agent manager, and batched embeddings for the vector index.
Every completion is logged to the database for reproducibility.
"""

import httpx
import json
import time
from typing import Any, Dict, List, Optional
import logging

from ..config import config
from ..database import DatabaseManager
from ..errors import LLMError
from .manager import AgentManager, agent_manager as default_agent_manager


class AgentRunner:
    """
    Manages communication with Ollama and runs AI agents.
    """

    def __init__(
        self,
        ollama_host: Optional[str] = None,
        model: Optional[str] = None,
        database_manager: Optional[DatabaseManager] = None,
        agent_manager: Optional[AgentManager] = None,
        embedding_model: Optional[str] = None
    ):
        """
        Initialize the agent runner.

        Args:
            ollama_host: The Ollama server URL (defaults to config value)
            model: The model name to use for completions (defaults to config value)
            database_manager: Optional database manager used to log every call
            agent_manager: Agent manager providing the prompts (defaults to the global one)
            embedding_model: The model name to use for embeddings (defaults to config value)
        """
        self.ollama_host = ollama_host or config.ollama_host
        self.model = model or config.model_name
        self.embedding_model = embedding_model or config.embedding_model
        self.client = httpx.Client(timeout=config.ollama_timeout)
        self.db = database_manager
        self.agent_manager = agent_manager or default_agent_manager

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.client.close()

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a JSON payload to Ollama and return the decoded answer.

        Raises:
            LLMError: If Ollama cannot be reached or answers with an error
        """
        try:
            response = self.client.post(f"{self.ollama_host}{path}", json=payload)
            response.raise_for_status()
            return response.json()
        except httpx.RequestError as e:
            raise LLMError(f"Failed to connect to Ollama: {e}")
        except httpx.HTTPStatusError as e:
            raise LLMError(f"Ollama request failed: {e}")
        except ValueError as e:
            raise LLMError(f"Ollama returned invalid JSON: {e}")

    def complete(
        self,
        prompt: str,
        system_prompt: str = "",
        agent_name: str = "unknown",
        input_data: str = "",
        document_id: Optional[str] = None,
        concept_id: Optional[str] = None
    ) -> str:
        """
        Run one completion and log it.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt for agent persona
            agent_name: Name of the agent making the call
            input_data: Original input data for logging
            document_id: Related document ID (optional)
            concept_id: Related concept ID (optional)

        Returns:
            The model's response text

        Raises:
            LLMError: If the request fails
        """
        start_time = time.time()
        success = False
        error_message = None
        raw_response = ""

        try:
            payload = {
                "model": self.model,
                "prompt": prompt,
                "stream": False
            }

            if system_prompt:
                payload["system"] = system_prompt

            result = self._post("/api/generate", payload)
            raw_response = result.get("response", "")
            success = True

            return raw_response

        except LLMError as e:
            error_message = str(e)
            raise
        finally:
            # Log the AI call to database for reproducibility
            execution_time_ms = int((time.time() - start_time) * 1000)

            if self.db and self.db.connection:
                try:
                    self.db.log_ai_agent_call(
                        agent_name=agent_name,
                        input_data=input_data,
                        system_prompt=system_prompt,
                        user_prompt=prompt,
                        model_name=self.model,
                        raw_response=raw_response,
                        success=success,
                        error_message=error_message,
                        execution_time_ms=execution_time_ms,
                        document_id=document_id,
                        concept_id=concept_id
                    )
                except Exception as log_error:
                    logging.warning(f"Failed to log AI agent call: {log_error}")

    def run_agent(
        self,
        agent_name: str,
        document_id: Optional[str] = None,
        concept_id: Optional[str] = None,
        **variables
    ) -> str:
        """
        Render an agent's prompts and run the completion.

        Args:
            agent_name: Name of the registered agent
            document_id: Related document ID, logged with the call
            concept_id: Related concept ID, logged with the call
            **variables: Values for the agent's user prompt template

        Returns:
            The raw model response

        Raises:
            ValueError: If the agent is unknown or a template variable is missing
            LLMError: If the request fails
        """
        system_prompt = self.agent_manager.get_system_prompt(agent_name)
        prompt = self.agent_manager.render_user_prompt(agent_name, **variables)

        response = self.complete(
            prompt=prompt,
            system_prompt=system_prompt,
            agent_name=agent_name,
            input_data=json.dumps(variables, default=str),
            document_id=document_id,
            concept_id=concept_id
        )
        logging.debug(f"Agent {agent_name} answered: {response[:200]}")
        return response

    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts.

        Args:
            texts: Texts to embed

        Returns:
            One vector per text, in order

        Raises:
            LLMError: If the request fails or the answer has the wrong shape
        """
        if not texts:
            return []

        result = self._post("/api/embed", {
            "model": self.embedding_model,
            "input": texts
        })

        embeddings = result.get("embeddings")
        if not isinstance(embeddings, list) or len(embeddings) != len(texts):
            raise LLMError(
                f"Ollama returned {len(embeddings) if isinstance(embeddings, list) else 'no'} "
                f"embeddings for {len(texts)} texts"
            )
        return embeddings
