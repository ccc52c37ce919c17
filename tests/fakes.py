"""
Test doubles shared by the engine tests.

ScriptedRunner stands in for AgentRunner: agent answers are queued per agent
name and embeddings are deterministic. Unless a test pins a vector for a
text, every distinct text gets its own orthogonal unit vector, so only
identical texts are similar.
"""

import math
import shutil
import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List

from conceptsync.agents.parsing import RECORD_DELIMITER, TUPLE_DELIMITER
from conceptsync.database import DatabaseManager
from conceptsync.engine import KnowledgeEngine
from conceptsync.models import Block, InlineContent


DIMENSION = 64

# Axes reserved for vectors pinned by tests; auto-assigned vectors never use them
PINNED_MAIN = DIMENSION - 1
PINNED_SIDE = DIMENSION - 2


def axis(index: int) -> List[float]:
    vector = [0.0] * DIMENSION
    vector[index] = 1.0
    return vector


def tilted(similarity: float) -> List[float]:
    """A unit vector whose cosine similarity to axis(PINNED_MAIN) is the given value."""
    vector = [0.0] * DIMENSION
    vector[PINNED_MAIN] = similarity
    vector[PINNED_SIDE] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vector


class ScriptedRunner:
    """
    Fake agent runner with queued answers and deterministic embeddings.
    """

    def __init__(self):
        self.responses: Dict[str, list] = {}
        self.defaults: Dict[str, object] = {}
        self.calls: List[tuple] = []
        self.vectors: Dict[str, List[float]] = {}
        self.embed_calls: List[List[str]] = []
        self._next_axis = 0

    def script(self, agent_name: str, *responses) -> None:
        """Queue answers for an agent. An answer may be a string, a callable or an exception."""
        self.responses.setdefault(agent_name, []).extend(responses)

    def set_default(self, agent_name: str, response) -> None:
        """Answer used once an agent's queue is empty."""
        self.defaults[agent_name] = response

    def run_agent(self, agent_name, document_id=None, concept_id=None, **variables):
        self.calls.append((agent_name, variables))

        queue = self.responses.get(agent_name)
        if queue:
            response = queue.pop(0)
        elif agent_name in self.defaults:
            response = self.defaults[agent_name]
        else:
            raise AssertionError(f"Unexpected call to agent '{agent_name}' with {variables}")

        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(**variables)
        return response

    def calls_to(self, agent_name: str) -> List[dict]:
        return [variables for name, variables in self.calls if name == agent_name]

    def vector_for(self, text: str) -> List[float]:
        if text not in self.vectors:
            if self._next_axis >= PINNED_SIDE:
                raise AssertionError("Out of orthogonal test vectors")
            self.vectors[text] = axis(self._next_axis)
            self._next_axis += 1
        return self.vectors[text]

    def embed(self, texts: List[str]) -> List[List[float]]:
        self.embed_calls.append(list(texts))
        return [self.vector_for(text) for text in texts]


def entities(*records) -> str:
    """Format (name, type, description) records as the entity extraction agent does."""
    return RECORD_DELIMITER.join(TUPLE_DELIMITER.join(record) for record in records)


def tag_proposals(*records) -> str:
    """Format (parent, parent description, tag, tag description) records as the tag proposal agent does."""
    delimiter = f"**{TUPLE_DELIMITER}**"
    return RECORD_DELIMITER.join(
        "(" + delimiter.join(f'"{field}"' for field in record) + ")" for record in records
    )


def paragraph(block_id: str, text: str, children: List[Block] = None) -> Block:
    return Block(id=block_id, content=[InlineContent(text=text)], children=children or [])


def make_settings(**overrides) -> SimpleNamespace:
    """Engine settings with the shipped defaults."""
    values = {
        "soft_match_threshold": 0.9,
        "match_threshold": 0.5,
        "candidate_limit": 3,
        "description_weight": 0.75,
        "delete_orphans": False,
        "max_tag_name_length": 50,
        "default_properties": [],
        "extract_quotes": False,
        "collect_mentions": True,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


class EngineTestCase(unittest.TestCase):
    """Base test case with a fresh database, a scripted runner and an engine."""

    settings_overrides: dict = {}

    def setUp(self):
        """Set up test database and engine."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = Path(self.temp_dir) / "test.db"
        self.db = DatabaseManager(str(self.db_path), user_id="tester")
        self.db.connect()
        self.db.initialize_database()

        self.runner = ScriptedRunner()
        self.engine = KnowledgeEngine(self.db, self.runner, make_settings(**self.settings_overrides))

    def tearDown(self):
        """Clean up test database."""
        self.db.disconnect()
        shutil.rmtree(self.temp_dir, ignore_errors=True)
