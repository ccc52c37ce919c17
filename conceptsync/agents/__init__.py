"""AI agents: prompts, the Ollama runner and response parsers."""

from .runner import AgentRunner
from .registry import agent_registry, AgentConfig, AgentRegistry
from .manager import agent_manager, AgentManager, AgentDefinition

__all__ = [
    "AgentRunner",
    "agent_registry",
    "AgentConfig",
    "AgentRegistry",
    "agent_manager",
    "AgentManager",
    "AgentDefinition"
]
