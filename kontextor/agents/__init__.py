"""AI agents that consume assembled workspace context."""

from .runner import AgentRunner
from .registry import agent_registry, AgentConfig, AgentRegistry

__all__ = ["AgentRunner", "agent_registry", "AgentConfig", "AgentRegistry"]
