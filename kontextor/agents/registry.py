"""
Agent Registry for Kontextor.

This module defines the registry of available AI agents and their
configurations. The agents operate on assembled block context: one answers
prompts against a workspace, one rewrites a block's content more compactly.
"""

from typing import Dict, List, Optional
from dataclasses import dataclass


@dataclass
class AgentConfig:
    """
    Configuration for an AI agent.
    """
    name: str
    description: str
    system_prompt: str
    timeout: float = 60.0


class AgentRegistry:
    """
    Registry of all available AI agents and their configurations.
    """

    def __init__(self):
        """Initialize the agent registry with default agents."""
        self._agents: Dict[str, AgentConfig] = {}
        self._register_default_agents()

    def _register_default_agents(self):
        """Register the default agents used by Kontextor."""

        # Assistant - answers prompts against an assembled workspace context.
        # Its system prompt is only a fallback: a workspace's own system-prompt
        # block takes precedence.
        self.register_agent(AgentConfig(
            name="assistant",
            description="Answers prompts using the workspace's assembled context",
            system_prompt="""You are a helpful assistant. Use the provided context blocks to answer the user's request accurately and concisely."""
        ))

        # Compressor - rewrites a single block more compactly
        self.register_agent(AgentConfig(
            name="compressor",
            description="Rewrites a block's content using fewer tokens",
            system_prompt="""You are a careful editor. Rewrite the text you are given so it uses as few words as possible while keeping every fact, instruction, name, number and constraint.

Rules:
1. Do not add information that is not in the original
2. Keep code, identifiers and quoted text exactly as written
3. Prefer lists over prose where it saves space
4. Output only the rewritten text, with no preamble or explanation"""
        ))

    def register_agent(self, config: AgentConfig) -> None:
        """
        Register a new agent configuration.

        Args:
            config: The agent configuration to register
        """
        self._agents[config.name] = config

    def get_agent(self, name: str) -> Optional[AgentConfig]:
        """
        Get an agent configuration by name.

        Args:
            name: The name of the agent

        Returns:
            The agent configuration, or None if not found
        """
        return self._agents.get(name)

    def list_agents(self) -> List[str]:
        """
        Get a list of all registered agent names.

        Returns:
            List of agent names
        """
        return list(self._agents.keys())


# Global agent registry instance
agent_registry = AgentRegistry()
