"""
Configuration management for Kontextor.

This module handles loading and accessing configuration values from config.yaml.
It provides a centralized way to manage all settings and makes it easy to
modify behavior without changing code.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging


class ConfigManager:
    """
    Manages configuration loading and access for Kontextor.
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

        except (OSError, yaml.YAMLError) as e:
            logging.error(f"Failed to load configuration: {e}")
            # Fall back to default configuration
            self._config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values as fallback."""
        return {
            "ai": {
                "ollama_host": "http://localhost:11434",
                "model": "gpt-oss:latest",
                "timeout": 60.0
            },
            "database": {
                "filename": "kontextor.db"
            },
            "paths": {
                "log_file": "kontextor.log"
            },
            "logging": {
                "level": "INFO",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "blocks": {
                "default_kind": "note",
                "default_zone": "WORKING"
            },
            "assembly": {
                "system_prompt_kind": "system_prompt",
                "separator": "\n\n",
                "reference_label": "Reference Material:",
                "working_label": "Current Context:",
                "prompt_placeholder": "[Your prompt here]"
            },
            "tokens": {
                "chars_per_token": 4
            },
            "budgets": {
                "permanent": 50000,
                "stable": 50000,
                "working": 50000,
                "total": 200000
            },
            "ordering": {
                "min_gap": 1e-9
            },
            "workflows": {
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
            config.get("ai.model")  # Returns "gpt-oss:latest"
            config.get("assembly.working_label")  # Returns "Current Context:"
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
        """Get AI model name."""
        return self.get("ai.model", "gpt-oss:latest")

    @property
    def ollama_timeout(self) -> float:
        """Get Ollama timeout."""
        return self.get("ai.timeout", 60.0)

    @property
    def database_filename(self) -> str:
        """Get database filename."""
        return self.get("database.filename", "kontextor.db")

    @property
    def log_filename(self) -> str:
        """Get log file name."""
        return self.get("paths.log_file", "kontextor.log")

    @property
    def default_kind(self) -> str:
        return self.get("blocks.default_kind", "note")

    @property
    def default_zone(self) -> str:
        return self.get("blocks.default_zone", "WORKING")

    @property
    def system_prompt_kind(self) -> str:
        """Get the block kind that marks the system prompt."""
        return self.get("assembly.system_prompt_kind", "system_prompt")

    @property
    def assembly_separator(self) -> str:
        return self.get("assembly.separator", "\n\n")

    @property
    def reference_label(self) -> str:
        """Get the label prefixed to the STABLE zone message."""
        return self.get("assembly.reference_label", "Reference Material:")

    @property
    def working_label(self) -> str:
        """Get the label prefixed to the WORKING zone message."""
        return self.get("assembly.working_label", "Current Context:")

    @property
    def prompt_placeholder(self) -> str:
        return self.get("assembly.prompt_placeholder", "[Your prompt here]")

    @property
    def chars_per_token(self) -> int:
        """Get the character-per-token ratio used for token estimates."""
        return self.get("tokens.chars_per_token", 4)

    @property
    def budgets(self) -> Dict[str, int]:
        """Get per-zone token budgets."""
        return self.get("budgets", {
            "permanent": 50000,
            "stable": 50000,
            "working": 50000,
            "total": 200000
        })

    @property
    def min_order_gap(self) -> float:
        """Get the smallest gap between order keys before a zone should be renumbered."""
        return self.get("ordering.min_gap", 1e-9)

    @property
    def workflow_definitions(self) -> Dict[str, Any]:
        """Get workflow definitions from configuration."""
        return self.get("workflows.definitions", {})

    def get_workflow_definition(self, workflow_name: str) -> Optional[Dict[str, Any]]:
        """
        Get a specific workflow definition by name.

        Args:
            workflow_name: Name of the workflow

        Returns:
            Workflow definition dictionary or None if not found
        """
        return self.workflow_definitions.get(workflow_name)

    def list_workflows(self) -> List[str]:
        return list(self.workflow_definitions.keys())


# Global configuration instance
config = ConfigManager()


def get_config() -> ConfigManager:
    """
    Get the global configuration instance.

    Returns:
        The global ConfigManager instance
    """
    return config
