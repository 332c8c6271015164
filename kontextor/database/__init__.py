"""Database operations and state tracking."""

from .manager import DatabaseManager

__all__ = ["DatabaseManager"]
