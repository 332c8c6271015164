"""Linked-block lifecycle: create, edit, unlink, compress, promote and delete."""

from .manager import ReferenceManager

__all__ = ["ReferenceManager"]
