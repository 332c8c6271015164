"""Pure building blocks: ordering, hashing, token estimates and resolution."""

from .positions import (
    allocate_between,
    allocate_at_end,
    allocate_at_index,
    allocate_relative_to,
    needs_renumber,
    renumbered
)
from .hashing import content_hash, NO_HASH
from .tokens import estimate_tokens
from .resolve import collect_reference_ids, resolve_one, resolve_many

__all__ = [
    "allocate_between",
    "allocate_at_end",
    "allocate_at_index",
    "allocate_relative_to",
    "needs_renumber",
    "renumbered",
    "content_hash",
    "NO_HASH",
    "estimate_tokens",
    "collect_reference_ids",
    "resolve_one",
    "resolve_many"
]
