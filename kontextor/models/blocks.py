"""
Block models for Kontextor.

A block is the unit of context. It is either REGULAR (it owns its content) or
LINKED (its content lives at the canonical block named by ``reference_id``).
"""

from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field


class Zone(str, Enum):
    """
    The three priority tiers a block can live in.

    PERMANENT holds core instructions, STABLE holds reference material and
    WORKING holds the current task context.
    """

    PERMANENT = "PERMANENT"
    STABLE = "STABLE"
    WORKING = "WORKING"


# Assembly and serialization order
ZONE_ORDER = (Zone.PERMANENT, Zone.STABLE, Zone.WORKING)


class Block(BaseModel):
    """
    A single content block owned by exactly one workspace.
    """

    block_id: str = Field(
        ...,
        description="Unique identifier of the block"
    )

    workspace_id: str = Field(
        ...,
        description="The owning workspace; never changes after creation"
    )

    content: str = Field(
        default="",
        description="The block's own text; empty while the block is linked"
    )

    kind: str = Field(
        default="note",
        description="Opaque tag such as note, guideline or system_prompt"
    )

    zone: Zone = Field(
        default=Zone.WORKING,
        description="Priority tier controlling assembly order and carry-forward"
    )

    order_key: float = Field(
        default=1.0,
        description="Position among siblings in the same workspace and zone"
    )

    reference_id: Optional[str] = Field(
        default=None,
        description="Canonical block this block delegates its content to"
    )

    content_hash: Optional[str] = Field(
        default=None,
        description="Fingerprint of content, kept only on regular non-empty blocks"
    )

    token_count: Optional[int] = Field(
        default=None,
        description="Cached token estimate; recomputable from content"
    )

    original_token_count: Optional[int] = Field(
        default=None,
        description="Token estimate before any compression"
    )

    is_draft: bool = False
    is_compressed: bool = False
    compression_strategy: Optional[str] = None
    compressed_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def is_linked(self) -> bool:
        """True when the block delegates its content to a canonical block."""
        return self.reference_id is not None

    @property
    def canonical_id(self) -> str:
        """The id whose row actually holds this block's content."""
        return self.reference_id if self.reference_id is not None else self.block_id
