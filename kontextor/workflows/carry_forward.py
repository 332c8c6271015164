"""
Carry-forward policy for multi-step workflows.

When a workflow advances, blocks of the outgoing step's workspace are brought
into the new step's workspace:

- PERMANENT and STABLE blocks become linked blocks pointing at the ultimate
  canonical, so guidance edited in any step is edited in every step
- WORKING blocks become independent regular copies, so step-local drafts
  never leak between steps
"""

import logging
from typing import Dict, Iterable, Optional

from ..core.resolve import collect_reference_ids, resolve_one
from ..models import Zone
from ..references import ReferenceManager

# Zones whose blocks stay shared across steps
LINKED_ZONES = frozenset({Zone.PERMANENT, Zone.STABLE})


class CarryForwardPolicy:
    """
    Applies the link-or-copy rule when blocks move to the next workflow step.
    """

    def __init__(self, references: ReferenceManager):
        """
        Initialize the policy.

        Args:
            references: Reference manager used for every block it creates
        """
        self.references = references
        self.db = references.db

    def carry_forward(
        self,
        source_workspace_id: str,
        target_workspace_id: str,
        zones: Optional[Iterable[Zone]] = None
    ) -> Dict[str, int]:
        """
        Carry eligible blocks from one workspace into another.

        Args:
            source_workspace_id: The outgoing step's workspace
            target_workspace_id: The new step's workspace
            zones: Zones eligible for carrying; all zones if None

        Returns:
            Dictionary with "linked", "copied" and "skipped" counts
        """
        eligible = None if zones is None else {Zone(zone) for zone in zones}
        counts = {"linked": 0, "copied": 0, "skipped": 0}

        with self.db.transaction():
            blocks = [
                block for block in self.db.list_workspace_blocks(source_workspace_id)
                if eligible is None or block.zone in eligible
            ]
            lookup = self.db.get_blocks(collect_reference_ids(blocks))

            for block in blocks:
                if block.is_linked and block.reference_id not in lookup:
                    logging.warning(
                        f"Not carrying block {block.block_id}: its canonical {block.reference_id} no longer exists"
                    )
                    counts["skipped"] += 1
                    continue

                if block.zone in LINKED_ZONES:
                    self.references.create_linked(target_workspace_id, block.canonical_id, zone=block.zone)
                    counts["linked"] += 1
                else:
                    self.references.create_block(
                        target_workspace_id,
                        content=resolve_one(block, lookup),
                        kind=block.kind,
                        zone=block.zone
                    )
                    counts["copied"] += 1

        logging.info(
            f"Carried forward {counts['linked']} linked and {counts['copied']} copied block(s) "
            f"from {source_workspace_id} to {target_workspace_id}"
        )
        return counts
