"""
Reference lifecycle manager for Kontextor.

Every block is either REGULAR (owns its content) or LINKED (delegates its
content to a canonical block in any workspace). This module is the only write
path for blocks and keeps the reference structure a one-hop star:

- linking to a LINKED block links to that block's canonical instead
- editing a LINKED block edits the canonical, so every sibling sees it
- removing a canonical first promotes every block that references it

Each public mutation runs as a single database transaction.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..config import config
from ..core.hashing import content_hash, NO_HASH
from ..core.positions import (
    allocate_at_end,
    allocate_at_index,
    allocate_relative_to,
    needs_renumber,
    renumbered
)
from ..core.resolve import collect_reference_ids, resolve_many
from ..core.tokens import estimate_tokens
from ..database import DatabaseManager
from ..exceptions import InvalidStateError, NotFoundError
from ..models import Block, Zone


def _stored_hash(content: str) -> Optional[str]:
    value = content_hash(content)
    return None if value == NO_HASH else value


class ReferenceManager:
    """
    Creates, edits, links, unlinks and deletes blocks while preserving the
    reference invariants.
    """

    def __init__(self, db: DatabaseManager, token_estimator: Optional[Callable[[str], int]] = None):
        """
        Initialize the reference manager.

        Args:
            db: Connected database manager
            token_estimator: Function used to refresh cached token counts
        """
        self.db = db
        self.estimate_tokens = token_estimator or estimate_tokens

    # ============ Helpers ============

    def _require_block(self, block_id: str) -> Block:
        block = self.db.get_block(block_id)
        if block is None:
            raise NotFoundError(f"Block not found: {block_id}")
        return block

    def _require_workspace(self, workspace_id: str) -> None:
        if self.db.get_workspace(workspace_id) is None:
            raise NotFoundError(f"Workspace not found: {workspace_id}")

    def _next_order_key(self, workspace_id: str, zone: Zone) -> float:
        return allocate_at_end(self.db.max_order_key(workspace_id, zone))

    def _resolve(self, blocks: List[Block]) -> List[Block]:
        lookup = self.db.get_blocks(collect_reference_ids(blocks))
        return resolve_many(blocks, lookup)

    def _promote(self, canonical: Block, references: List[Block]) -> int:
        """
        Copy a canonical's content into each referencing block and clear the reference.
        """
        tokens = self.estimate_tokens(canonical.content)
        for reference in references:
            self.db.patch_block(
                reference.block_id,
                content=canonical.content,
                reference_id=None,
                content_hash=_stored_hash(canonical.content),
                token_count=tokens,
                original_token_count=canonical.original_token_count or tokens
            )
        if references:
            logging.info(f"Promoted {len(references)} reference(s) to block {canonical.block_id}")
        return len(references)

    def _promote_external_references(self, workspace_id: str) -> int:
        """
        Promote every block outside a workspace that references one of its blocks.
        """
        owned = self.db.list_workspace_blocks(workspace_id)
        canonicals = {block.block_id: block for block in owned if not block.is_linked}
        external = self.db.find_referencing(list(canonicals), exclude_workspace_id=workspace_id)

        by_canonical: Dict[str, List[Block]] = {}
        for reference in external:
            by_canonical.setdefault(reference.reference_id, []).append(reference)

        promoted = 0
        for canonical_id, references in by_canonical.items():
            promoted += self._promote(canonicals[canonical_id], references)
        return promoted

    # ============ Reads ============

    def get_block(self, block_id: str) -> Optional[Block]:
        """
        Get a block with its effective content.

        Returns:
            The resolved block, or None if it does not exist
        """
        with self.db.transaction():
            block = self.db.get_block(block_id)
            if block is None:
                return None
            return self._resolve([block])[0]

    def list_blocks(self, workspace_id: str, zone: Optional[Zone] = None) -> List[Block]:
        """
        List a workspace's blocks with their effective content.

        The block fetch and the canonical prefetch happen in one transaction so
        both observe the same state.

        Args:
            workspace_id: The workspace to list
            zone: Optional zone filter

        Returns:
            Resolved blocks ordered by zone then order key
        """
        with self.db.transaction():
            return self._resolve(self.db.list_workspace_blocks(workspace_id, zone))

    def find_duplicates(
        self,
        content: str,
        exclude_workspace_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Block]:
        """
        Find regular blocks elsewhere whose content hashes the same.

        Used only to suggest linking instead of duplicating; empty content
        never matches anything.
        """
        value = content_hash(content)
        if value == NO_HASH:
            return []
        return self.db.find_by_content_hash(value, exclude_workspace_id=exclude_workspace_id, limit=limit)

    def find_duplicate(self, content: str, exclude_workspace_id: Optional[str] = None) -> Optional[Block]:
        matches = self.find_duplicates(content, exclude_workspace_id, limit=1)
        return matches[0] if matches else None

    # ============ Creation ============

    def create_block(
        self,
        workspace_id: str,
        content: str,
        kind: Optional[str] = None,
        zone: Optional[Zone] = None,
        order_key: Optional[float] = None
    ) -> Block:
        """
        Create a regular block.

        Args:
            workspace_id: The owning workspace
            content: The block's text
            kind: Block kind (defaults to config value)
            zone: Target zone (defaults to config value)
            order_key: Explicit order key; appended to the end of the zone if omitted

        Returns:
            The created block

        Raises:
            NotFoundError: If the workspace does not exist
        """
        zone = Zone(zone or config.default_zone)
        with self.db.transaction():
            self._require_workspace(workspace_id)
            tokens = self.estimate_tokens(content)
            now = datetime.now()
            block = Block(
                block_id=str(uuid.uuid4()),
                workspace_id=workspace_id,
                content=content,
                kind=kind or config.default_kind,
                zone=zone,
                order_key=order_key if order_key is not None else self._next_order_key(workspace_id, zone),
                content_hash=_stored_hash(content),
                token_count=tokens,
                original_token_count=tokens,
                created_at=now,
                updated_at=now
            )
            self.db.insert_block(block)
            self.db.touch_workspace(workspace_id)
            if order_key is not None:
                self._warn_if_crowded(workspace_id, zone)
        return block

    def create_linked(self, workspace_id: str, canonical_id: str, zone: Optional[Zone] = None) -> Block:
        """
        Create a block whose content is shared with an existing block.

        If ``canonical_id`` names a linked block, the new block links to that
        block's own canonical, so references never chain.

        Args:
            workspace_id: The workspace that will own the new block
            canonical_id: The block whose content should be shared
            zone: Target zone (defaults to the canonical's zone)

        Returns:
            The created linked block (raw, with empty content)

        Raises:
            NotFoundError: If the workspace or the referenced block does not exist
        """
        with self.db.transaction():
            self._require_workspace(workspace_id)
            canonical = self.db.get_block(canonical_id)
            if canonical is None:
                raise NotFoundError(f"Referenced block not found: {canonical_id}")

            if canonical.is_linked:
                canonical = self.db.get_block(canonical.reference_id)
                if canonical is None:
                    raise NotFoundError(f"Referenced block {canonical_id} points at a missing block")
                if canonical.is_linked:
                    raise InvalidStateError(f"Block {canonical.block_id} is linked but referenced as canonical")

            target_zone = Zone(zone or canonical.zone)
            now = datetime.now()
            block = Block(
                block_id=str(uuid.uuid4()),
                workspace_id=workspace_id,
                content="",
                kind=canonical.kind,
                zone=target_zone,
                order_key=self._next_order_key(workspace_id, target_zone),
                reference_id=canonical.block_id,
                content_hash=None,
                token_count=canonical.token_count,
                original_token_count=canonical.original_token_count,
                created_at=now,
                updated_at=now
            )
            self.db.insert_block(block)
            self.db.touch_workspace(workspace_id)

        logging.info(f"Linked block {block.block_id} in workspace {workspace_id} to {canonical.block_id}")
        return block

    # ============ Content changes ============

    def edit(self, block_id: str, content: Optional[str] = None, kind: Optional[str] = None) -> Block:
        """
        Change a block's content and/or kind.

        For a linked block the change is written to the canonical block, not
        to the linked row; every block sharing the canonical observes it on
        its next read.

        Args:
            block_id: The block being edited
            content: New content (optional)
            kind: New kind (optional)

        Returns:
            The edited block, resolved

        Raises:
            NotFoundError: If the block, or the canonical of a linked block, does not exist
        """
        with self.db.transaction():
            block = self._require_block(block_id)
            target_id = block.block_id
            if block.is_linked:
                canonical = self.db.get_block(block.reference_id)
                if canonical is None:
                    raise NotFoundError(f"Canonical block not found: {block.reference_id}")
                target_id = canonical.block_id

            updates = {}
            if content is not None:
                updates["content"] = content
                updates["content_hash"] = _stored_hash(content)
                updates["token_count"] = self.estimate_tokens(content)
            if kind is not None:
                updates["kind"] = kind

            self.db.patch_block(target_id, **updates)
            if content is not None:
                # Linked rows cache the canonical's token count
                for reference in self.db.find_referencing([target_id]):
                    self.db.patch_block(reference.block_id, token_count=updates["token_count"])
            self.db.touch_workspace(block.workspace_id)
            return self._resolve([self._require_block(block_id)])[0]

    def unlink(self, block_id: str) -> Block:
        """
        Turn a linked block into an independent regular block.

        The canonical's current content is copied in; later edits on either
        side no longer affect the other. A dangling link unlinks to empty content.

        Raises:
            NotFoundError: If the block does not exist
            InvalidStateError: If the block is not linked
        """
        with self.db.transaction():
            block = self._require_block(block_id)
            if not block.is_linked:
                raise InvalidStateError(f"Block {block_id} is not linked")

            canonical = self.db.get_block(block.reference_id)
            content = canonical.content if canonical is not None else ""
            tokens = self.estimate_tokens(content)

            self.db.patch_block(
                block_id,
                content=content,
                reference_id=None,
                content_hash=_stored_hash(content),
                token_count=tokens,
                original_token_count=tokens
            )
            self.db.touch_workspace(block.workspace_id)
            return self._require_block(block_id)

    def compress(self, block_id: str, compressed_content: str, strategy: str = "manual") -> Block:
        """
        Replace a regular block's content with a shorter rewrite.

        Linked blocks must be unlinked first: compression rewrites shared
        content and needs a single unambiguous owner.

        Args:
            block_id: The block to compress
            compressed_content: The rewritten content
            strategy: Label of the compression strategy used

        Returns:
            The compressed block

        Raises:
            NotFoundError: If the block does not exist
            InvalidStateError: If the block is linked
        """
        with self.db.transaction():
            block = self._require_block(block_id)
            if block.is_linked:
                raise InvalidStateError(f"Cannot compress linked block {block_id}; unlink it first")

            original_tokens = (
                block.original_token_count
                or block.token_count
                or self.estimate_tokens(block.content)
            )
            tokens = self.estimate_tokens(compressed_content)
            for reference in self.db.find_referencing([block_id]):
                self.db.patch_block(reference.block_id, token_count=tokens)
            self.db.patch_block(
                block_id,
                content=compressed_content,
                content_hash=_stored_hash(compressed_content),
                token_count=tokens,
                original_token_count=original_tokens,
                is_compressed=True,
                compression_strategy=strategy,
                compressed_at=datetime.now()
            )
            self.db.touch_workspace(block.workspace_id)
            return self._require_block(block_id)

    # ============ Deletion ============

    def delete_block(self, block_id: str) -> int:
        """
        Delete a block without losing content shared from it.

        A regular block's references (in any workspace) are promoted to
        regular blocks holding its last content before the row is removed.
        Deleting a linked block removes only that row.

        Returns:
            Number of referencing blocks promoted; 0 if the block did not exist
        """
        with self.db.transaction():
            block = self.db.get_block(block_id)
            if block is None:
                return 0

            promoted = 0
            if not block.is_linked:
                promoted = self._promote(block, self.db.find_referencing([block.block_id]))

            self.db.delete_block(block_id)
            self.db.touch_workspace(block.workspace_id)
        return promoted

    def clear_workspace(self, workspace_id: str) -> Dict[str, int]:
        """
        Remove every block of a workspace but keep the workspace itself.

        Returns:
            Dictionary with "promoted" and "deleted_blocks" counts
        """
        with self.db.transaction():
            promoted = self._promote_external_references(workspace_id)
            deleted = self.db.delete_workspace_blocks(workspace_id)
            if self.db.get_workspace(workspace_id) is not None:
                self.db.touch_workspace(workspace_id)
        return {"promoted": promoted, "deleted_blocks": deleted}

    def destroy_workspace(self, workspace_id: str) -> Dict[str, int]:
        """
        Delete a workspace with all its blocks and snapshots.

        Blocks in other workspaces that reference this workspace's blocks are
        promoted first, so they keep their content.

        Returns:
            Dictionary with "promoted", "deleted_blocks" and "deleted_snapshots" counts
        """
        with self.db.transaction():
            promoted = self._promote_external_references(workspace_id)
            deleted_blocks = self.db.delete_workspace_blocks(workspace_id)
            deleted_snapshots = self.db.delete_workspace_snapshots(workspace_id)
            self.db.delete_workspace(workspace_id)

        logging.info(
            f"Destroyed workspace {workspace_id}: {deleted_blocks} block(s) deleted, "
            f"{promoted} external reference(s) promoted"
        )
        return {
            "promoted": promoted,
            "deleted_blocks": deleted_blocks,
            "deleted_snapshots": deleted_snapshots
        }

    # ============ Workspace-local attributes ============

    def move(self, block_id: str, zone: Zone) -> Block:
        """
        Move a block to the end of another zone. Link state is unaffected.
        """
        zone = Zone(zone)
        with self.db.transaction():
            block = self._require_block(block_id)
            if block.zone == zone:
                return block
            self.db.patch_block(block_id, zone=zone, order_key=self._next_order_key(block.workspace_id, zone))
            self.db.touch_workspace(block.workspace_id)
            return self._require_block(block_id)

    def reorder(self, block_id: str, order_key: float) -> Block:
        """Set a block's order key within its current zone."""
        with self.db.transaction():
            block = self._require_block(block_id)
            self.db.patch_block(block_id, order_key=order_key)
            self.db.touch_workspace(block.workspace_id)
            self._warn_if_crowded(block.workspace_id, block.zone)
            return self._require_block(block_id)

    def move_and_reorder(self, block_id: str, zone: Zone, order_key: float) -> Block:
        """Move a block to a zone at a specific order key in one step."""
        zone = Zone(zone)
        with self.db.transaction():
            block = self._require_block(block_id)
            self.db.patch_block(block_id, zone=zone, order_key=order_key)
            self.db.touch_workspace(block.workspace_id)
            self._warn_if_crowded(block.workspace_id, zone)
            return self._require_block(block_id)

    def reorder_to_index(self, block_id: str, index: int, zone: Optional[Zone] = None) -> Block:
        """
        Drop a block at a position among the other blocks of a zone.

        Args:
            block_id: The block being moved
            index: Position it should occupy once the zone is sorted
            zone: Target zone (defaults to the block's current zone)

        Returns:
            The moved block
        """
        with self.db.transaction():
            block = self._require_block(block_id)
            target_zone = Zone(zone or block.zone)
            siblings = [
                b.order_key for b in self.db.list_workspace_blocks(block.workspace_id, target_zone)
                if b.block_id != block_id
            ]
            return self.move_and_reorder(block_id, target_zone, allocate_at_index(siblings, index))

    def reorder_relative(self, block_id: str, target_id: str, before: bool = True) -> Block:
        """
        Drop a block directly before or after another block of the same workspace.

        The moved block takes the target's zone.

        Raises:
            NotFoundError: If either block does not exist
            InvalidStateError: If the target belongs to another workspace
        """
        with self.db.transaction():
            block = self._require_block(block_id)
            target = self._require_block(target_id)
            if target.workspace_id != block.workspace_id:
                raise InvalidStateError(
                    f"Block {target_id} is not in workspace {block.workspace_id}"
                )
            siblings = [
                (b.block_id, b.order_key)
                for b in self.db.list_workspace_blocks(block.workspace_id, target.zone)
                if b.block_id != block_id
            ]
            order_key = allocate_relative_to(siblings, target_id, before)
            return self.move_and_reorder(block_id, target.zone, order_key)

    def zone_needs_renumber(self, workspace_id: str, zone: Zone) -> bool:
        """Check whether a zone's order keys have converged closer than the configured gap."""
        keys = [b.order_key for b in self.db.list_workspace_blocks(workspace_id, Zone(zone))]
        return needs_renumber(keys, config.min_order_gap)

    def _warn_if_crowded(self, workspace_id: str, zone: Zone) -> None:
        if self.zone_needs_renumber(workspace_id, zone):
            logging.warning(
                f"Order keys in {workspace_id}/{Zone(zone).value} are nearly exhausted; "
                f"run renumber_zone to re-space them"
            )

    def toggle_draft(self, block_id: str) -> Block:
        """Flip a block's draft flag; drafts do not count toward token budgets."""
        with self.db.transaction():
            block = self._require_block(block_id)
            self.db.patch_block(block_id, is_draft=not block.is_draft)
            self.db.touch_workspace(block.workspace_id)
            return self._require_block(block_id)

    def renumber_zone(self, workspace_id: str, zone: Zone) -> int:
        """
        Reassign integer-spaced order keys across a zone, keeping its order.

        A maintenance operation for zones whose keys have converged after many
        insertions at the same spot; never run implicitly.

        Returns:
            Number of blocks whose order key changed
        """
        with self.db.transaction():
            blocks = self.db.list_workspace_blocks(workspace_id, Zone(zone))
            changed = 0
            for block, new_key in zip(blocks, renumbered([b.order_key for b in blocks])):
                if block.order_key != new_key:
                    self.db.patch_block(block.block_id, order_key=new_key)
                    changed += 1
        if changed:
            logging.info(f"Renumbered {changed} block(s) in {workspace_id}/{Zone(zone).value}")
        return changed
