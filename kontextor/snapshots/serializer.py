"""
Workspace snapshots.

A snapshot is a named, self-contained copy of a workspace's blocks. Linked
blocks are resolved before saving, so a snapshot never holds a reference and
stays intact whatever happens to the blocks it was taken from.
"""

import logging
import uuid
from datetime import datetime
from typing import List

from ..exceptions import NotFoundError
from ..models import Snapshot, SnapshotBlock, ZONE_ORDER
from ..references import ReferenceManager


class SnapshotSerializer:
    """
    Creates, restores and manages workspace snapshots.
    """

    def __init__(self, references: ReferenceManager):
        self.references = references
        self.db = references.db

    def create(self, workspace_id: str, name: str) -> Snapshot:
        """
        Save the current resolved blocks of a workspace.

        Args:
            workspace_id: The workspace to capture
            name: Display name of the snapshot

        Returns:
            The stored snapshot

        Raises:
            NotFoundError: If the workspace does not exist
        """
        with self.db.transaction():
            if self.db.get_workspace(workspace_id) is None:
                raise NotFoundError(f"Workspace not found: {workspace_id}")

            resolved = self.references.list_blocks(workspace_id)
            zone_rank = {zone: rank for rank, zone in enumerate(ZONE_ORDER)}
            resolved.sort(key=lambda b: (zone_rank[b.zone], b.order_key, b.block_id))

            snapshot = Snapshot(
                snapshot_id=str(uuid.uuid4()),
                workspace_id=workspace_id,
                name=name,
                blocks=[
                    SnapshotBlock(content=b.content, kind=b.kind, zone=b.zone, order_key=b.order_key)
                    for b in resolved
                ],
                created_at=datetime.now()
            )
            self.db.insert_snapshot(snapshot)

        logging.info(f"Created snapshot '{name}' of workspace {workspace_id} with {len(snapshot.blocks)} block(s)")
        return snapshot

    def restore(self, snapshot_id: str) -> str:
        """
        Replace a workspace's blocks with the contents of a snapshot.

        Current blocks are removed through the reference manager, so blocks in
        other workspaces linked to them are promoted rather than left dangling.
        Restored blocks are all regular.

        Returns:
            The id of the restored workspace

        Raises:
            NotFoundError: If the snapshot or its workspace does not exist
        """
        with self.db.transaction():
            snapshot = self.db.get_snapshot(snapshot_id)
            if snapshot is None:
                raise NotFoundError(f"Snapshot not found: {snapshot_id}")
            if self.db.get_workspace(snapshot.workspace_id) is None:
                raise NotFoundError(f"Workspace not found: {snapshot.workspace_id}")

            self.references.clear_workspace(snapshot.workspace_id)
            for item in snapshot.blocks:
                self.references.create_block(
                    snapshot.workspace_id,
                    content=item.content,
                    kind=item.kind,
                    zone=item.zone,
                    order_key=item.order_key
                )

        logging.info(f"Restored snapshot {snapshot_id} into workspace {snapshot.workspace_id}")
        return snapshot.workspace_id

    def list(self, workspace_id: str) -> List[Snapshot]:
        return self.db.list_snapshots(workspace_id)

    def rename(self, snapshot_id: str, name: str) -> None:
        with self.db.transaction():
            if self.db.get_snapshot(snapshot_id) is None:
                raise NotFoundError(f"Snapshot not found: {snapshot_id}")
            self.db.rename_snapshot(snapshot_id, name)

    def delete(self, snapshot_id: str) -> bool:
        with self.db.transaction():
            return self.db.delete_snapshot(snapshot_id)
