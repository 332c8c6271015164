"""Self-contained workspace snapshots."""

from .serializer import SnapshotSerializer

__all__ = ["SnapshotSerializer"]
