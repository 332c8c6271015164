"""Data models for Kontextor."""

from .blocks import Block, Zone, ZONE_ORDER
from .context import ContextMessage, ConversationMessage
from .workspace import Workspace, Workflow, WorkflowStep, Snapshot, SnapshotBlock

__all__ = [
    "Block",
    "Zone",
    "ZONE_ORDER",
    "ContextMessage",
    "ConversationMessage",
    "Workspace",
    "Workflow",
    "WorkflowStep",
    "Snapshot",
    "SnapshotBlock"
]
