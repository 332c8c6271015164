"""
Workspace, workflow and snapshot models for Kontextor.
"""

from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from .blocks import Zone


class Workspace(BaseModel):
    """
    An isolated container of blocks.
    """

    workspace_id: str = Field(
        ...,
        description="Unique identifier of the workspace"
    )

    name: str = Field(
        default="Untitled",
        description="Human-readable name"
    )

    workflow_name: Optional[str] = Field(
        default=None,
        description="Workflow this workspace is a step of, if any"
    )

    run_id: Optional[str] = Field(
        default=None,
        description="Identifier shared by every step workspace of one workflow run"
    )

    step_number: Optional[int] = Field(
        default=None,
        description="Zero-based index of the workflow step"
    )

    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class WorkflowStep(BaseModel):
    """
    One step of a multi-step pipeline.
    """

    name: str = Field(
        ...,
        description="Display name of the step"
    )

    carry_forward_zones: List[Zone] = Field(
        default_factory=list,
        description="Zones whose blocks are carried into this step from the previous one"
    )


class Workflow(BaseModel):
    """
    An ordered pipeline of steps, each worked on in its own workspace.
    """

    name: str
    description: str = ""
    steps: List[WorkflowStep] = Field(default_factory=list)


class SnapshotBlock(BaseModel):
    """
    A fully resolved, self-contained copy of a block as stored in a snapshot.
    """

    content: str
    kind: str
    zone: Zone
    order_key: float


class Snapshot(BaseModel):
    """
    A named point-in-time copy of a workspace's blocks.
    """

    snapshot_id: str
    workspace_id: str
    name: str
    blocks: List[SnapshotBlock] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
