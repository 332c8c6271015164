"""
Workflow Manager for Kontextor.

This module loads workflow definitions from configuration and moves a
workflow run from one step to the next, creating one workspace per step and
carrying blocks forward between them.
"""

import logging
import uuid
from typing import Dict, List, Optional, Tuple

from ..config import ConfigManager, config
from ..exceptions import InvalidStateError, NotFoundError
from ..models import Workflow, WorkflowStep, Workspace
from ..references import ReferenceManager
from .carry_forward import CarryForwardPolicy


def step_workspace_name(base_name: str, step: WorkflowStep) -> str:
    return f"{base_name} - {step.name}"


class WorkflowManager:
    """
    Manages workflow definitions and step advancement.
    """

    def __init__(self, references: ReferenceManager, config_manager: Optional[ConfigManager] = None):
        """
        Initialize the workflow manager.

        Args:
            references: Reference manager used to create and carry blocks
            config_manager: Optional configuration to load definitions from
        """
        self.references = references
        self.db = references.db
        self.policy = CarryForwardPolicy(references)
        self.config = config_manager or config
        self.workflows: Dict[str, Workflow] = {}
        self._load_workflow_definitions()

    def _load_workflow_definitions(self):
        """Load workflow definitions from configuration."""
        for workflow_name, definition in self.config.workflow_definitions.items():
            try:
                if "steps" not in definition:
                    raise ValueError(f"Missing required field 'steps' in workflow '{workflow_name}'")

                workflow = Workflow(
                    name=workflow_name,
                    description=definition.get("description", ""),
                    steps=[WorkflowStep(**step) for step in definition["steps"]]
                )
                self.register_workflow(workflow)
                logging.info(f"Loaded workflow definition: {workflow_name}")

            except (ValueError, TypeError) as e:
                logging.error(f"Failed to load workflow definition '{workflow_name}': {e}")

    def register_workflow(self, workflow: Workflow) -> None:
        """
        Register a workflow definition.

        Raises:
            ValueError: If the workflow has no steps
        """
        if not workflow.steps:
            raise ValueError(f"Workflow '{workflow.name}' has no steps")
        self.workflows[workflow.name] = workflow

    def get_workflow(self, workflow_name: str) -> Optional[Workflow]:
        return self.workflows.get(workflow_name)

    def list_workflows(self) -> List[str]:
        return list(self.workflows.keys())

    def _require_workflow(self, workflow_name: Optional[str]) -> Workflow:
        workflow = self.workflows.get(workflow_name) if workflow_name else None
        if workflow is None:
            raise NotFoundError(f"Workflow not found: {workflow_name}")
        return workflow

    def start(self, workflow_name: str, name: str) -> Workspace:
        """
        Start a new run of a workflow.

        Args:
            workflow_name: Name of a registered workflow
            name: Base name for the run's workspaces

        Returns:
            The workspace of the first step

        Raises:
            NotFoundError: If the workflow is not registered
        """
        workflow = self._require_workflow(workflow_name)
        with self.db.transaction():
            workspace = self.db.create_workspace(
                name=step_workspace_name(name, workflow.steps[0]),
                workflow_name=workflow.name,
                run_id=str(uuid.uuid4()),
                step_number=0
            )
        logging.info(f"Started workflow '{workflow.name}' as workspace {workspace.workspace_id}")
        return workspace

    def advance(self, workspace_id: str) -> Tuple[Workspace, bool]:
        """
        Move a workflow run from the given step workspace to the next step.

        If the next step's workspace already exists it is returned unchanged.
        Otherwise it is created and the blocks of the configured carry-forward
        zones are brought over, linked or copied per zone.

        Args:
            workspace_id: Workspace of the current step

        Returns:
            Tuple of (next step workspace, whether it was created)

        Raises:
            NotFoundError: If the workspace or its workflow does not exist
            InvalidStateError: If the workspace is not a workflow step or is the last step
        """
        with self.db.transaction():
            workspace = self.db.get_workspace(workspace_id)
            if workspace is None:
                raise NotFoundError(f"Workspace not found: {workspace_id}")
            if workspace.run_id is None or workspace.step_number is None:
                raise InvalidStateError(f"Workspace {workspace_id} is not part of a workflow")

            workflow = self._require_workflow(workspace.workflow_name)
            next_index = workspace.step_number + 1
            if next_index >= len(workflow.steps):
                raise InvalidStateError(f"Workspace {workspace_id} is already at the last step")

            existing = self.db.find_step_workspace(workspace.run_id, next_index)
            if existing is not None:
                return existing, False

            current_step = workflow.steps[workspace.step_number]
            next_step = workflow.steps[next_index]
            suffix = f" - {current_step.name}"
            base_name = workspace.name[:-len(suffix)] if workspace.name.endswith(suffix) else workspace.name

            next_workspace = self.db.create_workspace(
                name=step_workspace_name(base_name, next_step),
                workflow_name=workflow.name,
                run_id=workspace.run_id,
                step_number=next_index
            )
            if next_step.carry_forward_zones:
                self.policy.carry_forward(
                    workspace_id,
                    next_workspace.workspace_id,
                    next_step.carry_forward_zones
                )

        logging.info(f"Advanced workflow '{workflow.name}' to step {next_index} ({next_step.name})")
        return next_workspace, True
