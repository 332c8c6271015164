"""
Kontextor: zone-ordered context blocks for language model prompts.

Workspaces hold ordered blocks in three zones. Blocks can share content
across workspaces by linking to a canonical block, and a workspace's blocks
are assembled deterministically into model messages.
"""

__version__ = "0.1.0"
__author__ = "Kontextor Project"

# Import main components
from .database import DatabaseManager
from .models import Block, Zone, Workspace, Workflow, WorkflowStep, ContextMessage, ConversationMessage
from .references import ReferenceManager
from .assembly import assemble_context, extract_system_prompt
from .workflows import CarryForwardPolicy, WorkflowManager
from .snapshots import SnapshotSerializer
from .agents import AgentRunner
from .exceptions import KontextorError, NotFoundError, InvalidStateError, AgentError

__all__ = [
    "DatabaseManager",
    "Block",
    "Zone",
    "Workspace",
    "Workflow",
    "WorkflowStep",
    "ContextMessage",
    "ConversationMessage",
    "ReferenceManager",
    "assemble_context",
    "extract_system_prompt",
    "CarryForwardPolicy",
    "WorkflowManager",
    "SnapshotSerializer",
    "AgentRunner",
    "KontextorError",
    "NotFoundError",
    "InvalidStateError",
    "AgentError"
]
