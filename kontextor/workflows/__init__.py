"""Multi-step workflows and the carry-forward policy between steps."""

from .carry_forward import CarryForwardPolicy, LINKED_ZONES
from .manager import WorkflowManager

__all__ = ["CarryForwardPolicy", "LINKED_ZONES", "WorkflowManager"]
