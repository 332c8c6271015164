"""
Message models produced by the zone assembler.
"""

from typing import Literal
from pydantic import BaseModel


class ContextMessage(BaseModel):
    """One message of an assembled prompt."""

    role: Literal["system", "user", "assistant"]
    content: str


class ConversationMessage(BaseModel):
    """A prior conversational turn appended after the zone messages."""

    role: Literal["user", "assistant"]
    content: str
