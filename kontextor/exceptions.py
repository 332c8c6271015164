"""
Exceptions raised by Kontextor.

Lifecycle failures are explicit: they abort the enclosing database transaction
and are surfaced to the caller. Dangling references are not errors and never
appear here.
"""


class KontextorError(Exception):
    """Base class for all Kontextor errors."""


class NotFoundError(KontextorError, LookupError):
    """A block or workspace the operation needs does not exist."""


class InvalidStateError(KontextorError, ValueError):
    """The block is in the wrong link state for the requested transition."""


class AgentError(KontextorError):
    """An LLM call failed or returned an unusable response."""
