"""
Error taxonomy for the agent core.

Each error maps to one failure mode of the conversation or the publishing
tooling; none of them may advance the slot-filling state machine or mark an
email as sent.
"""

from __future__ import annotations

from typing import Any


class AdvocadoError(RuntimeError):
    """Base error."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class IngestionError(AdvocadoError):
    """A document could not be read or the memory capability rejected it."""


class SchemaError(AdvocadoError):
    """A tool declaration is malformed. Fatal at startup; blocks publishing."""


class RetrievalError(AdvocadoError):
    """The memory query failed or timed out."""


class LanguageCapabilityError(AdvocadoError):
    """The language model timed out or is unavailable. Retryable."""


class ToolInvocationError(AdvocadoError):
    """The email send failed."""


class ValidationError(AdvocadoError):
    """User input for a contact field is malformed."""

    def __init__(self, message: str, field_index: int, details: Any = None):
        super().__init__(message, details)
        self.field_index = field_index


class PipeLoadError(AdvocadoError):
    """The pipe preset could not be loaded or validated."""


class PublishError(AdvocadoError):
    """The hosting capability rejected a pipe configuration."""
