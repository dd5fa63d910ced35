"""Error taxonomy for the observation pipeline.

Every error carries a machine-readable ``code`` and a ``context`` dict so the
CLI (or any other caller) can render it without parsing messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class SanjError(Exception):
    code = "SANJ_ERROR"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def to_failure(self, subject: str) -> Failure:
        return Failure(
            kind=self.code, subject=subject, message=self.message, context=dict(self.context)
        )


class ConfigError(SanjError, ValueError):
    code = "CONFIG_INVALID"


class AdapterUnavailable(SanjError):
    code = "ADAPTER_UNAVAILABLE"


class SessionUnreadable(SanjError):
    code = "SESSION_UNREADABLE"


class AnalysisError(SanjError):
    code = "ANALYSIS_FAILED"


class AnalysisTimeout(AnalysisError):
    code = "ANALYSIS_TIMEOUT"


class MalformedAnalysisResult(AnalysisError):
    code = "MALFORMED_ANALYSIS_RESULT"


class AnalysisCallFailed(AnalysisError):
    code = "ANALYSIS_CALL_FAILED"


class InvalidStateTransition(SanjError):
    code = "INVALID_STATE_TRANSITION"


class ObservationNotFound(SanjError, KeyError):
    code = "OBSERVATION_NOT_FOUND"

    def __str__(self) -> str:
        return self.message


class MemoryWriteFailure(SanjError):
    code = "MEMORY_WRITE_FAILED"


class StoreWriteFailure(SanjError):
    code = "STORE_WRITE_FAILED"


@dataclass(frozen=True)
class Failure:
    """A collected, non-fatal failure reported at the end of a batch."""

    kind: str
    subject: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
