"""Error taxonomy for the fuzzing engine.

Every error raised by the engine carries a stable code so callers and
log consumers can tell the categories apart:

    CONFIGURATION_ERROR  malformed campaign config or ABI, raised before
                         any worker is spawned
    HARNESS_FAULT        a test predicate raised while being evaluated
    EXECUTION_FAULT      the VM executor raised instead of returning a result
    CORPUS_IO_ERROR      a persisted corpus entry could not be read or written

Transaction reverts, out-of-gas and VM-level errors are *not* errors;
they are ordinary execution outcomes carried in the trace.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes attached to every engine exception."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    HARNESS_FAULT = "HARNESS_FAULT"
    EXECUTION_FAULT = "EXECUTION_FAULT"
    CORPUS_IO_ERROR = "CORPUS_IO_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PropfuzzError(Exception):
    """Base class for engine errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ConfigurationError(PropfuzzError):
    """Campaign configuration or ABI could not be validated."""

    code = ErrorCode.CONFIGURATION_ERROR

    @classmethod
    def from_validation_error(cls, exc: Any, context: str = "configuration") -> ConfigurationError:
        """Build from a pydantic ``ValidationError``, keeping field-level details."""
        details = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ())),
                "message": err.get("msg", ""),
                "type": err.get("type", ""),
            }
            for err in exc.errors()
        ]
        return cls(f"Invalid {context}: {len(details)} error(s)", details=details)


class HarnessFault(PropfuzzError):
    """A test predicate or objective raised while being evaluated."""

    code = ErrorCode.HARNESS_FAULT


class ExecutionFault(PropfuzzError):
    """The executor failed internally (not a transaction revert)."""

    code = ErrorCode.EXECUTION_FAULT


class CorpusIOError(PropfuzzError):
    """A corpus file could not be read or written."""

    code = ErrorCode.CORPUS_IO_ERROR
