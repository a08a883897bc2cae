"""Error taxonomy for batch validation and application.

Every failure in the pipeline is raised as one of these types so callers can
render an actionable message (pointer, window id, target, op) instead of a
raw runtime exception.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from batchguard.contracts.outcome import ErrorReport


class ErrorCode(str, Enum):
    INVALID_ENVELOPE = "Adapter.InvalidEnvelope"
    VALIDATION_FAILED = "Adapter.ValidationFailed"
    PERMISSION_DENIED = "Adapter.PermissionDenied"
    WINDOW_NOT_FOUND = "Adapter.WindowNotFound"
    DOM_APPLY_FAILED = "Adapter.DomApplyFailed"
    COMPONENT_UNKNOWN = "Adapter.ComponentUnknown"
    SANITIZE_INPUT_TOO_LARGE = "Adapter.SanitizeInputTooLarge"
    INTERNAL = "Adapter.Internal"


class AdapterError(Exception):
    """Structured error raised by the apply side of the pipeline."""

    def __init__(self, code: ErrorCode, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "context": {key: str(val) if isinstance(val, BaseException) else val for key, val in self.context.items()},
        }


class SanitizationInputTooLarge(AdapterError):
    """HTML payload exceeded the sanitizer's hard cap."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            ErrorCode.SANITIZE_INPUT_TOO_LARGE,
            f"html too large to sanitize ({size} > {limit} chars)",
            {"size": size, "limit": limit},
        )
        self.size = size
        self.limit = limit


class BatchValidationError(ValueError):
    """
    Raised when an incoming batch or plan fails validation.

    `pointer` is a JSON pointer to the first offending field (e.g. `/3/params/html`);
    `issues` lists every problem found as {"pointer", "message"} dicts.
    """

    def __init__(self, message: str, pointer: str, issues: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.pointer = pointer
        self.issues = list(issues or [{"pointer": pointer, "message": message}])

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "pointer": self.pointer, "issues": self.issues}


def get_error_code(error: BaseException) -> ErrorCode:
    """Return the adapter code for an exception, defaulting to Internal."""
    if isinstance(error, AdapterError):
        return error.code
    if isinstance(error, BatchValidationError):
        return ErrorCode.VALIDATION_FAILED
    return ErrorCode.INTERNAL


def create_error_report(op_index: int, error: BaseException, code: Optional[ErrorCode] = None) -> ErrorReport:
    resolved = code or get_error_code(error)
    message = error.message if isinstance(error, (AdapterError, BatchValidationError)) else str(error)
    return ErrorReport(op_index=op_index, code=resolved.value, message=message or type(error).__name__)


__all__ = [
    "ErrorCode",
    "AdapterError",
    "SanitizationInputTooLarge",
    "BatchValidationError",
    "get_error_code",
    "create_error_report",
]
