"""
Exception hierarchy for retrace.

Every error the engine raises on purpose derives from RetraceError so the
CLI can report it cleanly. Anything else is treated as an unmodeled failure
and allowed to propagate.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional


class RetraceError(Exception):
    """Base exception for all retrace errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None
        }


CacheErrorType = Literal["not-found", "invalid"]


class CacheError(RetraceError):
    """Raised when a cached run cannot be used; always recoverable."""

    def __init__(self, type: CacheErrorType, message: str, **kwargs):
        super().__init__(message, error_code=f"cache-{type}", **kwargs)
        self.type = type
        self.details.update({"type": type})


TestErrorType = Literal["assertion-failed", "callback-execution-failed"]


class TestError(RetraceError):
    """Raised when a test callback or assertion fails."""

    __test__ = False

    def __init__(
        self,
        type: TestErrorType,
        message: str,
        actual: Any = None,
        expected: Any = None,
        **kwargs
    ):
        super().__init__(message, error_code=type, **kwargs)
        self.type = type
        self.actual = actual
        self.expected = expected
        if type == "assertion-failed":
            self.details.update({"actual": actual, "expected": expected})


class InvalidTransitionError(RetraceError):
    """Raised when a TestRun is moved through an illegal state transition."""

    def __init__(self, message: str, from_status: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.from_status = from_status
        self.details.update({"from_status": from_status})


ConfigErrorType = Literal[
    "file-not-found", "invalid-config", "no-config", "invalid-pattern"
]


class ConfigError(RetraceError):
    """Raised for missing or invalid configuration."""

    def __init__(self, type: ConfigErrorType, message: str, **kwargs):
        super().__init__(message, error_code=type, **kwargs)
        self.type = type


class ToolError(RetraceError):
    """Raised when the browser executor cannot perform an action."""

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        url: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.action = action
        self.url = url
        self.details.update({"action": action, "url": url})


def get_error_details(error: BaseException) -> Dict[str, Any]:
    """Return a flat dict describing an error, suitable for log `extra`."""
    if isinstance(error, RetraceError):
        payload = error.to_dict()
    else:
        payload = {
            "error_type": error.__class__.__name__,
            "message": str(error),
        }
    return {
        key if key.startswith("error_") else f"error_{key}": value
        for key, value in payload.items()
    }
