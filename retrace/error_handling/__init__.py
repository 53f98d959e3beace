"""
Error types for retrace.
"""

from .exceptions import (
    CacheError,
    ConfigError,
    InvalidTransitionError,
    RetraceError,
    TestError,
    ToolError,
    get_error_details,
)

__all__ = [
    "RetraceError",
    "CacheError",
    "TestError",
    "InvalidTransitionError",
    "ConfigError",
    "ToolError",
    "get_error_details",
]
