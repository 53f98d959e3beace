"""
Core module exports.
"""

from retrace.core.actions import ActionInput, ActionType, parse_action_input
from retrace.core.hashing import create_hash
from retrace.core.interfaces import ActionDecider, ActionExecutor
from retrace.core.types import (
    FINGERPRINT_KEY,
    CacheEntry,
    CacheEntryData,
    CacheEntryMetadata,
    CacheEntryTest,
    CacheStep,
    DeciderResult,
    StepAction,
    TestStatus,
    TokenUsage,
    ToolResult,
)

__all__ = [
    # Interfaces
    "ActionExecutor",
    "ActionDecider",
    # Actions
    "ActionInput",
    "ActionType",
    "parse_action_input",
    # Types
    "FINGERPRINT_KEY",
    "TestStatus",
    "TokenUsage",
    "StepAction",
    "CacheStep",
    "CacheEntry",
    "CacheEntryMetadata",
    "CacheEntryTest",
    "CacheEntryData",
    "ToolResult",
    "DeciderResult",
    # Helpers
    "create_hash",
]
