"""
Lifecycle of a single execution attempt of a test.

A TestRun moves pending -> running -> passed/failed. The reason for the
verdict exists exactly when the run is terminal.
"""

from datetime import datetime, timezone
from typing import List, Optional, Union

from retrace.core.types import (
    CacheEntry,
    CacheEntryData,
    CacheEntryMetadata,
    CacheEntryTest,
    CacheStep,
    TestStatus,
    TokenUsage,
)
from retrace.error_handling import InvalidTransitionError, RetraceError
from retrace.runner.test_case import TestCase

# Bump whenever the on-disk cache entry layout changes.
CACHE_SCHEMA_VERSION = 2

_TERMINAL_STATUSES = (TestStatus.PASSED, TestStatus.FAILED)


def _format_run_id(created_at: datetime, identifier: str) -> str:
    iso = created_at.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return f"{iso.replace(':', '-').replace('.', '-')}_{identifier}"


def coerce_version(value: Union[int, str, None]) -> int:
    """Normalize a persisted schema version; unparsable values become 0."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class TestRun:
    """One execution attempt of a TestCase."""

    __test__ = False

    def __init__(
        self,
        test_case: TestCase,
        run_id: str,
        timestamp: int,
        version: int = CACHE_SCHEMA_VERSION,
    ):
        self.test_case = test_case
        self.run_id = run_id
        self.timestamp = timestamp
        self.version = version
        self.token_usage = TokenUsage()
        self._steps: List[CacheStep] = []
        self._status = TestStatus.PENDING
        self._reason: Optional[str] = None
        self._executed_from_cache = False

    @classmethod
    def create(cls, test_case: TestCase) -> "TestRun":
        """Create a fresh pending run stamped with the current UTC time."""
        now = datetime.now(timezone.utc)
        return cls(
            test_case=test_case,
            run_id=_format_run_id(now, test_case.identifier),
            timestamp=int(now.timestamp() * 1000),
        )

    @classmethod
    def from_cache(cls, test_case: TestCase, cache_entry: CacheEntry) -> "TestRun":
        """Rebuild a run from its persisted cache entry."""
        metadata = cache_entry.metadata
        run = cls(
            test_case=test_case,
            run_id=metadata.run_id,
            timestamp=metadata.timestamp,
            version=coerce_version(metadata.version),
        )
        run._status = metadata.status
        run._reason = metadata.reason
        run._executed_from_cache = metadata.executed_from_cache
        run.token_usage = metadata.token_usage.model_copy()
        run._steps = list(cache_entry.data.steps)
        return run

    @property
    def status(self) -> TestStatus:
        return self._status

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    @property
    def executed_from_cache(self) -> bool:
        return self._executed_from_cache

    @property
    def is_terminal(self) -> bool:
        return self._status in _TERMINAL_STATUSES

    def mark_running(self) -> None:
        if self._status != TestStatus.PENDING:
            raise InvalidTransitionError(
                "Can only start from pending state", from_status=self._status.value
            )
        self._status = TestStatus.RUNNING

    def mark_passed(
        self, reason: str, token_usage: Optional[TokenUsage] = None
    ) -> None:
        if self._status != TestStatus.RUNNING:
            raise InvalidTransitionError(
                "Can only pass from running state", from_status=self._status.value
            )
        self._status = TestStatus.PASSED
        self._reason = reason
        if token_usage is not None:
            self.token_usage = token_usage

    def mark_passed_from_cache(self, reason: str) -> None:
        self.mark_passed(reason)
        self._executed_from_cache = True

    def mark_failed(
        self, reason: str, token_usage: Optional[TokenUsage] = None
    ) -> None:
        """Fail the run. Allowed from any state."""
        self._status = TestStatus.FAILED
        self._reason = reason
        if token_usage is not None:
            self.token_usage = token_usage

    def add_step(self, step: CacheStep) -> None:
        self._steps.append(step)

    def get_steps(self) -> List[CacheStep]:
        """Return a copy of the recorded steps."""
        return list(self._steps)

    def to_cache_entry(self) -> CacheEntry:
        """
        Serialize a terminal run.

        Raises:
            RetraceError: If the run has no verdict yet
        """
        if not self.is_terminal:
            raise RetraceError(
                f"Cannot serialize run {self.run_id} in state {self._status.value}"
            )
        return CacheEntry(
            metadata=CacheEntryMetadata(
                timestamp=self.timestamp,
                version=self.version,
                status=self._status,
                reason=self._reason,
                token_usage=self.token_usage,
                run_id=self.run_id,
                executed_from_cache=self._executed_from_cache,
            ),
            test=CacheEntryTest(
                name=self.test_case.name, file_path=self.test_case.file_path
            ),
            data=CacheEntryData(steps=self.get_steps()),
        )

    def __repr__(self) -> str:
        return f"TestRun(run_id={self.run_id!r}, status={self._status.value})"
