"""
Shared fixtures for retrace tests.
"""

from pathlib import Path

import pytest

from retrace.config.settings import Settings
from retrace.core.types import CacheStep, StepAction, TokenUsage
from retrace.runner.repository import TestRunRepository
from retrace.runner.test_case import TestCase
from retrace.runner.test_run import TestRun


@pytest.fixture(autouse=True)
def reset_repositories():
    """Repositories are memoized per process; isolate each test."""
    TestRunRepository.clear_instances()
    yield
    TestRunRepository.clear_instances()


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Empty cache directory."""
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def settings(cache_dir: Path) -> Settings:
    """Settings pointing at the temporary cache, with no replay delay."""
    return Settings(
        _env_file=None,
        openai_api_key="test-key",
        cache_dir=cache_dir,
        replay_step_delay_ms=0,
    )


@pytest.fixture
def test_case() -> TestCase:
    """A natural-language test case."""
    return TestCase(name="user can log in", file_path="tests/login.test.py")


def _make_step(action: dict, fingerprint: str = None, timestamp: int = 1000) -> CacheStep:
    """Build a recorded step for the given raw action input."""
    extras = {"componentStr": fingerprint} if fingerprint is not None else {}
    return CacheStep(
        reasoning="",
        action=StepAction(input=action),
        timestamp=timestamp,
        result="ok",
        extras=extras,
    )


def _make_run(
    test_case: TestCase,
    run_id: str,
    timestamp: int,
    status: str = "passed",
    version: int = TestRunRepository.VERSION,
    from_cache: bool = False,
) -> TestRun:
    """Build a terminal run without touching the clock."""
    run = TestRun(test_case, run_id=f"{run_id}_{test_case.identifier}", timestamp=timestamp, version=version)
    run.mark_running()
    if status == "passed":
        if from_cache:
            run.mark_passed_from_cache("replayed")
        else:
            run.mark_passed("ok", TokenUsage(total_tokens=10))
    else:
        if from_cache:
            run.mark_passed_from_cache("replayed")
        run.mark_failed("nope")
    return run


@pytest.fixture
def make_step():
    """Factory for recorded steps."""
    return _make_step


@pytest.fixture
def make_run():
    """Factory for terminal runs."""
    return _make_run
