"""
Test registration API and test file loading.

Test files are plain Python modules that call ``test(...)`` at import time::

    from retrace import test

    test("user can log in with valid credentials").expect(
        "the dashboard is shown"
    )

Registrations land in the TestRegistry of the file currently being loaded.
"""

import ast
import importlib.util
import inspect
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Tuple, Union

from retrace.core.hashing import create_hash
from retrace.error_handling import ConfigError, RetraceError
from retrace.monitoring.logger import get_logger
from retrace.runner.test_case import Expectation, TestCallback, TestCase

logger = get_logger(__name__)


@dataclass
class TestContext:
    """Objects handed to test callbacks and hooks."""

    __test__ = False

    page: Any = None
    browser: Any = None
    test_run: Any = None
    current_step_index: int = 0


async def invoke_callback(fn: TestCallback, context: TestContext) -> None:
    """Call a sync or async test callback."""
    result = fn(context)
    if inspect.isawaitable(result):
        await result


@dataclass
class TestRegistry:
    """Tests and hooks declared by one test file."""

    __test__ = False

    file_path: str
    source_path: Optional[Path] = None
    tests: List[TestCase] = field(default_factory=list)
    before_all_fns: List[TestCallback] = field(default_factory=list)
    after_all_fns: List[TestCallback] = field(default_factory=list)
    before_each_fns: List[TestCallback] = field(default_factory=list)
    after_each_fns: List[TestCallback] = field(default_factory=list)
    direct_test_count: int = 0

    def add_test(self, test_case: TestCase) -> TestCase:
        test_case.line = self._caller_line()
        self.tests.append(test_case)
        return test_case

    def tests_at_line(self, line_number: int) -> List[TestCase]:
        return [test for test in self.tests if test.covers_line(line_number)]

    def assign_line_ranges(self, source: str) -> None:
        """
        Give each test the line range of the top-level statement that
        registered it, decorators included.
        """
        ranges: List[Tuple[int, int]] = []
        for node in ast.parse(source).body:
            start = node.lineno
            for decorator in getattr(node, "decorator_list", []):
                start = min(start, decorator.lineno)
            ranges.append((start, node.end_lineno or node.lineno))

        for test_case in self.tests:
            if test_case.line is None:
                continue
            for start, end in ranges:
                if start <= test_case.line <= end:
                    test_case.line_range = (start, end)
                    break

    def _caller_line(self) -> Optional[int]:
        if self.source_path is None:
            return None
        target = str(self.source_path)
        frame = sys._getframe(1)
        while frame is not None:
            if str(Path(frame.f_code.co_filename).resolve()) == target:
                return frame.f_lineno
            frame = frame.f_back
        return None


_current_registry: ContextVar[Optional[TestRegistry]] = ContextVar(
    "retrace_current_registry", default=None
)


def current_registry() -> TestRegistry:
    registry = _current_registry.get()
    if registry is None:
        raise RetraceError(
            "Tests can only be registered while retrace is loading a test file"
        )
    return registry


@contextmanager
def registering(registry: TestRegistry) -> Iterator[TestRegistry]:
    """Route registrations to ``registry`` for the duration of the block."""
    token = _current_registry.set(registry)
    try:
        yield registry
    finally:
        _current_registry.reset(token)


def load_test_file(
    path: Union[str, Path], display_path: Optional[str] = None
) -> TestRegistry:
    """
    Execute a test file and collect what it registers.

    Args:
        path: Test file to load
        display_path: Path recorded on the test cases (defaults to ``path``)

    Returns:
        Registry holding the file's tests and hooks

    Raises:
        ConfigError: If the file does not exist
        RetraceError: If the file fails to import
    """
    source_path = Path(path).resolve()
    if not source_path.is_file():
        raise ConfigError("file-not-found", f"Test file not found: {path}")

    registry = TestRegistry(
        file_path=display_path or str(path), source_path=source_path
    )
    module_name = f"retrace_tests_{create_hash(str(source_path), 12)}"
    spec = importlib.util.spec_from_file_location(module_name, source_path)
    if spec is None or spec.loader is None:
        raise RetraceError(f"Cannot import test file {registry.file_path}")

    module = importlib.util.module_from_spec(spec)
    logger.debug(f"Loading test file {registry.file_path}")
    with registering(registry):
        try:
            spec.loader.exec_module(module)
        except RetraceError:
            raise
        except Exception as e:
            raise RetraceError(
                f"Failed to load test file {registry.file_path}: {e}", cause=e
            ) from e

    registry.assign_line_ranges(source_path.read_text(encoding="utf-8"))
    logger.debug(
        f"Registered {len(registry.tests)} tests from {registry.file_path}"
    )
    return registry


def _normalize_name(name: str) -> str:
    return " ".join(name.split())


class TestChain:
    """Fluent builder returned by ``test(...)``."""

    __test__ = False

    def __init__(self, test_case: TestCase):
        self.test_case = test_case

    def expect(
        self,
        description_or_fn: Union[str, TestCallback],
        payload_or_fn: Any = None,
        fn: Optional[TestCallback] = None,
    ) -> "TestChain":
        if callable(description_or_fn):
            self.test_case.expectations.append(
                Expectation(fn=description_or_fn)
            )
            return self

        if callable(payload_or_fn):
            payload, fn = None, payload_or_fn
        else:
            payload = payload_or_fn
        self.test_case.expectations.append(
            Expectation(description=description_or_fn, payload=payload, fn=fn)
        )
        return self

    def before(self, fn: TestCallback) -> "TestChain":
        self.test_case.before_fn = fn
        return self

    def after(self, fn: TestCallback) -> "TestChain":
        self.test_case.after_fn = fn
        return self


class DirectTestChain(TestChain):
    """Chain of a callback-only test; it has no natural-language parts."""

    def expect(self, *args: Any, **kwargs: Any) -> "TestChain":
        raise RetraceError("expect() cannot be called on direct execution test")

    def before(self, fn: TestCallback) -> "TestChain":
        raise RetraceError("before() cannot be called on direct execution test")

    def after(self, fn: TestCallback) -> "TestChain":
        raise RetraceError("after() cannot be called on direct execution test")


class TestAPI:
    """The ``test`` object imported by test files."""

    __test__ = False

    def __call__(
        self,
        name_or_fn: Union[str, Sequence[str], TestCallback],
        payload_or_fn: Any = None,
        fn: Optional[TestCallback] = None,
    ) -> TestChain:
        registry = current_registry()

        if callable(name_or_fn):
            registry.direct_test_count += 1
            test_case = registry.add_test(
                TestCase(
                    name=f"Direct Test #{registry.direct_test_count}",
                    file_path=registry.file_path,
                    fn=name_or_fn,
                    direct_execution=True,
                )
            )
            return DirectTestChain(test_case)

        if callable(payload_or_fn):
            payload, fn = None, payload_or_fn
        else:
            payload = payload_or_fn

        names = [name_or_fn] if isinstance(name_or_fn, str) else list(name_or_fn)
        if not names:
            raise RetraceError("Test name is required")

        test_case = None
        for name in names:
            test_case = registry.add_test(
                TestCase(
                    name=_normalize_name(name),
                    file_path=registry.file_path,
                    payload=payload,
                    fn=fn,
                )
            )
        return TestChain(test_case)

    def before_all(
        self, name_or_fn: Union[str, TestCallback], fn: Optional[TestCallback] = None
    ) -> Any:
        return self._add_hook(current_registry().before_all_fns, name_or_fn, fn)

    def after_all(
        self, name_or_fn: Union[str, TestCallback], fn: Optional[TestCallback] = None
    ) -> Any:
        return self._add_hook(current_registry().after_all_fns, name_or_fn, fn)

    def before_each(
        self, name_or_fn: Union[str, TestCallback], fn: Optional[TestCallback] = None
    ) -> Any:
        return self._add_hook(current_registry().before_each_fns, name_or_fn, fn)

    def after_each(
        self, name_or_fn: Union[str, TestCallback], fn: Optional[TestCallback] = None
    ) -> Any:
        return self._add_hook(current_registry().after_each_fns, name_or_fn, fn)

    @staticmethod
    def _add_hook(
        hooks: List[TestCallback],
        name_or_fn: Union[str, TestCallback],
        fn: Optional[TestCallback],
    ) -> Any:
        if callable(name_or_fn):
            hooks.append(name_or_fn)
            return name_or_fn
        if fn is not None:
            hooks.append(fn)
            return fn

        def decorator(hook: TestCallback) -> TestCallback:
            hooks.append(hook)
            return hook

        return decorator


test = TestAPI()
