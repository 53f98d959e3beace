"""
Test orchestration.

Discovers test files, runs every declared test through cached replay or the
live decider, and persists the outcome.
"""

import glob
import json
import os
from pathlib import Path
from typing import Callable, List, Optional, Union

from retrace.agents.action_decider import OpenAIActionDecider
from retrace.browser.executor import PlaywrightActionExecutor
from retrace.browser.manager import BrowserManager
from retrace.config.settings import Settings, get_settings
from retrace.core.actions import ScreenshotAction
from retrace.core.interfaces import ActionDecider, ActionExecutor
from retrace.core.types import TestStatus, ToolResult
from retrace.error_handling import CacheError, RetraceError, get_error_details
from retrace.monitoring.logger import get_logger, log_test_event
from retrace.runner.cached_replay import CachedReplayer
from retrace.runner.registry import (
    TestContext,
    TestRegistry,
    invoke_callback,
    load_test_file,
)
from retrace.runner.reporter import FileResult, TestReporter
from retrace.runner.repository import TestRunRepository
from retrace.runner.test_case import TestCallback, TestCase
from retrace.runner.test_run import TestRun

logger = get_logger(__name__)

DeciderFactory = Callable[[ActionExecutor, TestRun], ActionDecider]
ExecutorFactory = Callable[[TestContext], ActionExecutor]


def build_prompt(test_case: TestCase, initial_state: ToolResult) -> str:
    """Describe a test, its expectations and the current page to the decider."""
    lines: List[str] = [f'Test: "{test_case.name}"']
    if test_case.payload:
        lines.append(f"Context: {json.dumps(test_case.payload, default=str)}")
    marker = "[HAS_CALLBACK]" if test_case.has_callback else "[NO_CALLBACK]"
    lines.append(f"Callback function: {marker}")

    lines.append("\nExpect:")
    if test_case.expectations:
        for index, expectation in enumerate(test_case.expectations, start=1):
            description = expectation.description or "Callback function passes"
            marker = "[HAS_CALLBACK]" if expectation.has_callback else "[NO_CALLBACK]"
            lines.append(f"{index}. {description} {marker}")
    else:
        lines.append(f'1. "{test_case.name}" expected to be successful')

    lines.append("\nCurrent Page State:")
    lines.append(f"URL: {initial_state.url or 'unknown'}")
    lines.append(f"Title: {initial_state.title or 'unknown'}")
    return "\n".join(lines)


def after_hook_failure_reason(
    verdict_status: Optional[str], verdict_reason: Optional[str], error: BaseException
) -> str:
    """Reason recorded when an after hook fails once a verdict exists."""
    if verdict_status == TestStatus.FAILED.value:
        return f"AI: {verdict_reason}, After: {error}"
    return str(error)


class TestRunner:
    """Runs test files sequentially against one browser per file."""

    __test__ = False

    def __init__(
        self,
        cwd: Optional[Union[str, Path]] = None,
        settings: Optional[Settings] = None,
        reporter: Optional[TestReporter] = None,
        browser_manager: Optional[BrowserManager] = None,
        executor_factory: Optional[ExecutorFactory] = None,
        decider_factory: Optional[DeciderFactory] = None,
    ) -> None:
        """
        Initialize the runner.

        Args:
            cwd: Directory test patterns are resolved against
            settings: Settings (defaults to the global settings)
            reporter: Progress reporter
            browser_manager: Browser lifecycle owner (Playwright by default)
            executor_factory: Builds the action executor for a test context
            decider_factory: Builds the action decider for a test run
        """
        self.cwd = Path(cwd or os.getcwd())
        self.settings = settings or get_settings()
        self.reporter = reporter or TestReporter()
        self.browser_manager = browser_manager or BrowserManager(self.settings)
        self.executor_factory = executor_factory or self._default_executor
        self.decider_factory = decider_factory or self._default_decider
        self._file_context: Optional[TestContext] = None

    def _default_executor(self, test_context: TestContext) -> ActionExecutor:
        return PlaywrightActionExecutor(
            test_context.page,
            self.browser_manager,
            test_context,
            settings=self.settings,
        )

    def _default_decider(self, executor: ActionExecutor, test_run: TestRun) -> ActionDecider:
        return OpenAIActionDecider(executor, test_run, settings=self.settings)

    def _repository(self, test_case: TestCase) -> TestRunRepository:
        return TestRunRepository.for_test_case(test_case, self.settings.cache_dir)

    # ------------------------------------------------------------------ #
    # Discovery
    # ------------------------------------------------------------------ #
    def find_test_files(self, test_pattern: str) -> List[Path]:
        pattern = os.path.join(str(self.cwd), test_pattern)
        return [
            Path(match)
            for match in sorted(glob.glob(pattern, recursive=True))
            if os.path.isfile(match)
        ]

    async def execute(self, test_pattern: str, line_number: Optional[int] = None) -> bool:
        """
        Run every test file matching ``test_pattern``.

        Returns:
            True when every test passed and no file failed
        """
        logger.debug("Finding test files", extra={"pattern": test_pattern})
        files = self.find_test_files(test_pattern)

        if not files:
            self.reporter.error(
                "Test Discovery",
                f"No test files found matching the test pattern {test_pattern}",
            )
            logger.error(
                "No test files found matching", extra={"pattern": test_pattern}
            )
            return False

        self.reporter.on_run_start(len(files))
        for file_path in files:
            await self.execute_test_file(file_path, line_number)
        self.reporter.on_run_end()

        return self.reporter.all_tests_passed()

    # ------------------------------------------------------------------ #
    # Files
    # ------------------------------------------------------------------ #
    def _display_path(self, file_path: Path) -> str:
        try:
            return str(file_path.resolve().relative_to(self.cwd.resolve()))
        except ValueError:
            return str(file_path)

    async def execute_test_file(self, file_path: Path, line_number: Optional[int] = None) -> None:
        display_path = self._display_path(file_path)
        result = FileResult(file_path=display_path, status=TestStatus.PASSED)
        logger.debug(
            "Executing test file",
            extra={"file_path": display_path, "line_number": line_number},
        )

        try:
            registry = load_test_file(file_path, display_path)
            tests = self._select_tests(registry, display_path, line_number)

            try:
                try:
                    context = await self.browser_manager.launch()
                except Exception as e:
                    logger.error("Browser launching failed", extra=get_error_details(e))
                    raise RetraceError(f"Browser launching failed: {e}", cause=e) from e

                self._file_context = TestContext(
                    page=context.pages[0] if context.pages else None,
                    browser=self.browser_manager.browser,
                )
                await self._run_hooks(registry.before_all_fns, "beforeAll")
                self.reporter.on_file_start(display_path, len(tests))
                logger.info(f"Running {len(tests)} test(s)")

                for test_case in tests:
                    self.reporter.on_test_start(test_case)
                    test_run = await self._run_test_case(test_case, registry)
                    self.reporter.on_test_end(test_run)
                    self._persist(test_run)

                await self._run_hooks(registry.after_all_fns, "afterAll")
            finally:
                await self.browser_manager.close()
                self._file_context = None
        except RetraceError as e:
            logger.error(f"Test file {display_path} failed", extra=get_error_details(e))
            result = FileResult(
                file_path=display_path, status=TestStatus.FAILED, reason=e.message
            )
        finally:
            self.reporter.on_file_end(result)

    def _select_tests(
        self, registry: TestRegistry, display_path: str, line_number: Optional[int]
    ) -> List[TestCase]:
        if not line_number:
            return list(registry.tests)

        tests = registry.tests_at_line(line_number)
        if not tests:
            message = f"No test found at line {line_number} in {display_path}"
            self.reporter.error("Test Discovery", message)
            raise RetraceError(message)
        return tests

    async def _run_hooks(self, hooks: List[TestCallback], stage: str) -> None:
        for hook in hooks:
            try:
                await invoke_callback(hook, self._file_context)
            except RetraceError:
                raise
            except Exception as e:
                raise RetraceError(f"{stage} hook failed: {e}", cause=e) from e

    def _persist(self, test_run: TestRun) -> None:
        repository = self._repository(test_run.test_case)
        try:
            repository.save_run(test_run)
        except (OSError, RetraceError) as e:
            logger.error("Failed to save test run", extra=get_error_details(e))

        try:
            repository.apply_retention_policy()
        except (OSError, RetraceError) as e:
            logger.error("Failed to apply retention policy", extra=get_error_details(e))

    # ------------------------------------------------------------------ #
    # Tests
    # ------------------------------------------------------------------ #
    async def _run_test_case(self, test_case: TestCase, registry: TestRegistry) -> TestRun:
        """
        Run one test between its file's per-test hooks.

        Hook failures are recorded on the returned run instead of stopping
        the file.
        """
        test_run = TestRun.create(test_case)
        log_test_event("started", test_case.identifier, run_id=test_run.run_id)

        try:
            await self._run_hooks(registry.before_each_fns, "beforeEach")
        except RetraceError as e:
            logger.error("beforeEach hook failed", extra=get_error_details(e))
            test_run.mark_failed(e.message)
        else:
            try:
                test_run.mark_running()
                test_context = TestContext(
                    page=self._file_context.page if self._file_context else None,
                    browser=self._file_context.browser if self._file_context else None,
                    test_run=test_run,
                )
                await self.execute_test(test_run, test_context)
            except RetraceError as e:
                logger.error("Test execution failed", extra=get_error_details(e))
                test_run.mark_failed(e.message)

            try:
                await self._run_hooks(registry.after_each_fns, "afterEach")
            except RetraceError as e:
                logger.error("afterEach hook failed", extra=get_error_details(e))
                test_run.mark_failed(
                    after_hook_failure_reason(test_run.status.value, test_run.reason, e)
                )

        log_test_event(
            test_run.status.value,
            test_case.identifier,
            run_id=test_run.run_id,
            data={"from_cache": test_run.executed_from_cache},
        )
        return test_run

    async def execute_test(
        self,
        test_run: TestRun,
        test_context: TestContext,
        executor: Optional[ActionExecutor] = None,
        skip_cache: bool = False,
    ) -> TestRun:
        """Execute a running TestRun and leave it in a terminal state."""
        test_case = test_run.test_case
        logger.debug(
            "Executing test",
            extra={"test_name": test_case.name, "skip_cache": skip_cache},
        )

        if test_case.direct_execution:
            try:
                await invoke_callback(test_case.fn, test_context)
            except Exception as e:
                test_run.mark_failed(str(e) or "Direct execution failed")
            else:
                test_run.mark_passed("Direct execution successful")
            return test_run

        if executor is None:
            executor = self.executor_factory(test_context)
            try:
                return await self.execute_test(
                    test_run, test_context, executor=executor, skip_cache=skip_cache
                )
            finally:
                await executor.close()

        initial_state = await executor.execute(ScreenshotAction(action="screenshot"))

        if self.settings.caching_enabled and not skip_cache:
            try:
                await self._replayer(executor, test_case).replay(test_run)
            except CacheError as e:
                logger.info(
                    "Cache execution interrupted, falling back to normal execution",
                    extra=get_error_details(e),
                )
                initial_url = initial_state.url
                if initial_url:
                    await executor.navigate_back(initial_url)
                test_context.current_step_index = 0
                return await self.execute_test(
                    test_run, test_context, executor=executor, skip_cache=True
                )

            await self._run_after_fn(test_run, test_context)
            return test_run

        if test_case.before_fn is not None:
            try:
                await invoke_callback(test_case.before_fn, test_context)
            except Exception as e:
                test_run.mark_failed(str(e))
                return test_run

        decider = self.decider_factory(executor, test_run)
        verdict = await decider.run_action(build_prompt(test_case, initial_state))

        if test_case.after_fn is not None:
            try:
                await invoke_callback(test_case.after_fn, test_context)
            except Exception as e:
                test_run.mark_failed(
                    after_hook_failure_reason(verdict.status, verdict.reason, e),
                    token_usage=verdict.token_usage,
                )
                return test_run

        if verdict.status == "passed":
            test_run.mark_passed(verdict.reason, token_usage=verdict.token_usage)
        else:
            test_run.mark_failed(verdict.reason, token_usage=verdict.token_usage)
        return test_run

    def _replayer(self, executor: ActionExecutor, test_case: TestCase) -> CachedReplayer:
        return CachedReplayer(
            executor,
            repository=self._repository(test_case),
            step_delay_ms=self.settings.replay_step_delay_ms,
        )

    async def _run_after_fn(self, test_run: TestRun, test_context: TestContext) -> None:
        after_fn = test_run.test_case.after_fn
        if after_fn is None:
            return
        try:
            await invoke_callback(after_fn, test_context)
        except Exception as e:
            test_run.mark_failed(
                after_hook_failure_reason(test_run.status.value, test_run.reason, e)
            )
