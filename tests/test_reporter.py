"""
Tests for console reporting.
"""

import io

import pytest
from rich.console import Console

from retrace.core.types import TestStatus, TokenUsage
from retrace.runner.reporter import FileResult, TestReporter
from retrace.runner.test_run import TestRun


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def reporter(output):
    return TestReporter(console=Console(file=output, width=120))


def _finished(test_case, passed=True, from_cache=False, tokens=0):
    run = TestRun.create(test_case)
    run.mark_running()
    if from_cache:
        run.mark_passed_from_cache("replayed")
    elif passed:
        run.mark_passed("ok", TokenUsage(total_tokens=tokens))
    else:
        run.mark_failed("nope", TokenUsage(total_tokens=tokens))
    return run


class TestTestReporter:
    """Tests for TestReporter."""

    def test_all_passed(self, reporter, test_case, output):
        reporter.on_run_start(1)
        reporter.on_file_start("login.test.py", 2)
        reporter.on_test_start(test_case)
        reporter.on_test_end(_finished(test_case, tokens=12))
        reporter.on_test_end(_finished(test_case, from_cache=True))
        reporter.on_file_end(FileResult("login.test.py", TestStatus.PASSED))
        reporter.on_run_end()

        assert reporter.all_tests_passed() is True
        assert reporter.summary.passed == 2
        assert reporter.summary.cached == 1
        assert reporter.summary.total_tests == 2
        assert reporter.summary.token_usage.total_tokens == 12

        text = output.getvalue()
        assert "Running tests from 1 file" in text
        assert "login.test.py" in text
        assert "(cached)" in text
        assert "Test Summary" in text

    def test_failed_test(self, reporter, test_case):
        reporter.on_test_end(_finished(test_case, passed=False))

        assert reporter.summary.failed == 1
        assert reporter.all_tests_passed() is False

    def test_failed_file(self, reporter, output):
        reporter.on_file_end(FileResult("a.test.py", TestStatus.FAILED, "Browser launching failed"))

        assert reporter.all_tests_passed() is False
        assert "File failed: Browser launching failed" in output.getvalue()

    def test_reported_error(self, reporter, output):
        reporter.error("Test Discovery", "No test files found")

        assert reporter.all_tests_passed() is False
        assert reporter.errors[0].context == "Test Discovery"
        assert "Test Discovery: No test files found" in output.getvalue()

    def test_empty_run_passes(self, reporter):
        assert reporter.all_tests_passed() is True
