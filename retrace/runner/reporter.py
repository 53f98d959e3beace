"""
Console reporting of test progress and results.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from rich.console import Console
from rich.table import Table

from retrace.core.types import TestStatus, TokenUsage
from retrace.monitoring.logger import get_logger
from retrace.runner.test_case import TestCase
from retrace.runner.test_run import TestRun

logger = get_logger(__name__)

STATUS_STYLES = {
    TestStatus.PASSED: ("green", "✓"),
    TestStatus.FAILED: ("red", "✗"),
    TestStatus.RUNNING: ("yellow", "…"),
    TestStatus.PENDING: ("dim", "·"),
}


@dataclass
class FileResult:
    """Outcome of one test file."""

    file_path: str
    status: TestStatus
    reason: str = ""


@dataclass
class ReportedError:
    context: str
    message: str


@dataclass
class RunSummary:
    """Counters accumulated over a whole run."""

    total_files: int = 0
    passed: int = 0
    failed: int = 0
    cached: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def total_tests(self) -> int:
        return self.passed + self.failed


class TestReporter:
    """Prints progress with rich and answers whether the run succeeded."""

    __test__ = False

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()
        self.summary = RunSummary()
        self.file_results: List[FileResult] = []
        self.test_results: Dict[str, TestRun] = {}
        self.errors: List[ReportedError] = []
        self._started_at: Optional[float] = None

    def on_run_start(self, file_count: int) -> None:
        self._started_at = time.monotonic()
        self.summary.total_files = file_count
        noun = "file" if file_count == 1 else "files"
        self.console.print(f"\n[bold cyan]Running tests from {file_count} {noun}[/bold cyan]")

    def on_file_start(self, file_path: str, test_count: int) -> None:
        self.console.print(f"\n[bold]{file_path}[/bold] [dim]({test_count} tests)[/dim]")

    def on_test_start(self, test_case: TestCase) -> None:
        self.console.print(f"  [dim]→[/dim] {test_case.name}")

    def on_test_end(self, test_run: TestRun) -> None:
        self.test_results[test_run.run_id] = test_run
        if test_run.status == TestStatus.PASSED:
            self.summary.passed += 1
        else:
            self.summary.failed += 1
        if test_run.executed_from_cache:
            self.summary.cached += 1
        self.summary.token_usage = self.summary.token_usage + test_run.token_usage

        color, symbol = STATUS_STYLES[test_run.status]
        source = " [dim](cached)[/dim]" if test_run.executed_from_cache else ""
        self.console.print(
            f"    [{color}]{symbol} {test_run.test_case.name}[/{color}]{source}"
        )
        if test_run.reason:
            self.console.print(f"      [dim]{test_run.reason}[/dim]")
        if test_run.token_usage.total_tokens:
            self.console.print(
                f"      [dim]{test_run.token_usage.total_tokens} tokens[/dim]"
            )

    def on_file_end(self, result: FileResult) -> None:
        self.file_results.append(result)
        if result.status == TestStatus.FAILED:
            self.console.print(f"  [red]File failed: {result.reason}[/red]")

    def on_run_end(self) -> None:
        elapsed = time.monotonic() - self._started_at if self._started_at else 0.0

        table = Table(title="Test Summary", show_header=False, box=None)
        table.add_column("Metric", style="bold")
        table.add_column("Value")
        table.add_row("Files", str(self.summary.total_files))
        table.add_row("Tests", str(self.summary.total_tests))
        table.add_row("Passed", f"[green]{self.summary.passed}[/green]")
        table.add_row("Failed", f"[red]{self.summary.failed}[/red]")
        table.add_row("From cache", f"[cyan]{self.summary.cached}[/cyan]")
        table.add_row("Tokens", str(self.summary.token_usage.total_tokens))
        table.add_row("Duration", f"{elapsed:.1f}s")
        self.console.print()
        self.console.print(table)

        logger.info(
            "Test run finished",
            extra={
                "passed": self.summary.passed,
                "failed": self.summary.failed,
                "cached": self.summary.cached,
                "total_tokens": self.summary.token_usage.total_tokens,
            },
        )

    def error(self, context: str, message: str) -> None:
        """Record an error that is not tied to a single test."""
        self.errors.append(ReportedError(context=context, message=message))
        self.console.print(f"[red]{context}: {message}[/red]")

    def all_tests_passed(self) -> bool:
        if self.errors:
            return False
        if any(result.status == TestStatus.FAILED for result in self.file_results):
            return False
        return self.summary.failed == 0
