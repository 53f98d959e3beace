"""
Test execution and caching engine.
"""

from retrace.runner.cached_replay import CachedReplayer
from retrace.runner.registry import TestContext, TestRegistry, load_test_file, test
from retrace.runner.reporter import TestReporter
from retrace.runner.repository import TestRunRepository, clean_up_cache
from retrace.runner.runner import TestRunner
from retrace.runner.test_case import Expectation, TestCase
from retrace.runner.test_run import TestRun

__all__ = [
    "CachedReplayer",
    "Expectation",
    "TestCase",
    "TestContext",
    "TestRegistry",
    "TestReporter",
    "TestRun",
    "TestRunRepository",
    "TestRunner",
    "clean_up_cache",
    "load_test_file",
    "test",
]
