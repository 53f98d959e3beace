"""
retrace: natural-language end-to-end tests with cached replay.
"""

from retrace.runner.registry import TestContext, test

__version__ = "0.1.0"

__all__ = [
    "TestContext",
    "test",
    "__version__",
]
