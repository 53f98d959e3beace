"""
Logging utilities.
"""

from retrace.monitoring.logger import get_logger, log_test_event, setup_logging

__all__ = [
    "get_logger",
    "log_test_event",
    "setup_logging",
]
