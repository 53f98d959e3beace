"""
Browser automation module.
"""

from retrace.browser.executor import PlaywrightActionExecutor
from retrace.browser.manager import BrowserManager

__all__ = [
    "BrowserManager",
    "PlaywrightActionExecutor",
]
