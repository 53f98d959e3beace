"""
Core interfaces for the collaborators the engine drives.
"""

from abc import ABC, abstractmethod
from typing import Optional

from retrace.core.actions import ActionInput
from retrace.core.types import DeciderResult, ToolResult


class ActionExecutor(ABC):
    """Performs concrete browser interactions."""

    @abstractmethod
    async def execute(self, action: ActionInput) -> ToolResult:
        """
        Execute a single action.

        Args:
            action: Concrete action input

        Returns:
            Output, window metadata and an optional base64 screenshot

        Raises:
            ToolError: If the action cannot be performed
            TestError: If a test callback run by the action fails
        """
        pass

    @abstractmethod
    async def get_fingerprint(self, x: int, y: int) -> str:
        """
        Compute the normalized structural fingerprint of the UI element at
        the given viewport coordinates.

        Returns:
            Attribute-stripped, whitespace-collapsed HTML snippet, or an
            empty string when nothing is rendered there
        """
        pass

    @abstractmethod
    async def navigate_back(self, url: str) -> None:
        """Return the active page to a previously observed URL."""
        pass

    @property
    @abstractmethod
    def current_url(self) -> Optional[str]:
        """URL of the active page."""
        pass

    async def close(self) -> None:
        """Release anything the executor attached to the browser."""
        pass


class ActionDecider(ABC):
    """Chooses and performs actions from a natural-language prompt."""

    @abstractmethod
    async def run_action(self, prompt: str) -> DeciderResult:
        """
        Run the observe/decide/act loop until a verdict is reached.

        Args:
            prompt: Test intent, expectations and current page state

        Returns:
            Pass/fail verdict with reason and token usage
        """
        pass
