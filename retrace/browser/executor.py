"""
Executes browser actions on a Playwright page.
"""

import asyncio
import base64
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from playwright.async_api import Page

from retrace.browser.manager import BrowserManager
from retrace.config.settings import Settings, get_settings
from retrace.core.actions import (
    ActionInput,
    ClearSessionAction,
    ClickAction,
    CursorPositionAction,
    HoldKeyAction,
    KeyAction,
    LeftClickDragAction,
    LeftMouseDownAction,
    LeftMouseUpAction,
    MouseMoveAction,
    NavigateAction,
    RunCallbackAction,
    ScreenshotAction,
    ScrollAction,
    SleepAction,
    TypeAction,
    WaitAction,
)
from retrace.core.interfaces import ActionExecutor
from retrace.core.types import ToolResult
from retrace.error_handling import RetraceError, TestError, ToolError, get_error_details
from retrace.monitoring.logger import get_logger
from retrace.runner.registry import TestContext, invoke_callback
from retrace.runner.repository import TestRunRepository

NAVIGATION_TIMEOUT_MS = 30000
DEFAULT_SLEEP_MS = 1000
MAX_SLEEP_MS = 60000
SCROLL_STEP_PX = 100

FINGERPRINT_ATTRIBUTES = [
    "type",
    "name",
    "placeholder",
    "aria-label",
    "role",
    "title",
    "alt",
    "d",
]

# Normalized HTML of the deepest element under (x, y) and up to two of its
# ancestors, with all but FINGERPRINT_ATTRIBUTES removed.
FINGERPRINT_SCRIPT = """
({ x, y, allowedAttributes }) => {
  const element = document.elementFromPoint(x, y);
  if (!element) {
    return "";
  }

  let deepest = element.cloneNode(true);
  let maxDepth = 0;
  const traverse = (node, depth) => {
    if (depth > maxDepth) {
      maxDepth = depth;
      deepest = node;
    }
    Array.from(node.children).forEach((child) => traverse(child, depth + 1));
  };
  traverse(deepest, 0);

  const node = deepest.parentElement
    ? deepest.parentElement.parentElement || deepest.parentElement
    : deepest;

  const clean = (el) => {
    Array.from(el.attributes).forEach((attr) => {
      if (!allowedAttributes.includes(attr.name)) {
        el.removeAttribute(attr.name);
      }
    });
    Array.from(el.children).forEach(clean);
  };
  clean(node);

  return node.outerHTML.trim().replace(/\\s+/g, " ");
}
"""

KEY_NAMES = {
    "ctrl": "Control",
    "control": "Control",
    "cmd": "Meta",
    "command": "Meta",
    "super": "Meta",
    "meta": "Meta",
    "alt": "Alt",
    "option": "Alt",
    "shift": "Shift",
    "return": "Enter",
    "enter": "Enter",
    "tab": "Tab",
    "esc": "Escape",
    "escape": "Escape",
    "backspace": "Backspace",
    "delete": "Delete",
    "space": " ",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "page_up": "PageUp",
    "page_down": "PageDown",
    "pageup": "PageUp",
    "pagedown": "PageDown",
    "home": "Home",
    "end": "End",
}


def parse_key_combination(text: str) -> List[str]:
    """Translate a shortcut such as ``ctrl+shift+t`` into Playwright key names."""
    keys = []
    for part in text.split("+"):
        part = part.strip()
        if not part:
            continue
        keys.append(KEY_NAMES.get(part.lower(), part))
    return keys or [text]


def _plural(value: float, unit: str) -> str:
    return f"{value:g} {unit}{'' if value == 1 else 's'}"


class PlaywrightActionExecutor(ActionExecutor):
    """Runs ActionInputs against the active page of a browser context."""

    def __init__(
        self,
        page: Page,
        browser_manager: BrowserManager,
        test_context: TestContext,
        repository: Optional[TestRunRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.logger = get_logger("retrace.browser.executor")
        self.browser_manager = browser_manager
        self.test_context = test_context
        self.repository = repository
        self._page = page
        self._last_mouse_position: Tuple[int, int] = (0, 0)
        self._context = page.context
        self._context.on("page", self._on_new_page)

    @property
    def page(self) -> Page:
        return self._page

    @property
    def current_url(self) -> Optional[str]:
        return self._page.url if self._page else None

    def _on_new_page(self, page: Page) -> None:
        self.logger.debug("Switching to newly opened tab")
        self._page = page

    async def navigate_back(self, url: str) -> None:
        await self._page.goto(url)

    async def close(self) -> None:
        """Stop following tabs opened in the shared context."""
        self._context.remove_listener("page", self._on_new_page)

    async def get_fingerprint(self, x: int, y: int) -> str:
        try:
            return await self._page.evaluate(
                FINGERPRINT_SCRIPT,
                {"x": x, "y": y, "allowedAttributes": FINGERPRINT_ATTRIBUTES},
            )
        except Exception as e:
            self.logger.debug("Fingerprint evaluation failed", extra=get_error_details(e))
            raise ToolError(
                f"Could not fingerprint element at ({x}, {y}): {e}",
                action="mouse_move",
                url=self.current_url,
                cause=e,
            ) from e

    async def execute(self, action: ActionInput) -> ToolResult:
        self.logger.debug(f"Executing {action.action}", extra={"input": action.to_input()})
        try:
            if isinstance(action, ScreenshotAction):
                return await self._screenshot()
            if isinstance(action, ClearSessionAction):
                return await self._clear_session()

            output, metadata = await self._dispatch(action)
            if metadata is None:
                await self._page.wait_for_timeout(200)
                metadata = await self._metadata()
            return ToolResult(output=output, metadata=metadata)
        except TestError as e:
            self.logger.info("Test callback failed", extra=get_error_details(e))
            if e.type == "assertion-failed":
                output = f"Assertion failed: {e.message}"
                if e.actual is not None:
                    output += f"\nExpected: {e.expected}\nReceived: {e.actual}"
            else:
                output = f"Callback execution failed: {e.message}"
            return ToolResult(output=output, error=e.type)
        except RetraceError:
            raise
        except Exception as e:
            self.logger.error("Browser action failed", extra=get_error_details(e))
            raise ToolError(
                f"Action failed: {e}", action=action.action, url=self.current_url, cause=e
            ) from e

    async def _dispatch(
        self, action: ActionInput
    ) -> Tuple[str, Optional[Dict[str, Any]]]:
        page = self._page

        if isinstance(action, ClickAction):
            x, y = action.coordinate or self._last_mouse_position
            await page.mouse.click(
                x, y, button=action.button, click_count=action.click_count
            )
            self._last_mouse_position = (x, y)
            metadata = await self._metadata()
            await page.wait_for_timeout(100)
            if await self._is_loading():
                try:
                    await page.wait_for_load_state("domcontentloaded", timeout=5000)
                    metadata = await self._metadata()
                except Exception as e:
                    self.logger.debug(
                        "Navigation after click did not settle",
                        extra=get_error_details(e),
                    )
            return f"{action.action} at ({x}, {y})", metadata

        if isinstance(action, MouseMoveAction):
            x, y = action.coordinate
            await page.mouse.move(x, y)
            self._last_mouse_position = (x, y)
            return f"Mouse moved to ({x}, {y})", None

        if isinstance(action, LeftClickDragAction):
            x, y = action.coordinate
            await page.mouse.down()
            await page.mouse.move(x, y, steps=10)
            await page.mouse.up()
            self._last_mouse_position = (x, y)
            return f"Dragged mouse to ({x}, {y})", None

        if isinstance(action, LeftMouseDownAction):
            await page.mouse.down()
            return "Pressed left mouse button", None

        if isinstance(action, LeftMouseUpAction):
            await page.mouse.up()
            return "Released left mouse button", None

        if isinstance(action, CursorPositionAction):
            x, y = self._last_mouse_position
            return f"Cursor position: ({x}, {y})", None

        if isinstance(action, TypeAction):
            await page.wait_for_timeout(100)
            await page.keyboard.type(action.text)
            await page.wait_for_timeout(100)
            return f"Typed: {action.text}", None

        if isinstance(action, KeyAction):
            keys = parse_key_combination(action.text)
            await page.wait_for_timeout(100)
            for key in keys:
                await page.keyboard.down(key)
            for key in reversed(keys):
                await page.keyboard.up(key)
            await page.wait_for_timeout(100)
            return f"Pressed key: {action.text}", None

        if isinstance(action, HoldKeyAction):
            keys = parse_key_combination(action.text)
            for key in keys:
                await page.keyboard.down(key)
            await asyncio.sleep(action.duration)
            for key in reversed(keys):
                await page.keyboard.up(key)
            return f"Held key: {'+'.join(keys)} for {_plural(action.duration, 'second')}", None

        if isinstance(action, NavigateAction):
            return await self._navigate(action.url)

        if isinstance(action, WaitAction):
            await page.wait_for_timeout(action.duration * 1000)
            return f"Waited for {_plural(action.duration, 'second')}", None

        if isinstance(action, ScrollAction):
            x, y = action.coordinate
            await page.mouse.move(x, y)
            distance = action.scroll_amount * SCROLL_STEP_PX
            delta_x, delta_y = {
                "up": (0, -distance),
                "down": (0, distance),
                "left": (-distance, 0),
                "right": (distance, 0),
            }[action.scroll_direction]
            await page.mouse.wheel(delta_x, delta_y)
            return f"Scrolled {action.scroll_amount} clicks {action.scroll_direction}", None

        if isinstance(action, SleepAction):
            duration = action.duration if action.duration is not None else DEFAULT_SLEEP_MS
            if duration > MAX_SLEEP_MS:
                self.logger.debug(
                    f"Sleep of {duration}ms exceeds {MAX_SLEEP_MS}ms, capping"
                )
                duration = MAX_SLEEP_MS
            await page.wait_for_timeout(duration)
            return f"Finished waiting for {_plural(round(duration / 1000), 'second')}", None

        if isinstance(action, RunCallbackAction):
            return await self._run_callback(), {}

        raise ToolError(f"Unknown action: {action.action}", action=action.action)

    async def _navigate(self, url: str) -> Tuple[str, Dict[str, Any]]:
        new_page = await self._page.context.new_page()
        try:
            await new_page.goto(
                url, timeout=NAVIGATION_TIMEOUT_MS, wait_until="domcontentloaded"
            )
        except Exception as e:
            await new_page.close()
            raise ToolError(f"Navigation failed: {e}", action="navigate", url=url, cause=e) from e

        try:
            await new_page.wait_for_load_state("load", timeout=5000)
        except Exception as e:
            self.logger.debug("Load timeout, continuing anyway", extra=get_error_details(e))

        self._page = new_page
        metadata = {
            "window_info": {
                "url": url,
                "title": await new_page.title(),
                "size": new_page.viewport_size,
            }
        }
        return f"Navigated to {url}", metadata

    async def _run_callback(self) -> str:
        context = self.test_context
        test_case = context.test_run.test_case
        step_index = context.current_step_index or 0

        try:
            if step_index == 0 and test_case.fn is not None:
                await invoke_callback(test_case.fn, context)
                context.current_step_index = 1
                return "Test function executed successfully"

            expectation_index = max(step_index - 1, 0)
            if expectation_index < len(test_case.expectations):
                expectation = test_case.expectations[expectation_index]
                if expectation.fn is not None:
                    await invoke_callback(expectation.fn, context)
                    context.current_step_index = step_index + 1
                    return f'Callback function for "{expectation.description}" passed successfully'
                return f'Skipping callback execution: No callback function defined for expectation "{expectation.description}"'
            return "Skipping callback execution: No callback function defined"
        except AssertionError as e:
            raise TestError("assertion-failed", str(e) or "Assertion failed", cause=e) from e
        except RetraceError:
            raise
        except Exception as e:
            raise TestError("callback-execution-failed", str(e), cause=e) from e

    async def _clear_session(self) -> ToolResult:
        context = await self.browser_manager.clear_context()
        self._page = context.pages[0] if context.pages else await context.new_page()
        await self._page.evaluate("() => { localStorage.clear(); sessionStorage.clear(); }")
        return ToolResult(output="Successfully cleared browser data and created new context")

    async def _screenshot(self) -> ToolResult:
        image = await self._page.screenshot(type="jpeg", quality=50, full_page=False)
        metadata = await self._metadata()

        test_run = self.test_context.test_run
        if test_run is not None:
            repository = self.repository or TestRunRepository.for_test_case(
                test_run.test_case, self.settings.cache_dir
            )
            stamp = datetime.now(timezone.utc).isoformat().replace(":", "-").replace(".", "-")
            path = repository.ensure_test_run_dir_path(test_run) / f"screenshot-{stamp}.jpg"
            path.write_bytes(image)
            self.logger.debug(f"Screenshot saved to {path}")

        return ToolResult(
            output="Screenshot taken",
            base64_image=base64.b64encode(image).decode("ascii"),
            metadata=metadata,
        )

    async def _is_loading(self) -> bool:
        try:
            return await self._page.evaluate("() => document.readyState !== 'complete'")
        except Exception as e:
            self.logger.debug("Page state unavailable", extra=get_error_details(e))
            return True

    async def _metadata(self) -> Dict[str, Any]:
        page = self._page
        try:
            title = await page.title()
        except Exception as e:
            self.logger.debug("Page title unavailable", extra=get_error_details(e))
            title = "loading..."
        return {
            "window_info": {
                "url": page.url,
                "title": title,
                "size": page.viewport_size,
            },
            "cursor_info": {"position": list(self._last_mouse_position)},
        }
