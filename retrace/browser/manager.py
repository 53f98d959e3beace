"""
Playwright browser lifecycle.
"""

from typing import Optional

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from retrace.config.settings import Settings, get_settings
from retrace.error_handling import RetraceError
from retrace.monitoring.logger import get_logger


class BrowserManager:
    """Owns the Playwright browser and the context shared by one test file."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()
        self.logger = get_logger("retrace.browser.manager")
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None

    @property
    def browser(self) -> Optional[Browser]:
        return self._browser

    @property
    def context(self) -> Optional[BrowserContext]:
        return self._context

    async def launch(self) -> BrowserContext:
        """Start the browser and open the base URL in a fresh context."""
        if self._playwright is None:
            self._playwright = await async_playwright().start()

        if self._browser is None:
            self.logger.info(
                "Starting browser",
                extra={
                    "headless": self.settings.browser_headless,
                    "viewport": f"{self.settings.browser_viewport_width}x{self.settings.browser_viewport_height}",
                },
            )
            self._browser = await self._playwright.chromium.launch(
                headless=self.settings.browser_headless,
                args=["--disable-dev-shm-usage", "--disable-extensions"],
            )

        self._context = await self._browser.new_context(
            viewport={
                "width": self.settings.browser_viewport_width,
                "height": self.settings.browser_viewport_height,
            },
            base_url=self.settings.base_url,
        )
        self._context.set_default_timeout(self.settings.browser_timeout)

        page = await self._context.new_page()
        await page.goto(self.settings.base_url)
        await page.wait_for_load_state("networkidle")
        return self._context

    async def clear_context(self) -> BrowserContext:
        """Wipe cookies, storage and extra tabs, then reopen the base URL."""
        if self._context is None:
            raise RetraceError("No browser context available")

        await self._context.clear_cookies()
        await self._context.clear_permissions()
        for page in self._context.pages:
            await page.evaluate(
                "() => { localStorage.clear(); sessionStorage.clear(); }"
            )
            await page.goto("about:blank")

        pages = self._context.pages
        for page in pages[1:]:
            await page.close()

        first_page = pages[0] if pages else await self._context.new_page()
        await first_page.goto(self.settings.base_url)
        await first_page.wait_for_load_state("networkidle")
        return self._context

    async def close(self) -> None:
        """Release the context, the browser and Playwright."""
        if self._context:
            await self._context.close()
            self._context = None

        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

        self.logger.info("Browser stopped")

    async def __aenter__(self) -> "BrowserManager":
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
