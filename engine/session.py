"""Playwright browser session owned by one scenario."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from .config import RunConfig
from .errors import SessionUnreachable

log = logging.getLogger(__name__)

INIT_RETRY_PAUSE_SECONDS = 2.0


class BrowserSession:
    """Launches, restarts and tears down the browser behind a scenario."""

    def __init__(
        self,
        config: RunConfig,
        *,
        playwright_factory: Callable[[], Any] = async_playwright,
    ) -> None:
        self.config = config
        self._playwright_factory = playwright_factory
        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None
        self.restarts = 0
        self._restart_listeners: List[Callable[[], None]] = []

    @property
    def page(self) -> Page:
        if self._page is None or self._page.is_closed():
            raise SessionUnreachable("Browser page is not available")
        return self._page

    @property
    def started(self) -> bool:
        return self._page is not None

    def add_restart_listener(self, listener: Callable[[], None]) -> None:
        self._restart_listeners.append(listener)

    async def start(self) -> None:
        attempts = self.config.browser_init_attempts
        for attempt in range(1, attempts + 1):
            await self._close_browser()
            log.debug("Launching browser with args %s (attempt %d/%d)", self.config.browser_args, attempt, attempts)
            try:
                await self._launch()
                log.debug("Browser launched on attempt %d/%d", attempt, attempts)
                return
            except Exception as exc:
                log.error("Failed to launch browser on attempt %d/%d: %s", attempt, attempts, exc)
                if attempt == attempts:
                    raise SessionUnreachable(f"Browser initialization failed after {attempts} attempts") from exc
                await asyncio.sleep(INIT_RETRY_PAUSE_SECONDS)

    async def restart(self) -> None:
        """Tear down and recreate the browser, then notify listeners."""

        self.restarts += 1
        log.warning("Reinitializing browser session (restart #%d)", self.restarts)
        await self.start()
        for listener in self._restart_listeners:
            listener()

    async def close(self) -> None:
        await self._close_browser()
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                log.debug("Error during Playwright shutdown: %s", exc)
            self._playwright = None

    async def current_url(self) -> str:
        return self.page.url

    async def capture_cookies(self) -> List[Dict[str, Any]]:
        if self.context is None:
            raise SessionUnreachable("Browser context is not available")
        return list(await self.context.cookies())

    async def restore_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        if self.context is None:
            raise SessionUnreachable("Browser context is not available")
        await self.context.clear_cookies()
        if cookies:
            await self.context.add_cookies(cookies)
        await self.page.reload()

    async def screenshot(self, *, full_page: bool = True) -> bytes:
        return await self.page.screenshot(full_page=full_page)

    async def _launch(self) -> None:
        if self._playwright is None:
            self._playwright = await self._playwright_factory().start()
        self.browser = await self._playwright.chromium.launch(
            headless=self.config.headless,
            args=list(self.config.browser_args),
        )
        self.context = await self.browser.new_context()
        self._page = await self.context.new_page()
        self._page.set_default_timeout(self.config.default_timeout * 1000)

    async def _close_browser(self) -> None:
        browser = self.browser
        self.browser = None
        self.context = None
        self._page = None
        if browser is None:
            return
        try:
            await browser.close()
        except Exception as exc:
            log.warning("Failed to close browser cleanly: %s", exc)
