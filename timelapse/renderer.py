"""
Playwright-backed render capability.

One browser is launched per capture run and reused across points. Every
navigation gets a fresh browser context with its own user agent, so no
cookies, storage or identity carry over between snapshots.
"""

from __future__ import annotations

import asyncio
import logging

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from .config import CaptureSettings
from .errors import CaptureUnavailable, RenderError


logger = logging.getLogger(__name__)


class RenderSession:
    """An open browser. ``open`` then ``capture`` per snapshot; ``close`` once."""

    def __init__(self, playwright, browser, config: CaptureSettings):
        self._playwright = playwright
        self._browser = browser
        self.config = config
        self._context = None
        self._page = None

    async def _close_page(self) -> None:
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.debug("Ignoring context close error: %s", e)
        self._context = None
        self._page = None

    async def open(self, url: str, user_agent: str) -> None:
        """
        Navigate to ``url`` in an isolated context and let it settle.

        Raises:
            RenderError: navigation failed or timed out
        """
        await self._close_page()
        try:
            self._context = await self._browser.new_context(
                user_agent=user_agent,
                viewport={'width': self.config.viewport_width, 'height': self.config.viewport_height},
            )
            self._page = await self._context.new_page()
            await self._page.goto(
                url,
                wait_until=self.config.wait_until,
                timeout=self.config.navigation_timeout_ms,
            )
        except PlaywrightError as e:
            await self._close_page()
            raise RenderError(f"navigation_failed: {type(e).__name__}: {str(e)[:200]}") from e

        # Deferred content (lazy images, late scripts) after the load signal
        if self.config.settle_delay > 0:
            await asyncio.sleep(self.config.settle_delay)

    async def capture(self) -> bytes:
        """Full-page PNG of the currently open page."""
        if self._page is None:
            raise RenderError("capture called with no open page")
        try:
            return await self._page.screenshot(full_page=self.config.screenshot_full_page, type='png')
        except PlaywrightError as e:
            raise RenderError(f"screenshot_failed: {type(e).__name__}: {str(e)[:200]}") from e
        finally:
            await self._close_page()

    async def close(self) -> None:
        await self._close_page()
        try:
            await self._browser.close()
        finally:
            await self._playwright.stop()
        logger.info("Browser closed")


class PlaywrightRenderer:
    """Launches render sessions."""

    def __init__(self, config: CaptureSettings):
        self.config = config

    async def launch(self) -> RenderSession:
        """
        Start a browser.

        Raises:
            CaptureUnavailable: browser binary missing or failed to start
        """
        logger.info("Launching browser for screenshot capture")
        try:
            playwright = await async_playwright().start()
        except Exception as e:
            raise CaptureUnavailable(f"Could not start Playwright driver: {str(e)[:300]}") from e

        launch_args = {
            'headless': self.config.headless,
            'args': list(self.config.browser_args),
        }
        if self.config.executable_path:
            launch_args['executable_path'] = self.config.executable_path
        try:
            browser = await playwright.chromium.launch(**launch_args)
        except PlaywrightError as e:
            await playwright.stop()
            raise CaptureUnavailable(f"Could not start browser: {str(e)[:300]}") from e
        return RenderSession(playwright, browser, self.config)
