"""
Headless Chromium renderer.

One browser process is shared by the service; every request gets its own
browser context (a private surface) that is closed when the request is done.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..errors import RenderFailed
from ..models import RenderSpec


class RenderSurface:
    """A loaded page that can be captured repeatedly."""

    def __init__(self, page: Page, spec: RenderSpec):
        self.page = page
        self.spec = spec

    async def capture(self, full_page: bool = False) -> bytes:
        """PNG of the viewport (or of the whole document if full_page)."""
        try:
            return await self.page.screenshot(
                type="png",
                full_page=full_page,
                omit_background=self.spec.transparent_background,
            )
        except PlaywrightError as e:
            raise RenderFailed(f"Screenshot failed: {e.message}") from e


class Renderer:
    """
    Playwright-backed HTML renderer.

    Usage:
        renderer = Renderer(args=settings.chromium_args)
        await renderer.start()

        async with renderer.surface(spec) as surface:
            png = await surface.capture()

        await renderer.stop()
    """

    def __init__(self, args: Optional[list[str]] = None, timeout_ms: int = 30_000):
        self.args = args or []
        self.timeout_ms = timeout_ms
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    @property
    def running(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self):
        if self._browser is not None:
            return
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(args=self.args)
        except PlaywrightError as e:
            await self.stop()
            raise RenderFailed(f"Could not launch Chromium: {e.message}") from e
        logger.info(f"Chromium {self._browser.version} launched")

    async def stop(self):
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e.message}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    @asynccontextmanager
    async def surface(self, spec: RenderSpec) -> AsyncIterator[RenderSurface]:
        """
        Open a private page sized to the RenderSpec viewport and wait until the content settles.

        The page's context is closed exactly once, however the block exits.
        """
        if self._browser is None:
            raise RenderFailed("Renderer is not running")

        try:
            context: BrowserContext = await self._browser.new_context(
                viewport={"width": spec.width, "height": spec.height},
            )
        except PlaywrightError as e:
            raise RenderFailed(f"Could not open a browser context: {e.message}") from e

        try:
            try:
                page = await context.new_page()
                page.set_default_timeout(self.timeout_ms)
                await page.set_content(spec.html, wait_until="networkidle", timeout=self.timeout_ms)
            except PlaywrightError as e:
                raise RenderFailed(f"Content did not load: {e.message}") from e

            logger.debug(f"Surface ready ({spec.width}x{spec.height}, transparent={spec.transparent_background})")
            yield RenderSurface(page, spec)
        finally:
            try:
                await context.close()
            except PlaywrightError as e:
                logger.warning(f"Error releasing browser context: {e.message}")
