"""Fixed-size pool of reusable Playwright pages (renderer handles)."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright

logger = logging.getLogger(__name__)

_LAUNCH_ARGS = [
    # --no-sandbox is required when running as root inside a container
    # (Docker drops the user namespace needed by Chromium's sandbox).
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]


class PoolCloseError(RuntimeError):
    """Raised by :meth:`RendererPool.close` when some handles failed to close."""

    def __init__(self, errors: List[BaseException]):
        self.errors = errors
        super().__init__(f"{len(errors)} renderer handle(s) failed to close: {errors}")


class RendererPool:
    """Owns one headless Chromium and *size* pages created once and never grown.

    Handles are assigned round-robin by slot index. :meth:`acquire` checks a
    handle out exclusively, so concurrent crawls sharing the pool queue for a
    busy handle instead of driving it together. This bounds render
    concurrency to *size* regardless of how many URLs are ready.
    """

    def __init__(
        self,
        size: int = 5,
        *,
        headless: bool = True,
        executable_path: Optional[str] = None,
    ):
        if size < 1:
            raise ValueError("Renderer pool size must be at least 1.")
        self.size = size
        self.headless = headless
        self.executable_path = executable_path

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._pages: List[Page] = []
        self._lock = asyncio.Lock()
        self._handle_locks = [asyncio.Lock() for _ in range(size)]
        self._closed = False

    @property
    def started(self) -> bool:
        return bool(self._pages)

    async def start(self) -> None:
        """Launch the browser and open all pages; a no-op once started."""
        async with self._lock:
            if self._pages:
                return
            if self._closed:
                raise RuntimeError("Renderer pool has been closed.")

            logger.info("Launching renderer pool with %d handles", self.size)
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=_LAUNCH_ARGS,
                executable_path=self.executable_path,
            )
            for _ in range(self.size):
                self._pages.append(await self._browser.new_page())

    def handle(self, index: int) -> Page:
        """Return the handle for dispatch slot *index* (round-robin)."""
        if not self._pages:
            raise RuntimeError("Renderer pool is not started.")
        return self._pages[index % self.size]

    @asynccontextmanager
    async def acquire(self, index: int) -> AsyncIterator[Page]:
        """Check out the handle for slot *index*, waiting while another task holds it."""
        async with self._handle_locks[index % self.size]:
            yield self.handle(index)

    async def close(self) -> None:
        """Close every handle and the browser.

        Safe to call mid-crawl and more than once; in-flight navigations on
        the closed pages fail instead of blocking shutdown.
        """
        async with self._lock:
            self._closed = True
            pages, self._pages = self._pages, []
            browser, self._browser = self._browser, None
            playwright, self._playwright = self._playwright, None

        errors: List[BaseException] = []
        for page in pages:
            try:
                await page.close()
            except Exception as exc:
                logger.error("Failed to close renderer handle: %s", exc)
                errors.append(exc)
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:
                logger.error("Failed to close browser: %s", exc)
                errors.append(exc)
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as exc:
                logger.error("Failed to stop Playwright: %s", exc)
                errors.append(exc)

        if errors:
            raise PoolCloseError(errors)
