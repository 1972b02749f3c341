"""Site crawler: bounded BFS over same-origin pages rendered on the renderer pool."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from app.services.browser_pool import RendererPool
from app.services.cache import TTLCache
from app.services.extractor import TIMEOUT_MS, ExtractedPage, NavigationError, extract_page
from app.services.frontier import CrawlCursor, Frontier
from app.services.images import ImageAnalysis, ImageAnalyzer
from app.services.persistence import PageWriter
from app.services.urls import same_origin, validate_url

logger = logging.getLogger(__name__)

MAX_CONCURRENT_IMAGES = 5

# Depth assigned to links recovered from stored pages when resuming a legacy cursor
_LEGACY_RESUME_DEPTH = 1

Extract = Callable[[object, str, int], Awaitable[ExtractedPage]]


@dataclass
class CrawlOutcome:
    status: str
    pages_crawled: int
    next_token: Optional[str] = None
    # Pages whose content was stored during this run
    stored_urls: List[str] = field(default_factory=list)


class SiteCrawler:
    """Drives a :class:`Frontier` in bulk-synchronous rounds over the renderer pool.

    Each round dispatches at most ``pool.size`` URLs, binds the *i*-th URL to
    handle ``i % pool.size`` and waits for the whole round before starting
    the next one. The deadline is only checked between rounds.
    """

    def __init__(
        self,
        pool: RendererPool,
        writer: PageWriter,
        *,
        extract: Extract = extract_page,
        cache: Optional[TTLCache] = None,
        image_analyzer: Optional[ImageAnalyzer] = None,
        max_pages_per_request: int = 10,
        max_queue_size: int = 100,
        max_depth: int = 3,
        deadline_seconds: Optional[float] = 30,
        page_timeout_ms: int = TIMEOUT_MS,
        block_private: bool = True,
    ):
        self._pool = pool
        self._writer = writer
        self._extract = extract
        self._cache = cache
        self._image_analyzer = image_analyzer
        self.max_pages_per_request = max_pages_per_request
        self.max_queue_size = max_queue_size
        self.max_depth = max_depth
        self.deadline_seconds = deadline_seconds
        self.page_timeout_ms = page_timeout_ms
        self.block_private = block_private

    async def crawl(
        self,
        start_url: str,
        max_depth: Optional[int] = None,
        token: Optional[str] = None,
    ) -> CrawlOutcome:
        """Crawl up to ``max_pages_per_request`` pages from *start_url*.

        Passing the ``next_token`` of a partial result resumes that crawl.
        Completed results are served from the cache for the same
        ``(start_url, token, max_depth)``; partial results are never cached.

        Raises:
            ValueError: for an invalid start URL or an undecodable token.
        """
        start_url = validate_url(start_url, block_private=self.block_private)
        cursor = CrawlCursor.decode(token) if token else None

        max_depth = self.max_depth if max_depth is None else max_depth
        cache_key = (start_url, token or "", max_depth)
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("Returning cached crawl result for %s", start_url)
                return cached

        frontier = Frontier(
            start_url,
            max_pages=self.max_pages_per_request,
            max_queue_size=self.max_queue_size,
            max_depth=max_depth,
            deadline_seconds=self.deadline_seconds,
            cursor=cursor,
        )
        if cursor is not None and cursor.legacy and not frontier.queue:
            await self._rebuild_queue(frontier, start_url)

        outcome = await self._run(frontier, start_url)
        if outcome.status == "success" and self._cache is not None:
            self._cache.set(cache_key, outcome)
        return outcome

    async def crawl_all(self, start_url: str, max_depth: int, max_pages: int) -> CrawlOutcome:
        """Crawl the site in one pass bounded by *max_pages* and *max_depth* only."""
        start_url = validate_url(start_url, block_private=self.block_private)
        frontier = Frontier(
            start_url,
            max_pages=max_pages,
            max_queue_size=self.max_queue_size,
            max_depth=max_depth,
        )
        return await self._run(frontier, start_url)

    async def _rebuild_queue(self, frontier: Frontier, start_url: str) -> None:
        """Refill the queue from links stored for the visited pages of a legacy cursor."""
        stored = await self._writer.load_linked_urls(sorted(frontier.visited))
        for _, linked_urls in stored:
            for link in linked_urls:
                if same_origin(link, start_url):
                    frontier.push(link, _LEGACY_RESUME_DEPTH)
        logger.info(
            "Rebuilt %d queued URLs for %s from a visited-only token",
            len(frontier.queue),
            start_url,
        )

    async def _run(self, frontier: Frontier, start_url: str) -> CrawlOutcome:
        await self._pool.start()
        stored_urls: List[str] = []

        while frontier.should_continue():
            batch = frontier.next_batch(self._pool.size)
            if not batch:
                break

            results = await asyncio.gather(
                *(
                    self._process_page(slot, url, depth, frontier, start_url)
                    for slot, (url, depth) in enumerate(batch)
                ),
                return_exceptions=True,
            )
            for (url, _), result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error("Page processing failed for %s: %r", url, result)
                elif result:
                    stored_urls.append(url)

        status = frontier.status
        if frontier.expired and status == "partial":
            logger.info("Crawl deadline reached for %s", start_url)
        logger.info(
            "Crawl of %s finished: status=%s pages=%d queued=%d",
            start_url,
            status,
            frontier.pages_crawled,
            len(frontier.queue),
        )
        return CrawlOutcome(
            status=status,
            pages_crawled=frontier.pages_crawled,
            next_token=frontier.cursor().encode() if status == "partial" else None,
            stored_urls=stored_urls,
        )

    async def _process_page(
        self, slot: int, url: str, depth: int, frontier: Frontier, start_url: str
    ) -> bool:
        """Render, store and expand one page; return False on a navigation failure."""
        try:
            async with self._pool.acquire(slot) as handle:
                page = await self._extract(handle, url, self.page_timeout_ms)
        except NavigationError as exc:
            logger.warning("Failed to process page %s: %s", url, exc)
            await self._writer.record_failure(url, str(exc))
            return False

        await self._writer.save_page(page)
        await self._writer.save_links(url, page.links)

        for link in page.links:
            if same_origin(link, start_url):
                frontier.push(link, depth + 1)

        if self._image_analyzer is not None and page.images:
            await self._process_images(url, page.images)
        return True

    async def _process_images(self, source_url: str, images: List[str]) -> None:
        analyses: List[ImageAnalysis] = []
        for start in range(0, len(images), MAX_CONCURRENT_IMAGES):
            batch = images[start:start + MAX_CONCURRENT_IMAGES]
            results = await asyncio.gather(
                *(self._image_analyzer.analyze(image_url) for image_url in batch),
                return_exceptions=True,
            )
            for image_url, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error("Failed to analyze image %s: %s", image_url, result)
                else:
                    analyses.append(result)
        await self._writer.save_images(source_url, analyses)
