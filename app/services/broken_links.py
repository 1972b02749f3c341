"""Broken-link validation runs and the per-base-URL result store."""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Union

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.tables import BrokenLink, LinkType, utcnow
from app.services.crawler import SiteCrawler
from app.services.link_collector import collect
from app.services.persistence import PageWriter
from app.services.prober import LinkProber
from app.services.urls import validate_url

logger = logging.getLogger(__name__)

MIN_DEPTH = 1
MAX_DEPTH = 5


class BrokenLinkCommitError(RuntimeError):
    """The replacement of a base URL's broken-link set was rolled back."""


@dataclass
class BrokenLinkEntry:
    url: str
    link_type: str
    status: Union[int, str]
    source_pages: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    checked_at: Optional[datetime] = None


@dataclass
class BrokenLinkPage:
    base_url: str
    total: int
    page: int
    limit: int
    items: List[BrokenLinkEntry]

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


@dataclass
class ValidationSummary:
    pages_crawled: int
    broken_links_found: int


def _status_from_db(status: str) -> Union[int, str]:
    return int(status) if status.isdigit() else status


class BrokenLinkStore:
    """Holds, per base URL, the broken links of the latest committed run."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def commit(self, base_url: str, entries: List[BrokenLinkEntry]) -> None:
        """Replace the stored set for *base_url* with *entries* in one transaction.

        Raises:
            BrokenLinkCommitError: if any statement fails; the previous set is kept.
        """
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    await session.execute(delete(BrokenLink).where(BrokenLink.base_url == base_url))
                    await self._insert_rows(session, base_url, entries)
            except SQLAlchemyError as exc:
                logger.error("Broken-link commit for %s rolled back: %s", base_url, exc)
                raise BrokenLinkCommitError(
                    f"Could not store broken links for {base_url}."
                ) from exc
        logger.info("Stored %d broken links for %s", len(entries), base_url)

    async def _insert_rows(
        self, session: AsyncSession, base_url: str, entries: List[BrokenLinkEntry]
    ) -> None:
        now = utcnow()
        session.add_all(
            BrokenLink(
                base_url=base_url,
                url=entry.url,
                link_type=LinkType(entry.link_type),
                status=str(entry.status),
                source_pages=list(entry.source_pages),
                reason=entry.reason,
                checked_at=entry.checked_at or now,
            )
            for entry in entries
        )
        await session.flush()

    async def get_broken_links(self, base_url: str, page: int = 1, limit: int = 20) -> BrokenLinkPage:
        """Return one page of the stored set, ordered by ``(status, url)``."""
        if page < 1:
            raise ValueError("page must be at least 1.")
        if not 1 <= limit <= 100:
            raise ValueError("limit must be between 1 and 100.")

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(BrokenLink).where(BrokenLink.base_url == base_url)
            )
            rows = (
                await session.execute(
                    select(BrokenLink)
                    .where(BrokenLink.base_url == base_url)
                    .order_by(BrokenLink.status, BrokenLink.url, BrokenLink.id)
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).scalars().all()

        items = [
            BrokenLinkEntry(
                url=row.url,
                link_type=row.link_type.value,
                status=_status_from_db(row.status),
                source_pages=list(row.source_pages or []),
                reason=row.reason,
                checked_at=row.checked_at,
            )
            for row in rows
        ]
        return BrokenLinkPage(base_url=base_url, total=total or 0, page=page, limit=limit, items=items)


class BrokenLinkValidator:
    """Crawls a site, probes every link found in the stored pages and commits the broken ones."""

    def __init__(
        self,
        crawler: SiteCrawler,
        writer: PageWriter,
        store: BrokenLinkStore,
        prober_factory: Callable[[], LinkProber],
        *,
        max_pages: int = 50,
        block_private: bool = True,
    ):
        self._crawler = crawler
        self._writer = writer
        self._store = store
        self._prober_factory = prober_factory
        self.max_pages = max_pages
        self.block_private = block_private

    async def run(self, base_url: str, max_depth: int = 2) -> ValidationSummary:
        """Validate every link reachable from *base_url* within *max_depth*.

        Raises:
            ValueError: for an invalid base URL or depth, before any work starts.
            BrokenLinkCommitError: when the result could not be stored.
        """
        if not MIN_DEPTH <= max_depth <= MAX_DEPTH:
            raise ValueError(f"max_depth must be between {MIN_DEPTH} and {MAX_DEPTH}.")
        base_url = validate_url(base_url, block_private=self.block_private)
        logger.info("Initiating broken link crawl for %s with max_depth %d", base_url, max_depth)

        outcome = await self._crawler.crawl_all(base_url, max_depth=max_depth, max_pages=self.max_pages)
        pages = await self._writer.load_pages(outcome.stored_urls)
        links = collect(pages, base_url)

        async with self._prober_factory() as prober:
            results = await prober.probe_all(list(links))

        checked_at = utcnow()
        broken = [
            BrokenLinkEntry(
                url=result.url,
                link_type=links[result.url].link_type,
                status=result.status,
                source_pages=links[result.url].source_pages,
                reason=result.reason,
                checked_at=checked_at,
            )
            for result in results
            if result.is_broken
        ]
        await self._store.commit(base_url, broken)

        logger.info(
            "Broken link crawl of %s completed: %d pages, %d links, %d broken",
            base_url,
            len(outcome.stored_urls),
            len(links),
            len(broken),
        )
        return ValidationSummary(pages_crawled=len(outcome.stored_urls), broken_links_found=len(broken))
