"""Idempotent writes of crawl results and read access to the stored index."""

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.tables import Image, Link, LinkStatus, Page, utcnow
from app.services.extractor import ExtractedPage
from app.services.images import ImageAnalysis

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

# Keeps multi-row inserts under SQLite's bound-parameter limit
_BULK_CHUNK = 100


def _insert_for(session: AsyncSession, table):
    dialect = session.bind.dialect.name
    try:
        return _DIALECT_INSERTS[dialect](table)
    except KeyError:
        raise RuntimeError(f"Upserts are not supported on the '{dialect}' dialect.") from None


def _chunks(rows: Sequence[Dict[str, Any]], size: int = _BULK_CHUNK) -> Iterable[Sequence[Dict[str, Any]]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def _page_to_dict(page: Page) -> Dict[str, Any]:
    return {
        "url": page.url,
        "content": page.content,
        "linked_urls": page.linked_urls or [],
        "image_urls": page.image_urls or [],
        "meta_tags": page.meta_tags or [],
        "headings": page.headings or [],
        "load_time": page.load_time,
        "crawled_at": page.crawled_at,
        "error": page.error,
        "last_crawled": page.last_crawled,
    }


def _link_to_dict(link: Link) -> Dict[str, Any]:
    return {
        "url": link.url,
        "source_url": link.source_url,
        "status": link.status.value,
        "checked_at": link.checked_at,
        "http_status": link.http_status,
    }


def _image_to_dict(image: Image) -> Dict[str, Any]:
    return {
        "url": image.url,
        "source_url": image.source_url,
        "name": image.name,
        "file_size": image.file_size,
        "width": image.width,
        "height": image.height,
        "is_blurry": image.is_blurry,
        "analyzed_at": image.analyzed_at,
    }


class PageWriter:
    """Owns all crawl-side database writes.

    Every write is an upsert keyed on the record's natural key, so repeated
    crawls and resumed runs overwrite rather than duplicate.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def save_page(self, page: ExtractedPage) -> None:
        now = utcnow()
        values = {
            "url": page.url,
            "content": page.content,
            "linked_urls": page.links,
            "image_urls": page.images,
            "meta_tags": page.meta_tags,
            "headings": page.headings,
            "load_time": page.load_time,
            "crawled_at": now,
            "error": None,
            "last_crawled": now,
            "updated_at": now,
        }
        async with self._session_factory() as session:
            stmt = _insert_for(session, Page).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["url"],
                set_={key: stmt.excluded[key] for key in values if key != "url"},
            )
            await session.execute(stmt)
            await session.commit()

    async def record_failure(self, url: str, error: str) -> None:
        """Store a navigation failure on the page row, keeping earlier content."""
        now = utcnow()
        async with self._session_factory() as session:
            stmt = _insert_for(session, Page).values(
                url=url, error=error, last_crawled=now, updated_at=now
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["url"],
                set_={
                    "error": stmt.excluded.error,
                    "last_crawled": stmt.excluded.last_crawled,
                    "updated_at": stmt.excluded.updated_at,
                },
            )
            await session.execute(stmt)
            await session.commit()

    async def save_links(self, source_url: str, links: List[str]) -> None:
        """Upsert one pending Link row per discovered ``(url, source_url)`` edge."""
        if not links:
            return
        now = utcnow()
        rows = [
            {
                "url": link,
                "source_url": source_url,
                "status": LinkStatus.pending,
                "checked_at": now,
                "http_status": 0,
            }
            for link in links
        ]
        async with self._session_factory() as session:
            for chunk in _chunks(rows):
                stmt = _insert_for(session, Link).values(list(chunk))
                stmt = stmt.on_conflict_do_update(
                    index_elements=["url", "source_url"],
                    set_={
                        "status": stmt.excluded.status,
                        "checked_at": stmt.excluded.checked_at,
                    },
                )
                await session.execute(stmt)
            await session.commit()

    async def save_images(self, source_url: str, analyses: List[ImageAnalysis]) -> None:
        if not analyses:
            return
        now = utcnow()
        rows = [
            {
                "url": analysis.url,
                "source_url": source_url,
                "name": analysis.name,
                "file_size": analysis.file_size,
                "width": analysis.width,
                "height": analysis.height,
                "is_blurry": analysis.is_blurry,
                "analyzed_at": now,
            }
            for analysis in analyses
        ]
        async with self._session_factory() as session:
            for chunk in _chunks(rows):
                stmt = _insert_for(session, Image).values(list(chunk))
                stmt = stmt.on_conflict_do_update(
                    index_elements=["url"],
                    set_={key: stmt.excluded[key] for key in rows[0] if key != "url"},
                )
                await session.execute(stmt)
            await session.commit()

    async def get_index(self, url: str) -> Optional[Dict[str, Any]]:
        """Return the stored page with its outgoing links and images, or *None*."""
        async with self._session_factory() as session:
            page = (await session.execute(select(Page).where(Page.url == url))).scalar_one_or_none()
            if page is None:
                return None
            links = (
                await session.execute(
                    select(Link).where(Link.source_url == url).order_by(Link.url)
                )
            ).scalars().all()
            images = (
                await session.execute(
                    select(Image).where(Image.source_url == url).order_by(Image.url)
                )
            ).scalars().all()

        return {
            "page": _page_to_dict(page),
            "links": [_link_to_dict(link) for link in links],
            "images": [_image_to_dict(image) for image in images],
        }

    async def load_pages(self, urls: List[str]) -> List[Tuple[str, str]]:
        """Return ``(url, content)`` for every stored page in *urls* that has content."""
        if not urls:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(Page.url, Page.content)
                .where(Page.url.in_(urls), Page.content.is_not(None))
                .order_by(Page.url)
            )
            return [(row.url, row.content) for row in result]

    async def load_linked_urls(self, urls: List[str]) -> List[Tuple[str, List[str]]]:
        """Return ``(url, linked_urls)`` for every stored page in *urls*."""
        if not urls:
            return []
        async with self._session_factory() as session:
            result = await session.execute(
                select(Page.url, Page.linked_urls).where(Page.url.in_(urls)).order_by(Page.url)
            )
            return [(row.url, row.linked_urls or []) for row in result]
