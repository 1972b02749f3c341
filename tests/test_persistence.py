"""Tests for app.services.persistence.PageWriter against a temporary SQLite database."""

import pytest
from sqlalchemy import func, select

from app.db.tables import Link, Page
from app.services.extractor import ExtractedPage
from app.services.images import ImageAnalysis


def _page(url: str = "https://a.test/", content: str = "<html>v1</html>", links=None) -> ExtractedPage:
    return ExtractedPage(
        url=url,
        content=content,
        links=links or [],
        images=["https://a.test/logo.png"],
        meta_tags=[{"name": "description", "content": "About A"}],
        headings=["Welcome"],
        load_time=0.25,
    )


async def _count(session_factory, table) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(table))


@pytest.mark.asyncio
class TestSavePage:
    async def test_upsert_is_last_write_wins(self, writer, session_factory):
        await writer.save_page(_page(content="<html>v1</html>"))
        await writer.save_page(_page(content="<html>v2</html>"))

        assert await _count(session_factory, Page) == 1
        index = await writer.get_index("https://a.test/")
        assert index["page"]["content"] == "<html>v2</html>"
        assert index["page"]["meta_tags"] == [{"name": "description", "content": "About A"}]
        assert index["page"]["headings"] == ["Welcome"]
        assert index["page"]["load_time"] == 0.25

    async def test_failure_keeps_previous_content(self, writer):
        await writer.save_page(_page())
        await writer.record_failure("https://a.test/", "Navigation failed: timeout")

        page = (await writer.get_index("https://a.test/"))["page"]
        assert page["content"] == "<html>v1</html>"
        assert page["error"] == "Navigation failed: timeout"
        assert page["last_crawled"] is not None

    async def test_failure_on_new_url_creates_error_row(self, writer):
        await writer.record_failure("https://a.test/missing", "Navigation failed: HTTP 404")
        page = (await writer.get_index("https://a.test/missing"))["page"]
        assert page["content"] is None
        assert page["linked_urls"] == []

    async def test_successful_crawl_clears_error(self, writer):
        await writer.record_failure("https://a.test/", "boom")
        await writer.save_page(_page())
        page = (await writer.get_index("https://a.test/"))["page"]
        assert page["error"] is None


@pytest.mark.asyncio
class TestSaveLinks:
    async def test_one_pending_row_per_edge(self, writer, session_factory):
        links = ["https://a.test/about", "https://ext.test/"]
        await writer.save_links("https://a.test/", links)
        await writer.save_links("https://a.test/", links)
        await writer.save_links("https://a.test/about", ["https://ext.test/"])

        assert await _count(session_factory, Link) == 3

    async def test_index_lists_outgoing_links(self, writer):
        await writer.save_page(_page())
        await writer.save_links("https://a.test/", ["https://a.test/b", "https://a.test/a"])

        index = await writer.get_index("https://a.test/")
        assert [link["url"] for link in index["links"]] == ["https://a.test/a", "https://a.test/b"]
        assert all(link["status"] == "pending" for link in index["links"])
        assert all(link["http_status"] == 0 for link in index["links"])

    async def test_large_batches_are_chunked(self, writer, session_factory):
        links = [f"https://a.test/p{i}" for i in range(250)]
        await writer.save_links("https://a.test/", links)
        assert await _count(session_factory, Link) == 250

    async def test_empty_list_is_a_no_op(self, writer, session_factory):
        await writer.save_links("https://a.test/", [])
        assert await _count(session_factory, Link) == 0


@pytest.mark.asyncio
class TestImagesAndReads:
    async def test_images_upsert_by_url(self, writer):
        await writer.save_page(_page())
        analysis = ImageAnalysis(url="https://a.test/logo.png", name="logo.png", file_size=10)
        await writer.save_images("https://a.test/", [analysis])
        analysis.file_size = 20
        await writer.save_images("https://a.test/", [analysis])

        images = (await writer.get_index("https://a.test/"))["images"]
        assert len(images) == 1
        assert images[0]["file_size"] == 20
        assert images[0]["is_blurry"] is False

    async def test_get_index_not_found(self, writer):
        assert await writer.get_index("https://a.test/nothing") is None

    async def test_load_pages_skips_failed_pages(self, writer):
        await writer.save_page(_page("https://a.test/"))
        await writer.record_failure("https://a.test/broken", "HTTP 404")

        pages = await writer.load_pages(["https://a.test/", "https://a.test/broken", "https://a.test/x"])
        assert pages == [("https://a.test/", "<html>v1</html>")]

    async def test_load_linked_urls(self, writer):
        await writer.save_page(_page(links=["https://a.test/next"]))
        assert await writer.load_linked_urls(["https://a.test/"]) == [
            ("https://a.test/", ["https://a.test/next"])
        ]
