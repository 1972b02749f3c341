"""Tests for the HTTP endpoints.

Services are replaced through ``app.dependency_overrides`` so no browser,
network or database is touched.  The lifespan is not run.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from app.dependencies import get_crawler, get_store, get_validator, get_writer
from app.main import app
from app.routers import broken_links, crawl
from app.services.broken_links import (
    BrokenLinkCommitError,
    BrokenLinkEntry,
    BrokenLinkPage,
    ValidationSummary,
)
from app.services.crawler import CrawlOutcome
from app.services.frontier import InvalidCursorError

client = TestClient(app)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Clear the slowapi in-memory counters and dependency overrides around every test."""
    crawl.limiter._storage.reset()
    broken_links.limiter._storage.reset()
    yield
    app.dependency_overrides.clear()


def _override(dependency, service):
    app.dependency_overrides[dependency] = lambda: service
    return service


# ---------------------------------------------------------------------------
# POST /crawler/start
# ---------------------------------------------------------------------------

class TestStartCrawl:
    def test_success(self):
        crawler = _override(get_crawler, MagicMock())
        crawler.crawl = AsyncMock(return_value=CrawlOutcome("success", 3, None, []))

        resp = client.post("/crawler/start", params={"url": "https://a.test"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "success"
        assert body["message"] == "Crawling completed successfully"
        assert body["data"]["pages_crawled"] == 3
        assert body["data"]["next_token"] is None
        crawler.crawl.assert_awaited_once_with("https://a.test", token=None)

    def test_partial_passes_token_through(self):
        crawler = _override(get_crawler, MagicMock())
        crawler.crawl = AsyncMock(return_value=CrawlOutcome("partial", 10, "abc", []))

        resp = client.post("/crawler/start", params={"url": "https://a.test", "token": "prev"})

        body = resp.json()
        assert body["status"] == "partial"
        assert body["message"] == "Crawling completed partially"
        assert body["data"]["next_token"] == "abc"
        crawler.crawl.assert_awaited_once_with("https://a.test", token="prev")

    def test_missing_url_is_rejected(self):
        _override(get_crawler, MagicMock())
        assert client.post("/crawler/start").status_code == 422

    @pytest.mark.parametrize(
        "exc", [ValueError("Only http and https URLs are supported."), InvalidCursorError("bad token")]
    )
    def test_invalid_input_returns_400(self, exc):
        crawler = _override(get_crawler, MagicMock())
        crawler.crawl = AsyncMock(side_effect=exc)

        resp = client.post("/crawler/start", params={"url": "ftp://a.test"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == str(exc)

    def test_storage_failure_returns_500(self):
        crawler = _override(get_crawler, MagicMock())
        crawler.crawl = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("locked")))

        resp = client.post("/crawler/start", params={"url": "https://a.test"})
        assert resp.status_code == 500


# ---------------------------------------------------------------------------
# GET /crawler/index
# ---------------------------------------------------------------------------

class TestIndex:
    def test_found(self):
        writer = _override(get_writer, MagicMock())
        writer.get_index = AsyncMock(
            return_value={
                "page": {
                    "url": "https://a.test/",
                    "content": "<html></html>",
                    "linked_urls": ["https://a.test/about"],
                    "image_urls": [],
                    "meta_tags": [{"name": "description", "content": "A"}],
                    "headings": ["Welcome"],
                    "load_time": 0.2,
                    "crawled_at": NOW,
                    "error": None,
                    "last_crawled": NOW,
                },
                "links": [
                    {
                        "url": "https://a.test/about",
                        "source_url": "https://a.test/",
                        "status": "pending",
                        "checked_at": NOW,
                        "http_status": 0,
                    }
                ],
                "images": [],
            }
        )

        resp = client.get("/crawler/index", params={"url": "https://a.test"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "success"
        assert body["data"]["page"]["headings"] == ["Welcome"]
        assert body["data"]["links"][0]["status"] == "pending"
        writer.get_index.assert_awaited_once_with("https://a.test/")

    def test_not_found(self):
        writer = _override(get_writer, MagicMock())
        writer.get_index = AsyncMock(return_value=None)

        resp = client.get("/crawler/index", params={"url": "https://a.test/missing"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "not_found"
        assert body["data"]["page"] is None
        assert body["data"]["links"] == []

    def test_malformed_url(self):
        _override(get_writer, MagicMock())
        assert client.get("/crawler/index", params={"url": "not a url"}).status_code == 400


# ---------------------------------------------------------------------------
# POST /broken-links/crawl
# ---------------------------------------------------------------------------

class TestBrokenLinkCrawl:
    def test_success(self):
        validator = _override(get_validator, MagicMock())
        validator.run = AsyncMock(return_value=ValidationSummary(pages_crawled=2, broken_links_found=1))

        resp = client.post("/broken-links/crawl", params={"url": "https://a.test", "max_depth": 3})

        assert resp.status_code == 200
        assert resp.json()["pages_crawled"] == 2
        assert resp.json()["broken_links_found"] == 1
        validator.run.assert_awaited_once_with("https://a.test", max_depth=3)

    def test_default_depth(self):
        validator = _override(get_validator, MagicMock())
        validator.run = AsyncMock(return_value=ValidationSummary(0, 0))

        client.post("/broken-links/crawl", params={"url": "https://a.test"})
        validator.run.assert_awaited_once_with("https://a.test", max_depth=2)

    @pytest.mark.parametrize("depth", [0, 6])
    def test_depth_out_of_range(self, depth):
        validator = _override(get_validator, MagicMock())
        validator.run = AsyncMock()

        resp = client.post("/broken-links/crawl", params={"url": "https://a.test", "max_depth": depth})
        assert resp.status_code == 422
        validator.run.assert_not_awaited()

    def test_invalid_url_returns_400(self):
        validator = _override(get_validator, MagicMock())
        validator.run = AsyncMock(side_effect=ValueError("Invalid URL: no host"))

        assert client.post("/broken-links/crawl", params={"url": "nope"}).status_code == 400

    def test_commit_failure_returns_500(self):
        validator = _override(get_validator, MagicMock())
        validator.run = AsyncMock(side_effect=BrokenLinkCommitError("rolled back"))

        assert client.post("/broken-links/crawl", params={"url": "https://a.test"}).status_code == 500

    def test_rate_limited(self):
        validator = _override(get_validator, MagicMock())
        validator.run = AsyncMock(return_value=ValidationSummary(0, 0))

        codes = [
            client.post("/broken-links/crawl", params={"url": "https://a.test"}).status_code
            for _ in range(4)
        ]
        assert codes == [200, 200, 200, 429]


# ---------------------------------------------------------------------------
# GET /broken-links
# ---------------------------------------------------------------------------

class TestBrokenLinkList:
    def test_payload_and_pagination(self):
        store = _override(get_store, MagicMock())
        store.get_broken_links = AsyncMock(
            return_value=BrokenLinkPage(
                base_url="https://a.test/",
                total=21,
                page=1,
                limit=20,
                items=[
                    BrokenLinkEntry(
                        url="https://a.test/broken",
                        link_type="internal",
                        status=404,
                        source_pages=["https://a.test/", "https://a.test/about"],
                        checked_at=NOW,
                    ),
                    BrokenLinkEntry(
                        url="https://gone.test/",
                        link_type="external",
                        status="Request Failed",
                        source_pages=["https://a.test/"],
                        reason="Timeout",
                        checked_at=NOW,
                    ),
                ],
            )
        )

        resp = client.get("/broken-links", params={"url": "https://a.test"})

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["base_url"] == "https://a.test/"
        assert data["total_broken_links"] == 21
        assert data["pagination"] == {"page": 1, "limit": 20, "total_pages": 2, "has_next": True}
        assert data["broken_links"][0]["status"] == 404
        assert data["broken_links"][1]["status"] == "Request Failed"
        assert data["broken_links"][1]["reason"] == "Timeout"
        store.get_broken_links.assert_awaited_once_with("https://a.test/", page=1, limit=20)

    @pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"limit": 101}])
    def test_invalid_pagination(self, params):
        _override(get_store, MagicMock())
        resp = client.get("/broken-links", params={"url": "https://a.test", **params})
        assert resp.status_code == 422


def test_health_check():
    resp = client.get("/")
    assert resp.status_code == 200
    assert "Linkscout" in resp.json()["message"]
