"""Render a page on a pooled handle and extract its structural data."""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Route

from app.services.urls import resolve

logger = logging.getLogger(__name__)

TIMEOUT_MS = 15_000  # 15 s in milliseconds

# Only these resource types reach the network; images, styles and fonts are aborted
ALLOWED_RESOURCE_TYPES = frozenset({"document", "xhr", "fetch"})

_HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")


class NavigationError(RuntimeError):
    """A page could not be loaded; recorded against that URL, never fatal to the run."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(message)


@dataclass
class ExtractedPage:
    url: str
    content: str
    links: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    meta_tags: List[Dict[str, str]] = field(default_factory=list)
    headings: List[str] = field(default_factory=list)
    load_time: float = 0.0


async def filter_request(route: Route) -> None:
    """Let documents and XHR/fetch calls through and abort everything else."""
    if route.request.resource_type in ALLOWED_RESOURCE_TYPES:
        await route.continue_()
    else:
        await route.abort()


def _unique(urls) -> List[str]:
    seen: set = set()
    result: List[str] = []
    for url in urls:
        if url and url not in seen:
            seen.add(url)
            result.append(url)
    return result


def _extract_links(soup: BeautifulSoup, page_url: str) -> List[str]:
    return _unique(resolve(page_url, str(a["href"])) for a in soup.find_all("a", href=True))


def _extract_images(soup: BeautifulSoup, page_url: str) -> List[str]:
    return _unique(
        resolve(page_url, str(img.get("src") or img.get("data-src") or ""))
        for img in soup.find_all("img")
    )


def _extract_meta_tags(soup: BeautifulSoup) -> List[Dict[str, str]]:
    tags: List[Dict[str, str]] = []
    for meta in soup.find_all("meta"):
        name = meta.get("name") or meta.get("property")
        content = meta.get("content")
        if name and content is not None:
            tags.append({"name": str(name).strip(), "content": str(content).strip()})
    return tags


def _extract_headings(soup: BeautifulSoup) -> List[str]:
    headings: List[str] = []
    for node in soup.find_all(_HEADING_TAGS):
        text = node.get_text(" ", strip=True)
        if text:
            headings.append(text)
    return headings


def parse_html(
    html: str, page_url: str
) -> Tuple[List[str], List[str], List[Dict[str, str]], List[str]]:
    """Extract structural data from rendered *html*.

    Every ``href``/``src`` is resolved against *page_url*, restricted to
    http/https and stripped of its fragment; malformed URLs are dropped.

    Returns:
        (links, images, meta_tags, headings)
    """
    soup = BeautifulSoup(html, "lxml")
    return (
        _extract_links(soup, page_url),
        _extract_images(soup, page_url),
        _extract_meta_tags(soup),
        _extract_headings(soup),
    )


async def extract_page(handle: Page, url: str, timeout_ms: int = TIMEOUT_MS) -> ExtractedPage:
    """Navigate *handle* to *url* and return the extracted page.

    The handle is reset before navigating so state from the previous page
    does not leak. Navigation waits for ``domcontentloaded`` only.

    Raises:
        NavigationError: on timeout, browser errors or an HTTP status >= 400.
    """
    try:
        await handle.unroute("**/*")
        await handle.set_content("")
        await handle.route("**/*", filter_request)

        logger.debug("Rendering %s", url)
        started = time.perf_counter()
        response = await handle.goto(url, wait_until="domcontentloaded", timeout=timeout_ms)
        load_time = time.perf_counter() - started

        if response is not None and response.status >= 400:
            raise NavigationError(url, f"Navigation failed: HTTP {response.status}")

        html = await handle.content()
    except PlaywrightError as exc:
        raise NavigationError(url, f"Navigation failed: {exc}") from exc

    links, images, meta_tags, headings = parse_html(html, url)
    return ExtractedPage(
        url=url,
        content=html,
        links=links,
        images=images,
        meta_tags=meta_tags,
        headings=headings,
        load_time=load_time,
    )
