"""Image analysis hook used by the crawler for discovered image URLs.

Pixel-level analysis (dimensions, blur detection) lives outside this
service; :class:`HeadImageAnalyzer` only records what a HEAD request reveals.
"""

from dataclasses import dataclass
from typing import Optional, Protocol
from urllib.parse import unquote, urlparse

import httpx

TIMEOUT = 10  # seconds


@dataclass
class ImageAnalysis:
    url: str
    name: str
    file_size: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    is_blurry: bool = False


class ImageAnalyzer(Protocol):
    async def analyze(self, url: str) -> ImageAnalysis: ...


def image_name(url: str) -> str:
    """Return the last path segment of *url*, falling back to the URL itself."""
    segment = unquote(urlparse(url).path.rstrip("/").rsplit("/", 1)[-1])
    return segment or url


class HeadImageAnalyzer:
    """Record an image's byte size from the ``Content-Length`` of a HEAD request."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(follow_redirects=True, timeout=TIMEOUT)

    async def analyze(self, url: str) -> ImageAnalysis:
        response = await self._client.head(url)
        response.raise_for_status()
        content_length = response.headers.get("content-length")
        return ImageAnalysis(
            url=url,
            name=image_name(url),
            file_size=int(content_length) if content_length and content_length.isdigit() else None,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
