"""BFS traversal state and the resumable crawl cursor."""

import base64
import binascii
import json
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Set, Tuple

from app.services.urls import same_origin


class InvalidCursorError(ValueError):
    """Raised when a continuation token cannot be decoded."""


@dataclass
class CrawlCursor:
    """Resumable crawl state handed back to callers as ``next_token``.

    The token is URL-safe base64 over compact JSON. It is opaque to callers
    only on a best-effort basis: it is neither signed nor encrypted, so a
    client can read or forge it. Pending URLs outside the start URL's origin
    are dropped on resume, so forging one can only make the crawler skip or
    revisit pages of the same site.

    A bare JSON array of URLs is accepted as a *legacy* cursor that carries
    the visited set only.
    """

    visited: List[str] = field(default_factory=list)
    pending: List[Tuple[str, int]] = field(default_factory=list)
    legacy: bool = False

    def encode(self) -> str:
        payload = {"v": self.visited, "q": [[url, depth] for url, depth in self.pending]}
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, token: str) -> "CrawlCursor":
        token = token.strip()
        if not token:
            raise InvalidCursorError("Continuation token is empty.")

        if token.startswith("["):
            return cls(visited=_string_list(_loads(token)), legacy=True)

        try:
            raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
        except (binascii.Error, ValueError) as exc:
            raise InvalidCursorError("Continuation token is not valid base64.") from exc

        data = _loads(raw)
        if not isinstance(data, dict):
            raise InvalidCursorError("Continuation token has an unexpected shape.")

        pending: List[Tuple[str, int]] = []
        for entry in data.get("q", []):
            if (
                not isinstance(entry, list)
                or len(entry) != 2
                or not isinstance(entry[0], str)
                or not isinstance(entry[1], int)
            ):
                raise InvalidCursorError("Continuation token has a malformed queue entry.")
            pending.append((entry[0], entry[1]))

        return cls(visited=_string_list(data.get("v", [])), pending=pending)


def _loads(raw) -> object:
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidCursorError("Continuation token is not valid JSON.") from exc


def _string_list(value: object) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise InvalidCursorError("Continuation token must hold a list of URLs.")
    return list(value)


class Frontier:
    """Visited set, FIFO queue and per-invocation bounds of one crawl.

    URLs are marked visited when they are dequeued, so a URL is handed out
    at most once per run and never when it arrived in the cursor's visited
    set.
    """

    def __init__(
        self,
        start_url: str,
        *,
        max_pages: int,
        max_queue_size: int,
        max_depth: int,
        deadline_seconds: Optional[float] = None,
        cursor: Optional[CrawlCursor] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.start_url = start_url
        self.max_pages = max_pages
        self.max_queue_size = max_queue_size
        self.max_depth = max_depth
        self.pages_crawled = 0

        self.visited: Set[str] = set()
        self.queue: Deque[Tuple[str, int]] = deque()
        self._queued: Set[str] = set()

        self._clock = clock
        self._deadline = clock() + deadline_seconds if deadline_seconds is not None else None

        if cursor is None:
            self.push(start_url, 0)
        else:
            self.visited.update(cursor.visited)
            # Pending URLs come from the client; only the start URL's origin is trusted
            for url, depth in cursor.pending:
                if same_origin(url, start_url):
                    self.push(url, depth)

    def push(self, url: str, depth: int) -> bool:
        """Enqueue *url* at *depth*; return False when it was not enqueued.

        Links past the depth ceiling and links arriving while the queue is
        full are dropped silently.
        """
        if depth > self.max_depth:
            return False
        if url in self.visited or url in self._queued:
            return False
        if len(self.queue) >= self.max_queue_size:
            return False
        self.queue.append((url, depth))
        self._queued.add(url)
        return True

    def next_batch(self, size: int) -> List[Tuple[str, int]]:
        """Dequeue up to *size* unvisited URLs, charging each to the page budget."""
        batch: List[Tuple[str, int]] = []
        while self.queue and len(batch) < size and self.pages_crawled < self.max_pages:
            url, depth = self.queue.popleft()
            self._queued.discard(url)
            if url in self.visited:
                continue
            self.visited.add(url)
            self.pages_crawled += 1
            batch.append((url, depth))
        return batch

    @property
    def expired(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def should_continue(self) -> bool:
        return bool(self.queue) and self.pages_crawled < self.max_pages and not self.expired

    @property
    def status(self) -> str:
        return "partial" if self.queue else "success"

    def cursor(self) -> CrawlCursor:
        return CrawlCursor(visited=sorted(self.visited), pending=list(self.queue))
