"""Concurrency-limited HTTP liveness checks with retry, backoff and UA rotation."""

import asyncio
import logging
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Union
from urllib.parse import urlparse

import httpx

from app.services.urls import is_private_address

logger = logging.getLogger(__name__)

TIMEOUT = 10  # seconds
MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds, doubled per attempt
CONCURRENCY = 10

REQUEST_FAILED = "Request Failed"
BLOCKED_ADDRESS = "Blocked Address"

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) "
    "Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36 Edg/124.0.0.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1",
)

_DNS_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated",
    "name resolution",
)
_REFUSED_MARKERS = (
    "connection refused",
    "connect call failed",
    "actively refused",
)


@dataclass(frozen=True)
class Attempt:
    method: str
    delay: float
    user_agent: str


@dataclass
class ProbeResult:
    url: str
    status: Union[int, str]
    is_broken: bool
    reason: Optional[str] = None


class Transport(Protocol):
    """Issues one request and returns the response status code."""

    async def request(self, method: str, url: str, headers: Dict[str, str]) -> int: ...


class HttpxTransport:
    """:class:`Transport` over a shared ``httpx.AsyncClient``.

    GET responses are streamed and closed without reading the body.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = TIMEOUT):
        self._client = client or httpx.AsyncClient(follow_redirects=True, timeout=timeout)

    async def request(self, method: str, url: str, headers: Dict[str, str]) -> int:
        async with self._client.stream(method, url, headers=headers) as response:
            return response.status_code

    async def aclose(self) -> None:
        await self._client.aclose()


def plan_attempts(
    max_retries: int = MAX_RETRIES,
    retry_delay: float = RETRY_DELAY,
    user_agents: Sequence[str] = USER_AGENTS,
) -> List[Attempt]:
    """Return the attempt sequence for one probe.

    *max_retries* HEAD attempts followed by a single GET fallback. The delay
    before attempt *n* (n >= 1) is ``retry_delay * 2 ** (n - 1)`` and every
    attempt uses the next user agent in the pool.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1.")
    attempts: List[Attempt] = []
    for index in range(max_retries + 1):
        attempts.append(
            Attempt(
                method="HEAD" if index < max_retries else "GET",
                delay=0.0 if index == 0 else retry_delay * 2 ** (index - 1),
                user_agent=user_agents[index % len(user_agents)],
            )
        )
    return attempts


def classify_failure(exc: Optional[BaseException]) -> str:
    """Map a request exception to Timeout / Connection Refused / DNS Resolution Failed."""
    if isinstance(exc, httpx.TimeoutException):
        return "Timeout"

    seen = set()
    current = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, (TimeoutError, asyncio.TimeoutError)):
            return "Timeout"
        if isinstance(current, socket.gaierror):
            return "DNS Resolution Failed"
        if isinstance(current, ConnectionRefusedError):
            return "Connection Refused"
        message = str(current).lower()
        if any(marker in message for marker in _DNS_MARKERS):
            return "DNS Resolution Failed"
        if any(marker in message for marker in _REFUSED_MARKERS):
            return "Connection Refused"
        current = current.__cause__ or current.__context__
    return "Unknown Error"


class LinkProber:
    """Checks link liveness with at most *concurrency* requests in flight.

    Probing is pipelined: a finished probe frees its slot for the next URL
    immediately. Results come back in completion order.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        concurrency: int = CONCURRENCY,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        block_private: bool = False,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1.")
        self._transport = transport
        self.concurrency = concurrency
        self._attempts = plan_attempts(max_retries, retry_delay)
        self._sleep = sleep
        self.block_private = block_private

    async def __aenter__(self) -> "LinkProber":
        return self

    async def __aexit__(self, *exc_info) -> None:
        aclose = getattr(self._transport, "aclose", None)
        if aclose is not None:
            await aclose()

    async def probe(self, url: str) -> ProbeResult:
        hostname = urlparse(url).hostname
        if self.block_private and hostname and is_private_address(hostname):
            logger.warning("Skipping link check for %s: private or internal address", url)
            return ProbeResult(url=url, status=REQUEST_FAILED, is_broken=True, reason=BLOCKED_ADDRESS)

        last_status: Optional[int] = None
        last_error: Optional[BaseException] = None

        for attempt in self._attempts:
            # The GET fallback only follows HEAD attempts that got no response
            if attempt.method == "GET" and last_status is not None:
                break
            if attempt.delay:
                await self._sleep(attempt.delay)

            try:
                status = await self._transport.request(
                    attempt.method, url, {"User-Agent": attempt.user_agent}
                )
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                logger.debug("%s %s failed: %r", attempt.method, url, exc)
                last_status, last_error = None, exc
                continue

            if status == 429:
                logger.debug("%s %s rate limited", attempt.method, url)
                last_status = status
                continue
            return ProbeResult(url=url, status=status, is_broken=status >= 400)

        if last_status is not None:
            logger.warning("Link check for %s still rate limited after retries", url)
            return ProbeResult(url=url, status=last_status, is_broken=True, reason="Rate Limited")

        reason = classify_failure(last_error)
        logger.warning("Link check failed for %s: %s (%r)", url, reason, last_error)
        return ProbeResult(url=url, status=REQUEST_FAILED, is_broken=True, reason=reason)

    async def probe_all(self, urls: Iterable[str]) -> List[ProbeResult]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(url: str) -> ProbeResult:
            async with semaphore:
                return await self.probe(url)

        tasks = [asyncio.create_task(_bounded(url)) for url in urls]
        results: List[ProbeResult] = []
        try:
            for finished in asyncio.as_completed(tasks):
                results.append(await finished)
        finally:
            for task in tasks:
                task.cancel()
        return results
