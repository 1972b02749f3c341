"""URL helpers shared by the crawler, extractor and link collector."""

import ipaddress
import socket
from typing import Optional, Tuple
from urllib.parse import urljoin, urlparse

ALLOWED_SCHEMES = {"http", "https"}

# Hrefs that never point at a fetchable document
_SKIP_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:")

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalise(url: str) -> str:
    """Strip URL fragment so http://x.com/page#sec and http://x.com/page are the same.

    An empty path becomes ``/`` so http://x.com and http://x.com/ are the same too.
    """
    parsed = urlparse(url)._replace(fragment="")
    if parsed.netloc and not parsed.path:
        parsed = parsed._replace(path="/")
    return parsed.geturl()


def origin(url: str) -> Tuple[str, str, Optional[int]]:
    """Return the ``(scheme, host, port)`` origin of *url* with default ports filled in."""
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    try:
        port = parsed.port
    except ValueError:
        port = None
    return scheme, (parsed.hostname or "").lower(), port or _DEFAULT_PORTS.get(scheme)


def same_origin(url: str, base_url: str) -> bool:
    return origin(url) == origin(base_url)


def resolve(base_url: str, href: Optional[str]) -> Optional[str]:
    """Resolve *href* against *base_url* and return a fragment-free http(s) URL.

    Returns *None* for empty, fragment-only, ``javascript:``/``mailto:``/``tel:``
    and otherwise malformed or non-HTTP references.
    """
    if not href:
        return None
    href = href.strip()
    if not href or href.lower().startswith(_SKIP_HREF_PREFIXES):
        return None
    try:
        absolute = urljoin(base_url, href)
        parsed = urlparse(absolute)
        # Accessing .port validates the authority part
        parsed.port
    except ValueError:
        return None
    if parsed.scheme not in ALLOWED_SCHEMES or not parsed.hostname:
        return None
    return normalise(absolute)


def is_private_address(hostname: str) -> bool:
    """Return True if *hostname* resolves to a private, loopback, or link-local address."""
    try:
        infos = socket.getaddrinfo(hostname, None)
    except socket.gaierror:
        return False

    for info in infos:
        # Strip IPv6 zone IDs (e.g. "::1%eth0" → "::1")
        raw_ip = info[4][0].split("%")[0]
        try:
            addr = ipaddress.ip_address(raw_ip)
        except ValueError:
            continue
        if addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_reserved:
            return True
    return False


def validate_url(url: str, block_private: bool = True) -> str:
    """Raise ValueError if *url* fails scheme / host / SSRF validation.

    Returns the fragment-free form of *url*.
    """
    try:
        parsed = urlparse(url)
        parsed.port
    except ValueError as exc:
        raise ValueError(f"Malformed URL: {url}") from exc

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise ValueError(f"Scheme '{parsed.scheme}' is not allowed. Use http or https.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname.")

    if block_private and is_private_address(hostname):
        raise ValueError("Requests to private/internal addresses are not allowed.")

    return normalise(url)
