"""Build the deduplicated link set of a crawled site from stored page content."""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Tuple

from bs4 import BeautifulSoup

from app.services.urls import resolve, same_origin

logger = logging.getLogger(__name__)


@dataclass
class LinkInfo:
    link_type: str
    source_pages: List[str] = field(default_factory=list)


def collect(pages: Iterable[Tuple[str, str]], base_url: str) -> Dict[str, LinkInfo]:
    """Collect every hyperlink found in the stored *pages*.

    *pages* are ``(page_url, content)`` pairs read from the database; nothing
    is fetched and nothing is written. Each ``href`` is resolved against its
    own page's URL. A link is ``internal`` iff its origin equals the origin of
    *base_url*. Source pages are merged in discovery order without repeats.
    """
    links: Dict[str, LinkInfo] = {}
    for page_url, content in pages:
        if not content:
            continue
        soup = BeautifulSoup(content, "lxml")
        for anchor in soup.find_all("a", href=True):
            url = resolve(page_url, str(anchor["href"]))
            if url is None:
                continue
            info = links.get(url)
            if info is None:
                link_type = "internal" if same_origin(url, base_url) else "external"
                info = links[url] = LinkInfo(link_type=link_type)
            if page_url not in info.source_pages:
                info.source_pages.append(page_url)

    logger.info("Collected %d unique links from stored pages of %s", len(links), base_url)
    return links
