from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel


class BrokenLinkCrawlResponse(BaseModel):
    message: str
    pages_crawled: int
    broken_links_found: int


class BrokenLinkItem(BaseModel):
    url: str
    link_type: Literal["internal", "external"]
    status: Union[int, str]
    """HTTP status code, or ``"Request Failed"`` when no response was obtained."""
    source_pages: List[str]
    reason: Optional[str] = None
    checked_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total_pages: int
    has_next: bool


class BrokenLinkData(BaseModel):
    base_url: str
    total_broken_links: int
    broken_links: List[BrokenLinkItem]
    pagination: Pagination


class BrokenLinkListResponse(BaseModel):
    status: Literal["success"] = "success"
    message: str
    data: BrokenLinkData
