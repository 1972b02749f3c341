from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel


class CrawlData(BaseModel):
    pages_crawled: int
    next_token: Optional[str] = None
    timestamp: datetime


class CrawlResponse(BaseModel):
    status: Literal["success", "partial"]
    message: str
    data: CrawlData


class PageIndex(BaseModel):
    url: str
    content: Optional[str] = None
    linked_urls: List[str]
    image_urls: List[str]
    meta_tags: List[Dict[str, str]]
    headings: List[str]
    load_time: Optional[float] = None
    crawled_at: Optional[datetime] = None
    error: Optional[str] = None
    last_crawled: Optional[datetime] = None


class LinkIndex(BaseModel):
    url: str
    source_url: str
    status: Literal["pending", "valid", "broken"]
    checked_at: datetime
    http_status: int
    """Advisory only; the canonical liveness result is the broken-link report."""


class ImageIndex(BaseModel):
    url: str
    source_url: str
    name: Optional[str] = None
    file_size: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    is_blurry: bool
    analyzed_at: datetime


class IndexData(BaseModel):
    page: Optional[PageIndex] = None
    links: List[LinkIndex]
    images: List[ImageIndex]
    timestamp: datetime


class IndexResponse(BaseModel):
    status: Literal["success", "not_found"]
    message: str
    data: IndexData
