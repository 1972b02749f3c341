import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from app.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LinkStatus(enum.Enum):
    pending = "pending"
    valid = "valid"
    broken = "broken"


class LinkType(enum.Enum):
    internal = "internal"
    external = "external"


class Page(Base):
    """One crawled page, overwritten on every successful crawl of its URL."""

    __tablename__ = "pages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String(2048), unique=True, nullable=False, index=True)
    content = Column(Text, nullable=True)
    linked_urls = Column(JSON, nullable=False, default=list)
    image_urls = Column(JSON, nullable=False, default=list)
    meta_tags = Column(JSON, nullable=False, default=list)
    headings = Column(JSON, nullable=False, default=list)
    load_time = Column(Float, nullable=True)
    crawled_at = Column(DateTime(timezone=True), nullable=True)
    # Set by a failed navigation; cleared by the next successful crawl
    error = Column(Text, nullable=True)
    last_crawled = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Page(url={self.url}, error={self.error})>"


class Link(Base):
    """A discovered ``(url, source_url)`` edge.

    ``status`` is advisory; the canonical liveness result lives in
    :class:`BrokenLink`.
    """

    __tablename__ = "links"
    __table_args__ = (UniqueConstraint("url", "source_url", name="uq_links_url_source"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String(2048), nullable=False, index=True)
    source_url = Column(String(2048), nullable=False, index=True)
    status = Column(Enum(LinkStatus), default=LinkStatus.pending, nullable=False)
    checked_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    http_status = Column(Integer, default=0, nullable=False)


class Image(Base):
    __tablename__ = "images"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String(2048), unique=True, nullable=False, index=True)
    source_url = Column(String(2048), nullable=False, index=True)
    name = Column(String(512), nullable=True)
    file_size = Column(Integer, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    is_blurry = Column(Boolean, default=False, nullable=False)
    analyzed_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class BrokenLink(Base):
    """One broken URL found by the latest committed validation run for ``base_url``."""

    __tablename__ = "broken_links"
    __table_args__ = (Index("ix_broken_links_base_status", "base_url", "status"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    base_url = Column(String(2048), nullable=False)
    url = Column(String(2048), nullable=False)
    link_type = Column(Enum(LinkType), nullable=False)
    # HTTP code as text, or "Request Failed" when no response was obtained
    status = Column(String(32), nullable=False)
    source_pages = Column(JSON, nullable=False, default=list)
    reason = Column(String(255), nullable=True)
    checked_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
