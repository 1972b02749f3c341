from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── App ─────────────────────────────────────
    APP_NAME: str = "Linkscout"

    # ── Database ────────────────────────────────
    DATABASE_URL: str = "sqlite+aiosqlite:///./linkscout.db"

    # ── Rendering ───────────────────────────────
    RENDER_POOL_SIZE: int = 5
    PAGE_TIMEOUT_SECONDS: float = 15
    CHROMIUM_EXECUTABLE: Optional[str] = None
    HEADLESS: bool = True

    # ── Crawl bounds ────────────────────────────
    MAX_PAGES_PER_REQUEST: int = 10
    MAX_QUEUE_SIZE: int = 100
    MAX_CRAWL_DEPTH: int = 3
    CRAWL_DEADLINE_SECONDS: float = 30
    CRAWL_CACHE_TTL_SECONDS: float = 3600
    BROKEN_LINK_MAX_PAGES: int = 50

    # ── Link probing ────────────────────────────
    PROBE_CONCURRENCY: int = 10
    PROBE_MAX_RETRIES: int = 3
    PROBE_RETRY_DELAY: float = 1.0
    PROBE_TIMEOUT_SECONDS: float = 10

    # ── Safety / optional features ──────────────
    BLOCK_PRIVATE_ADDRESSES: bool = True
    ANALYZE_IMAGES: bool = False

    class Config:
        env_file = str(Path(__file__).parent.parent / ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
