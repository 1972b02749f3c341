import logging
import logging.config
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.db.session import SessionLocal, engine, init_db
from app.routers.broken_links import router as broken_links_router
from app.routers.crawl import limiter, router as crawl_router
from app.services.broken_links import BrokenLinkStore, BrokenLinkValidator
from app.services.browser_pool import PoolCloseError, RendererPool
from app.services.cache import TTLCache
from app.services.crawler import SiteCrawler
from app.services.images import HeadImageAnalyzer
from app.services.persistence import PageWriter
from app.services.prober import HttpxTransport, LinkProber

logging.config.dictConfig(
    {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "format": '{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json",
            },
        },
        "root": {"level": "INFO", "handlers": ["console"]},
    }
)

logger = logging.getLogger(__name__)


def _make_prober() -> LinkProber:
    return LinkProber(
        HttpxTransport(timeout=settings.PROBE_TIMEOUT_SECONDS),
        concurrency=settings.PROBE_CONCURRENCY,
        max_retries=settings.PROBE_MAX_RETRIES,
        retry_delay=settings.PROBE_RETRY_DELAY,
        block_private=settings.BLOCK_PRIVATE_ADDRESSES,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db(engine)

    # Browser launches lazily on the first crawl
    pool = RendererPool(
        settings.RENDER_POOL_SIZE,
        headless=settings.HEADLESS,
        executable_path=settings.CHROMIUM_EXECUTABLE,
    )
    image_analyzer = HeadImageAnalyzer() if settings.ANALYZE_IMAGES else None
    writer = PageWriter(SessionLocal)
    crawler = SiteCrawler(
        pool,
        writer,
        cache=TTLCache(settings.CRAWL_CACHE_TTL_SECONDS),
        image_analyzer=image_analyzer,
        max_pages_per_request=settings.MAX_PAGES_PER_REQUEST,
        max_queue_size=settings.MAX_QUEUE_SIZE,
        max_depth=settings.MAX_CRAWL_DEPTH,
        deadline_seconds=settings.CRAWL_DEADLINE_SECONDS,
        page_timeout_ms=int(settings.PAGE_TIMEOUT_SECONDS * 1000),
        block_private=settings.BLOCK_PRIVATE_ADDRESSES,
    )
    store = BrokenLinkStore(SessionLocal)

    app.state.writer = writer
    app.state.crawler = crawler
    app.state.broken_link_store = store
    app.state.validator = BrokenLinkValidator(
        crawler,
        writer,
        store,
        _make_prober,
        max_pages=settings.BROKEN_LINK_MAX_PAGES,
        block_private=settings.BLOCK_PRIVATE_ADDRESSES,
    )

    yield

    try:
        await pool.close()
    except PoolCloseError as exc:
        logger.error("Renderer pool shutdown incomplete: %s", exc)
    if image_analyzer is not None:
        await image_analyzer.aclose()
    await engine.dispose()


app = FastAPI(
    title=f"{settings.APP_NAME} – Site Crawler & Link Checker API",
    description=(
        "Crawls websites with a headless browser, stores their link structure, "
        "and reports broken links."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# Rate-limiting state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception for %s", request.url)
    return JSONResponse(status_code=500, content={"detail": "An unexpected error occurred."})


app.include_router(crawl_router)
app.include_router(broken_links_router)


@app.get("/", summary="Health check")
async def root() -> dict:
    return {"message": f"Hello from {settings.APP_NAME}"}
