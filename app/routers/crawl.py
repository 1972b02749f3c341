import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError

from app.dependencies import get_crawler, get_writer
from app.models.crawl_response import CrawlData, CrawlResponse, IndexData, IndexResponse
from app.services.crawler import SiteCrawler
from app.services.persistence import PageWriter
from app.services.urls import validate_url

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter(prefix="/crawler", tags=["Crawler"])


@router.post(
    "/start",
    response_model=CrawlResponse,
    summary="Crawl a website",
    description=(
        "Renders pages of the site with a headless browser, breadth-first from "
        "*url*, and stores links, images, meta tags and headings of every page.  "
        "Each call crawls a bounded number of pages; when more remain the "
        "response has `status=partial` and a `next_token` to pass back as "
        "`token` to continue."
    ),
)
@limiter.limit("5/minute")
async def start_crawl(
    request: Request,
    url: str = Query(..., description="Start URL (http or https)."),
    token: Optional[str] = Query(default=None, description="Continuation token of a partial crawl."),
    crawler: SiteCrawler = Depends(get_crawler),
) -> CrawlResponse:
    logger.info("Crawl request received", extra={"url": url, "resumed": token is not None})

    try:
        outcome = await crawler.crawl(url, token=token)
    except ValueError as exc:
        logger.warning("Invalid crawl request for %s – %s", url, exc)
        raise HTTPException(status_code=400, detail=str(exc))
    except SQLAlchemyError as exc:
        logger.error("Database error while crawling %s: %s", url, exc)
        raise HTTPException(status_code=500, detail="Could not store crawl results.")

    message = (
        "Crawling completed successfully"
        if outcome.status == "success"
        else "Crawling completed partially"
    )
    return CrawlResponse(
        status=outcome.status,
        message=message,
        data=CrawlData(
            pages_crawled=outcome.pages_crawled,
            next_token=outcome.next_token,
            timestamp=datetime.now(timezone.utc),
        ),
    )


@router.get("/index", response_model=IndexResponse, summary="Stored crawl data of one page")
@limiter.limit("30/minute")
async def get_index(
    request: Request,
    url: str = Query(..., description="Page URL."),
    writer: PageWriter = Depends(get_writer),
) -> IndexResponse:
    try:
        page_url = validate_url(url, block_private=False)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    index = await writer.get_index(page_url)
    now = datetime.now(timezone.utc)
    if index is None:
        return IndexResponse(
            status="not_found",
            message=f"Page not found for {page_url}",
            data=IndexData(page=None, links=[], images=[], timestamp=now),
        )
    return IndexResponse(
        status="success",
        message="Index retrieved successfully",
        data=IndexData(timestamp=now, **index),
    )
