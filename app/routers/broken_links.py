import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.dependencies import get_store, get_validator
from app.models.broken_link import (
    BrokenLinkCrawlResponse,
    BrokenLinkData,
    BrokenLinkItem,
    BrokenLinkListResponse,
    Pagination,
)
from app.services.broken_links import (
    MAX_DEPTH,
    MIN_DEPTH,
    BrokenLinkCommitError,
    BrokenLinkStore,
    BrokenLinkValidator,
)
from app.services.urls import validate_url

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter(prefix="/broken-links", tags=["Broken links"])


@router.post(
    "/crawl",
    response_model=BrokenLinkCrawlResponse,
    summary="Find broken links on a website",
    description=(
        "Crawls the site up to `max_depth`, checks every link found on the "
        "crawled pages and replaces the stored broken-link report for *url*."
    ),
)
@limiter.limit("3/minute")
async def crawl_broken_links(
    request: Request,
    url: str = Query(..., description="Base URL of the site."),
    max_depth: int = Query(default=2, ge=MIN_DEPTH, le=MAX_DEPTH),
    validator: BrokenLinkValidator = Depends(get_validator),
) -> BrokenLinkCrawlResponse:
    logger.info("Broken link crawl requested", extra={"url": url, "max_depth": max_depth})

    try:
        summary = await validator.run(url, max_depth=max_depth)
    except ValueError as exc:
        logger.warning("Invalid broken link request for %s – %s", url, exc)
        raise HTTPException(status_code=400, detail=str(exc))
    except BrokenLinkCommitError as exc:
        logger.error("Broken link crawl of %s failed: %s", url, exc)
        raise HTTPException(status_code=500, detail=str(exc))

    return BrokenLinkCrawlResponse(
        message="Broken link crawl completed",
        pages_crawled=summary.pages_crawled,
        broken_links_found=summary.broken_links_found,
    )


@router.get("", response_model=BrokenLinkListResponse, summary="Stored broken links of a website")
@limiter.limit("30/minute")
async def get_broken_links(
    request: Request,
    url: str = Query(..., description="Base URL of the site."),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    store: BrokenLinkStore = Depends(get_store),
) -> BrokenLinkListResponse:
    try:
        base_url = validate_url(url, block_private=False)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    result = await store.get_broken_links(base_url, page=page, limit=limit)
    return BrokenLinkListResponse(
        message="Broken links retrieved successfully",
        data=BrokenLinkData(
            base_url=base_url,
            total_broken_links=result.total,
            broken_links=[
                BrokenLinkItem(
                    url=item.url,
                    link_type=item.link_type,
                    status=item.status,
                    source_pages=item.source_pages,
                    reason=item.reason,
                    checked_at=item.checked_at,
                )
                for item in result.items
            ],
            pagination=Pagination(
                page=result.page,
                limit=result.limit,
                total_pages=result.total_pages,
                has_next=result.has_next,
            ),
        ),
    )
