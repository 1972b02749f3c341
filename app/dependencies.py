"""FastAPI dependencies resolving the services built in the application lifespan."""

from fastapi import Request

from app.services.broken_links import BrokenLinkStore, BrokenLinkValidator
from app.services.crawler import SiteCrawler
from app.services.persistence import PageWriter


def get_crawler(request: Request) -> SiteCrawler:
    return request.app.state.crawler


def get_writer(request: Request) -> PageWriter:
    return request.app.state.writer


def get_store(request: Request) -> BrokenLinkStore:
    return request.app.state.broken_link_store


def get_validator(request: Request) -> BrokenLinkValidator:
    return request.app.state.validator
