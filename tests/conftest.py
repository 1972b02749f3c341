"""Test configuration: a throwaway SQLite database per test."""

import pytest

from app.db.session import build_engine, build_sessionmaker, init_db
from app.services.broken_links import BrokenLinkStore
from app.services.persistence import PageWriter


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield build_sessionmaker(engine)
    await engine.dispose()


@pytest.fixture
def writer(session_factory) -> PageWriter:
    return PageWriter(session_factory)


@pytest.fixture
def store(session_factory) -> BrokenLinkStore:
    return BrokenLinkStore(session_factory)
