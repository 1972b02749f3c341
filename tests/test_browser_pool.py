"""Tests for app.services.browser_pool.RendererPool with Playwright mocked out."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.services.browser_pool import PoolCloseError, RendererPool


def _fake_playwright(page_count: int):
    pages = [MagicMock(name=f"page-{i}", close=AsyncMock()) for i in range(page_count)]
    browser = MagicMock(new_page=AsyncMock(side_effect=pages), close=AsyncMock())
    playwright = MagicMock(stop=AsyncMock())
    playwright.chromium.launch = AsyncMock(return_value=browser)
    manager = MagicMock(start=AsyncMock(return_value=playwright))
    return manager, playwright, browser, pages


def test_size_must_be_positive():
    with pytest.raises(ValueError):
        RendererPool(0)


def test_handle_before_start():
    with pytest.raises(RuntimeError):
        RendererPool(2).handle(0)


@pytest.mark.asyncio
class TestLifecycle:
    async def test_start_opens_every_handle_once(self):
        manager, playwright, _, pages = _fake_playwright(3)
        pool = RendererPool(3)
        with patch("app.services.browser_pool.async_playwright", return_value=manager):
            await pool.start()
            await pool.start()

        assert pool.started
        playwright.chromium.launch.assert_awaited_once()
        assert [pool.handle(i) for i in range(7)] == [pages[i % 3] for i in range(7)]

    async def test_close_releases_everything(self):
        manager, playwright, browser, pages = _fake_playwright(2)
        pool = RendererPool(2)
        with patch("app.services.browser_pool.async_playwright", return_value=manager):
            await pool.start()
        await pool.close()

        for page in pages:
            page.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()
        assert not pool.started

    async def test_close_aggregates_failures(self):
        manager, playwright, browser, pages = _fake_playwright(3)
        pages[0].close.side_effect = RuntimeError("target closed")
        pages[2].close.side_effect = RuntimeError("target closed")
        pool = RendererPool(3)
        with patch("app.services.browser_pool.async_playwright", return_value=manager):
            await pool.start()

        with pytest.raises(PoolCloseError) as info:
            await pool.close()

        assert len(info.value.errors) == 2
        # The remaining handles and the browser are still closed
        pages[1].close.assert_awaited_once()
        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()

    async def test_close_is_idempotent_and_blocks_restart(self):
        pool = RendererPool(1)
        await pool.close()
        await pool.close()
        with pytest.raises(RuntimeError):
            await pool.start()


@pytest.mark.asyncio
class TestAcquire:
    async def test_handle_is_checked_out_exclusively(self):
        manager, _, _, pages = _fake_playwright(2)
        pool = RendererPool(2)
        with patch("app.services.browser_pool.async_playwright", return_value=manager):
            await pool.start()

        order = []

        async def use(slot, label):
            async with pool.acquire(slot) as page:
                order.append((label, "in", page))
                await asyncio.sleep(0.01)
                order.append((label, "out", page))

        # Slots 0 and 2 map to the same page and must not overlap
        await asyncio.gather(use(0, "a"), use(2, "b"))

        assert order == [
            ("a", "in", pages[0]),
            ("a", "out", pages[0]),
            ("b", "in", pages[0]),
            ("b", "out", pages[0]),
        ]

    async def test_different_handles_run_together(self):
        manager, _, _, pages = _fake_playwright(2)
        pool = RendererPool(2)
        with patch("app.services.browser_pool.async_playwright", return_value=manager):
            await pool.start()

        async with pool.acquire(0) as first:
            async with pool.acquire(1) as second:
                assert (first, second) == (pages[0], pages[1])
