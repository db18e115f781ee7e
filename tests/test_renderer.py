from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from config import settings
from services.renderer import (
    HttpRenderer,
    PageSnapshot,
    PlaywrightRenderer,
    RenderError,
    create_renderer,
)

PAGE_HTML = """
<html>
    <head><title>헤어살롱 예약</title></head>
    <body>
        <a href="/booking/1">예약</a>
        <button disabled>09:00</button>
        <button>  10:30 </button>
    </body>
</html>
"""


def test_snapshot_queries():
    snapshot = PageSnapshot("https://example.com/final", PAGE_HTML)

    assert snapshot.final_url == "https://example.com/final"
    assert snapshot.count("button") == 2
    assert snapshot.texts("button:not(:disabled)") == ["  10:30 "]


def test_snapshot_text_joins_child_nodes_without_separator():
    snapshot = PageSnapshot("https://example.com", "<button><span>10</span>:<span>30</span></button>")

    assert snapshot.texts("button") == ["10:30"]


class FakeHttpResponse:
    def __init__(self, url: str, html: str, error: Exception | None = None) -> None:
        self.url = url
        self._html = html
        self._error = error

    def raise_for_status(self) -> None:
        if self._error is not None:
            raise self._error

    async def text(self) -> str:
        return self._html


class FakeHttpRequest:
    def __init__(self, outcome) -> None:
        self._outcome = outcome

    async def __aenter__(self):
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, *exc_info) -> bool:
        return False


class FakeHttpSession:
    def __init__(self, outcome) -> None:
        self.outcome = outcome
        self.timeouts: list[aiohttp.ClientTimeout] = []

    def get(self, url, timeout=None):
        self.timeouts.append(timeout)
        return FakeHttpRequest(self.outcome)


@pytest.mark.asyncio
async def test_http_renderer_returns_snapshot():
    session = FakeHttpSession(FakeHttpResponse("https://example.com/redirected", PAGE_HTML))
    renderer = HttpRenderer(session=session)

    snapshot = await renderer.render("https://example.com", 5000)

    assert snapshot.final_url == "https://example.com/redirected"
    assert snapshot.count('a[href*="/booking"]') == 1
    assert session.timeouts[0].total == 5


@pytest.mark.asyncio
async def test_http_renderer_maps_status_errors():
    error = aiohttp.ClientResponseError(
        request_info=MagicMock(real_url="https://example.com/gone"),
        history=(),
        status=503,
    )
    renderer = HttpRenderer(session=FakeHttpSession(FakeHttpResponse("https://example.com", "", error)))

    with pytest.raises(RenderError) as exc_info:
        await renderer.render("https://example.com", 5000)

    assert "503" in str(exc_info.value)
    assert exc_info.value.final_url == "https://example.com/gone"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [asyncio.TimeoutError(), aiohttp.ClientConnectionError("connection reset")],
)
async def test_http_renderer_maps_transport_errors(error):
    renderer = HttpRenderer(session=FakeHttpSession(error))

    with pytest.raises(RenderError):
        await renderer.render("https://example.com", 5000)


def _fake_browser_stack(page):
    context = AsyncMock()
    context.new_page.return_value = page
    browser = AsyncMock()
    browser.is_connected = MagicMock(return_value=True)
    browser.new_context.return_value = context
    playwright = AsyncMock()
    playwright.chromium.launch.return_value = browser
    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    return starter, playwright, browser, context


def _fake_page(url: str = "https://booking.naver.com/booking/6/bizes/1"):
    page = AsyncMock()
    page.url = url
    page.set_default_timeout = MagicMock()
    page.content.return_value = PAGE_HTML
    page.title.return_value = "헤어살롱 예약"
    return page


@pytest.mark.asyncio
async def test_playwright_renderer_renders_and_closes_page(monkeypatch):
    page = _fake_page()
    starter, playwright, browser, _ = _fake_browser_stack(page)
    monkeypatch.setattr("services.renderer.async_playwright", lambda: starter)
    renderer = PlaywrightRenderer(headless=True, user_agent="test-agent", settle_ms=0)

    snapshot = await renderer.render("https://m.place.naver.com/place/1", 7000)

    assert snapshot.final_url == "https://booking.naver.com/booking/6/bizes/1"
    assert snapshot.count("button") == 2
    page.goto.assert_awaited_once_with("https://m.place.naver.com/place/1", wait_until="networkidle", timeout=7000)
    page.wait_for_timeout.assert_not_awaited()
    page.close.assert_awaited_once_with(run_before_unload=False)
    browser.new_context.assert_awaited_once_with(user_agent="test-agent")

    await renderer.close()
    browser.close.assert_awaited_once()
    playwright.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_playwright_timeout_becomes_render_error(monkeypatch):
    page = _fake_page()
    page.goto.side_effect = PlaywrightTimeoutError("Timeout 7000ms exceeded")
    starter, *_ = _fake_browser_stack(page)
    monkeypatch.setattr("services.renderer.async_playwright", lambda: starter)
    renderer = PlaywrightRenderer(settle_ms=0)

    with pytest.raises(RenderError) as exc_info:
        await renderer.render("https://m.place.naver.com/place/1", 7000)

    assert "7000" in str(exc_info.value)
    assert exc_info.value.final_url == "https://booking.naver.com/booking/6/bizes/1"
    page.close.assert_awaited_once_with(run_before_unload=False)


@pytest.mark.asyncio
async def test_playwright_navigation_error_on_blank_page(monkeypatch):
    page = _fake_page(url="about:blank")
    page.goto.side_effect = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
    starter, *_ = _fake_browser_stack(page)
    monkeypatch.setattr("services.renderer.async_playwright", lambda: starter)
    renderer = PlaywrightRenderer(settle_ms=0)

    with pytest.raises(RenderError) as exc_info:
        await renderer.render("https://nowhere.invalid", 7000)

    assert "ERR_NAME_NOT_RESOLVED" in str(exc_info.value)
    assert exc_info.value.final_url is None


@pytest.mark.asyncio
async def test_playwright_context_is_recycled(monkeypatch):
    page = _fake_page()
    starter, _, browser, _ = _fake_browser_stack(page)
    monkeypatch.setattr("services.renderer.async_playwright", lambda: starter)
    monkeypatch.setattr("services.renderer.MAX_CONTEXT_USES", 2)
    renderer = PlaywrightRenderer(settle_ms=0)

    for _ in range(3):
        await renderer.render("https://m.place.naver.com/place/1", 7000)

    assert browser.new_context.await_count == 2


def test_create_renderer_follows_settings(monkeypatch):
    assert isinstance(create_renderer(settings), PlaywrightRenderer)

    monkeypatch.setenv("RENDERER", "http")
    settings.reload()
    assert isinstance(create_renderer(settings), HttpRenderer)
