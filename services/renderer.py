"""Page renderers producing queryable snapshots of booking pages."""
from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, List, Optional, Protocol

import aiohttp
from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Playwright

    from config.settings import Settings

logger = logging.getLogger(__name__)

MAX_CONTEXT_USES = 100
MAX_BROWSER_USES = 500


class RenderError(Exception):
    """Raised when a page could not be rendered."""

    def __init__(self, message: str, final_url: str | None = None) -> None:
        super().__init__(message)
        self.final_url = final_url


class PageSnapshot:
    """Rendered DOM of a page, queried with CSS selectors."""

    def __init__(self, final_url: str, html: str) -> None:
        self.final_url = final_url
        self._soup = BeautifulSoup(html, "html.parser")

    def count(self, selector: str) -> int:
        return len(self._soup.select(selector))

    def texts(self, selector: str) -> List[str]:
        # text content as the DOM joins it, without separators
        return [element.get_text() for element in self._soup.select(selector)]


class Renderer(Protocol):
    async def render(self, url: str, timeout_ms: int) -> PageSnapshot:
        ...

    async def close(self) -> None:
        ...


def _known_url(url: str | None) -> str | None:
    if not url or url == "about:blank":
        return None
    return url


class PlaywrightRenderer:
    """Headless Chromium renderer.

    A fresh page is opened for every render. The browser context is recycled
    every ``MAX_CONTEXT_USES`` renders and the browser itself every
    ``MAX_BROWSER_USES`` renders, since long-lived Chromium processes leak.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        user_agent: str | None = None,
        settle_ms: int = 3000,
    ) -> None:
        self.headless = headless
        self.user_agent = user_agent
        self.settle_ms = settle_ms
        self._playwright: Optional["Playwright"] = None
        self._browser: Optional["Browser"] = None
        self._context: Optional["BrowserContext"] = None
        self._context_uses = 0
        self._browser_uses = 0
        self._lock = asyncio.Lock()

    async def _ensure_context(self) -> "BrowserContext":
        async with self._lock:
            if self._browser is not None and self._browser_uses >= MAX_BROWSER_USES:
                logger.info("Restarting browser after %s renders", self._browser_uses)
                await self._close_browser()

            if self._playwright is None:
                self._playwright = await async_playwright().start()

            if self._browser is None or not self._browser.is_connected():
                self._browser = await self._playwright.chromium.launch(headless=self.headless)
                self._context = None
                self._browser_uses = 0

            if self._context is None or self._context_uses >= MAX_CONTEXT_USES:
                if self._context is not None:
                    try:
                        await self._context.close()
                    except PlaywrightError:
                        logger.debug("Context close failed", exc_info=True)
                kwargs = {"user_agent": self.user_agent} if self.user_agent else {}
                self._context = await self._browser.new_context(**kwargs)
                self._context_uses = 0

            self._context_uses += 1
            self._browser_uses += 1
            return self._context

    async def render(self, url: str, timeout_ms: int) -> PageSnapshot:
        try:
            context = await self._ensure_context()
            page = await context.new_page()
        except PlaywrightError as exc:
            raise RenderError(f"Browser unavailable: {exc}") from exc

        page.set_default_timeout(timeout_ms)
        try:
            await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
            if self.settle_ms:
                await page.wait_for_timeout(self.settle_ms)
            html = await page.content()
            title = await page.title()
            logger.debug("Rendered %s (title=%r, final=%s)", url, title, page.url)
            return PageSnapshot(page.url, html)
        except PlaywrightTimeoutError as exc:
            raise RenderError(f"Timed out after {timeout_ms} ms loading {url}", _known_url(page.url)) from exc
        except PlaywrightError as exc:
            raise RenderError(f"Navigation to {url} failed: {exc.message}", _known_url(page.url)) from exc
        finally:
            try:
                await page.close(run_before_unload=False)
            except PlaywrightError as exc:
                # cleaned up with the context
                logger.warning("Page close failed for %s: %s", url, exc)

    async def _close_browser(self) -> None:
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError:
                logger.debug("Context close failed", exc_info=True)
            self._context = None
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError:
                logger.debug("Browser close failed", exc_info=True)
            self._browser = None

    async def close(self) -> None:
        async with self._lock:
            await self._close_browser()
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None


class HttpRenderer:
    """Plain HTTP fetch for pages that render without JavaScript."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        user_agent: str | None = None,
    ) -> None:
        self.headers = {"User-Agent": user_agent} if user_agent else {}
        self.session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession(headers=self.headers)
        return self.session

    async def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None

    async def render(self, url: str, timeout_ms: int) -> PageSnapshot:
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000)
        try:
            async with session.get(url, timeout=timeout) as response:
                response.raise_for_status()
                html = await response.text()
                return PageSnapshot(str(response.url), html)
        except asyncio.TimeoutError as exc:
            raise RenderError(f"Timed out after {timeout_ms} ms loading {url}") from exc
        except aiohttp.ClientResponseError as exc:
            final_url = str(exc.request_info.real_url) if exc.request_info else None
            raise RenderError(f"HTTP {exc.status} loading {url}", final_url) from exc
        except aiohttp.ClientError as exc:
            raise RenderError(f"Error loading {url}: {exc}") from exc


def create_renderer(settings: "Settings") -> Renderer:
    if settings.RENDERER == "http":
        return HttpRenderer(user_agent=settings.USER_AGENT)
    return PlaywrightRenderer(
        headless=settings.BROWSER_HEADLESS,
        user_agent=settings.USER_AGENT,
        settle_ms=settings.RENDER_SETTLE_MS,
    )


__all__ = [
    "HttpRenderer",
    "PageSnapshot",
    "PlaywrightRenderer",
    "RenderError",
    "Renderer",
    "create_renderer",
]
