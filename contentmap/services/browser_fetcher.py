"""Playwright-backed renderer for JavaScript-heavy pages and screenshots.

The crawl core only depends on the :class:`Renderer` protocol; this module
provides the default headless-Chromium implementation.
"""

import logging
from pathlib import Path
from typing import NamedTuple, Optional, Protocol

from playwright.async_api import Browser, Error as PlaywrightError, Playwright, async_playwright

from contentmap.config import settings
from contentmap.models.config import ScreenshotMode
from contentmap.services.errors import FetchError
from contentmap.services.urls import to_id

logger = logging.getLogger(__name__)

MAX_CONTENT_SIZE = 10 * 1024 * 1024  # 10 MB
VIEWPORT = {"width": 1920, "height": 1080}


class RenderResult(NamedTuple):
    url: str
    status: int
    html: str
    screenshot: Optional[str] = None


class Renderer(Protocol):
    async def render(self, url: str, screenshot: ScreenshotMode = "none") -> RenderResult:
        ...


class PlaywrightRenderer:
    """Shares one headless Chromium across a crawl; every render gets a fresh context.

    Use as an async context manager::

        async with PlaywrightRenderer() as renderer:
            result = await renderer.render("https://example.com", screenshot="fullPage")
    """

    def __init__(
        self,
        screenshot_dir: Optional[Path] = None,
        timeout_ms: Optional[int] = None,
    ):
        self.screenshot_dir = Path(screenshot_dir or settings.screenshot_dir)
        self.timeout_ms = timeout_ms or int(settings.request_timeout * 1000)
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None

    async def __aenter__(self) -> "PlaywrightRenderer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def start(self) -> None:
        if self._browser is not None:
            return
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=True,
            args=[
                # Required when running as root inside a container
                "--no-sandbox",
                "--disable-dev-shm-usage",
                "--disable-gpu",
            ],
        )
        logger.info("Renderer: launched headless browser")

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def render(self, url: str, screenshot: ScreenshotMode = "none") -> RenderResult:
        """Render *url* and return its final HTML, status and optional screenshot path.

        Raises:
            FetchError: on navigation failures or oversized documents.
        """
        await self.start()
        context = await self._browser.new_context(
            viewport=VIEWPORT, user_agent=settings.user_agent
        )
        try:
            page = await context.new_page()
            response = await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
            html = await page.content()
            final_url = page.url or url

            shot_path: Optional[str] = None
            if screenshot != "none":
                self.screenshot_dir.mkdir(parents=True, exist_ok=True)
                target = self.screenshot_dir / f"screenshot-{to_id(url)}.png"
                await page.screenshot(path=str(target), full_page=screenshot == "fullPage")
                shot_path = str(target)
        except PlaywrightError as exc:
            raise FetchError(url, f"browser render failed: {exc}", retryable=True) from exc
        finally:
            await context.close()

        if len(html.encode()) > MAX_CONTENT_SIZE:
            raise FetchError(url, "Rendered HTML exceeds the maximum allowed size.")

        status = response.status if response is not None else 200
        return RenderResult(url=final_url, status=status, html=html, screenshot=shot_path)
