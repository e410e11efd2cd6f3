"""Headless browser session for rendered-page sources (patchright).

One browser and one context per pipeline context; every render opens its
own page so concurrent source visits do not share navigation state.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any

from patchright.async_api import Browser, BrowserContext, Playwright, async_playwright
from patchright.async_api import Error as PlaywrightError
from patchright.async_api import TimeoutError as PlaywrightTimeoutError

from crawler.core.config import BrowserConfig
from crawler.core.errors import RenderError, RenderTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderedPage:
    url: str
    status: int
    html: str


class BrowserSession:
    """Async context manager that owns one patchright browser + context.

    Usage::

        async with BrowserSession(config) as session:
            page = await session.render("https://...", timeout_s=10)
    """

    def __init__(self, config: BrowserConfig, *, user_agent: str | None = None) -> None:
        self._config = config
        self._user_agent = user_agent
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

    @property
    def context(self) -> BrowserContext:
        """The browser context for this session. Raises if not entered."""
        if self._context is None:
            msg = "BrowserSession not entered - use 'async with'"
            raise RuntimeError(msg)
        return self._context

    async def __aenter__(self) -> "BrowserSession":
        pw = await async_playwright().start()
        self._playwright = pw
        self._browser = await pw.chromium.launch(headless=self._config.headless)

        if self._user_agent:
            self._context = await self._browser.new_context(user_agent=self._user_agent)
        else:
            self._context = await self._browser.new_context()

        cookies = _load_cookies(self._config.cookies_path)
        if cookies:
            await self._context.add_cookies(cookies)
            logger.info("Loaded %d cookies from %s", len(cookies), self._config.cookies_path)

        self._context.set_default_timeout(self._config.timeout_ms)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._context = None
        self._browser = None
        self._playwright = None

    async def render(self, url: str, *, timeout_s: float) -> RenderedPage:
        """Navigate to url and return the rendered HTML.

        Raises RenderTimeout when navigation exceeds timeout_s, RenderError on
        any other browser failure.
        """
        page = await self.context.new_page()
        try:
            response = await page.goto(
                url, timeout=timeout_s * 1000, wait_until="networkidle",
            )
            html = await page.content()
            status = response.status if response is not None else 200
            return RenderedPage(url=page.url, status=status, html=html)
        except PlaywrightTimeoutError as e:
            msg = f"Timed out rendering {url}"
            raise RenderTimeout(msg) from e
        except PlaywrightError as e:
            msg = f"Browser failed to render {url}: {e}"
            raise RenderError(msg) from e
        finally:
            await page.close()


def _load_cookies(path: str | None) -> list[Any]:
    """Load cookies from a JSON file. Returns empty list on any failure."""
    if not path:
        return []
    cookie_path = Path(path)
    if not cookie_path.exists():
        logger.debug("Cookie file not found: %s", path)
        return []
    try:
        data = json.loads(cookie_path.read_text())
        if isinstance(data, list):
            return data
        logger.warning("Cookie file is not a JSON array: %s", path)
        return []
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to load cookies from %s: %s", path, e)
        return []
