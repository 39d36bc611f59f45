"""
Headless-browser page rendering for sources that need JavaScript.

Uses async Playwright with stealth settings: a realistic user agent and
viewport, browser-like headers and an init script hiding the usual
automation markers. One browser is shared; each render gets its own
context.
"""

import asyncio
import random
import time
from dataclasses import dataclass

from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeout

from grantmatch.core.config import Settings, get_settings
from grantmatch.core.exceptions import TransientFetchException
from grantmatch.core.logging import LoggerMixin

# Realistic browser user agents
STEALTH_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
]

STEALTH_VIEWPORTS = [
    {"width": 1920, "height": 1080},
    {"width": 1366, "height": 768},
    {"width": 1536, "height": 864},
    {"width": 1440, "height": 900},
]

STEALTH_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Upgrade-Insecure-Requests": "1",
}

STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
    Object.defineProperty(navigator, 'languages', { get: () => ['ko-KR', 'ko', 'en-US', 'en'] });
    window.chrome = { runtime: {} };
"""


@dataclass
class RenderedPage:
    url: str
    status: int
    html: str


class BrowserRenderer(LoggerMixin):
    """Renders pages in headless Chromium."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.timeout_ms = self.settings.crawler_timeout * 1000
        self.stealth_mode = self.settings.crawler_stealth_mode
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    def _get_user_agent(self) -> str:
        if self.stealth_mode:
            return random.choice(STEALTH_USER_AGENTS)
        return self.settings.crawler_user_agent

    def _get_viewport(self) -> dict:
        if self.stealth_mode:
            return random.choice(STEALTH_VIEWPORTS)
        return {"width": 1280, "height": 720}

    async def _ensure_browser(self) -> Browser:
        async with self._lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                launch_options: dict = {"headless": True}
                if self.settings.crawler_proxy_url:
                    launch_options["proxy"] = {"server": self.settings.crawler_proxy_url}
                self._browser = await self._playwright.chromium.launch(**launch_options)
                self.logger.info("browser_launched", stealth_mode=self.stealth_mode)
        return self._browser

    async def render(self, url: str, source_id: str | None = None) -> RenderedPage:
        """
        Load `url` and return the rendered HTML.

        Raises:
            TransientFetchException: Navigation timed out or the browser failed
        """
        start = time.time()
        browser = await self._ensure_browser()
        context_options: dict = {
            "user_agent": self._get_user_agent(),
            "viewport": self._get_viewport(),
            "java_script_enabled": True,
            "locale": "ko-KR",
            "timezone_id": self.settings.scheduler_timezone,
        }
        if self.stealth_mode:
            context_options["extra_http_headers"] = STEALTH_HEADERS

        context = await browser.new_context(**context_options)
        try:
            if self.stealth_mode:
                await context.add_init_script(STEALTH_INIT_SCRIPT)
            page = await context.new_page()
            page.set_default_timeout(self.timeout_ms)

            response = await page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
            if response is None:
                raise TransientFetchException(f"No response received from {url}", source_id, url)
            try:
                await page.wait_for_load_state("networkidle", timeout=self.timeout_ms)
            except PlaywrightTimeout:
                self.logger.warning("network_idle_timeout", source_id=source_id, url=url)

            html = await page.content()
            self.logger.debug(
                "page_rendered",
                source_id=source_id,
                url=url,
                status=response.status,
                html_chars=len(html),
                duration=round(time.time() - start, 2),
            )
            return RenderedPage(url=page.url, status=response.status, html=html)
        except PlaywrightTimeout as e:
            raise TransientFetchException(f"Page load timeout for {url}", source_id, url) from e
        except PlaywrightError as e:
            raise TransientFetchException(f"Browser error for {url}: {e}", source_id, url) from e
        finally:
            await context.close()

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
