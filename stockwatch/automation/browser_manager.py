import asyncio
import logging
import os
import time
from dataclasses import dataclass, field

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

logger = logging.getLogger(__name__)

HEALTH_CHECK_TIMEOUT = 5.0  # seconds

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-extensions",
    "--disable-background-networking",
    "--mute-audio",
    "--no-first-run",
    "--no-sandbox",
]

# Heavy resources that never influence the availability verdict
BLOCKED_RESOURCE_TYPES = {"image", "media", "font"}


def get_proxy_url(proxy: str | None = None) -> str | None:
    """Get proxy URL from explicit override or global env var."""
    if proxy:
        return proxy
    return os.getenv("BROWSER_PROXY_URL") or None


@dataclass(eq=False)
class PooledSession:
    """One reusable rendering session: an isolated browser context with a single page."""

    context: BrowserContext
    page: Page
    session_id: int
    created_at: float = field(default_factory=time.time)

    async def ping(self) -> None:
        """Liveness probe; raises if the context or page is dead."""
        if self.page.is_closed():
            raise RuntimeError(f"Session {self.session_id} page is closed")
        await asyncio.wait_for(self.page.evaluate("1"), timeout=HEALTH_CHECK_TIMEOUT)

    async def reset(self) -> None:
        """Clear session-local state before the session goes back to the pool.

        The page is parked on about:blank so a later navigation that never
        commits leaves an empty document, not the previous product's DOM.
        """
        await self.context.clear_cookies()
        await self.page.goto("about:blank", timeout=HEALTH_CHECK_TIMEOUT * 1000)

    async def close(self) -> None:
        try:
            await self.context.close()
        except Exception as e:
            logger.warning(f"Error closing session {self.session_id}: {e}")


class BrowserSessionFactory:
    """Owns the shared Playwright browser and mints isolated sessions from it."""

    def __init__(
        self,
        headless: bool = True,
        user_agent: str | None = None,
        proxy: str | None = None,
        block_heavy_resources: bool = True,
    ):
        self.headless = headless
        self.user_agent = user_agent
        self.proxy_url = get_proxy_url(proxy)
        self.block_heavy_resources = block_heavy_resources
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()
        self._next_id = 0

    async def get_browser(self) -> Browser:
        """Get or create the shared browser instance."""
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                launch_kwargs: dict = {"headless": self.headless, "args": LAUNCH_ARGS}
                if self.proxy_url:
                    launch_kwargs["proxy"] = {"server": self.proxy_url}
                self._browser = await self._playwright.chromium.launch(**launch_kwargs)
                logger.info(f"Browser instance created (proxy={'yes' if self.proxy_url else 'no'})")
            return self._browser

    async def create(self) -> PooledSession:
        browser = await self.get_browser()

        context_kwargs: dict = {
            "viewport": {"width": 800, "height": 600},
            "locale": "en-US",
            "ignore_https_errors": True,
        }
        if self.user_agent:
            context_kwargs["user_agent"] = self.user_agent

        context = await browser.new_context(**context_kwargs)
        await context.add_init_script(
            "Object.defineProperty(navigator, 'webdriver', { get: () => undefined });"
        )
        if self.block_heavy_resources:
            await context.route("**/*", _block_heavy_resources)

        page = await context.new_page()
        self._next_id += 1
        logger.debug(f"Browser session {self._next_id} created")
        return PooledSession(context=context, page=page, session_id=self._next_id)

    async def close(self) -> None:
        """Gracefully shut down the browser."""
        if self._browser:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser shutdown complete")


async def _block_heavy_resources(route) -> None:
    if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
        await route.abort()
    else:
        await route.continue_()
