"""Owns the scraper's browser, context and page."""

import logging
from typing import Any, Callable, Optional

from playwright.async_api import Browser, BrowserContext, Page, async_playwright

from vendor_tracker.config import settings
from vendor_tracker.metrics import record_browser_restart
from vendor_tracker.scrape.cookie_store import CookieStore
from vendor_tracker.utils.retry import with_timeout

logger = logging.getLogger(__name__)

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
]

CLOSE_TIMEOUT_SECONDS = 15
COOKIE_TIMEOUT_SECONDS = 10


class BrowserSession:
    """
    One headless Chromium with a single context and page.

    `launch` always tears down whatever was running before, so it doubles as
    a full restart. Cookies are restored from the CookieStore on every launch
    and checkpointed back before a planned restart.
    """

    def __init__(
        self,
        cookie_store: Optional[CookieStore] = None,
        headless: Optional[bool] = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ):
        self.cookie_store = cookie_store or CookieStore()
        self.headless = settings.browser_headless if headless is None else headless
        self.playwright_factory = playwright_factory

        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser session is not launched")
        return self._page

    @property
    def is_running(self) -> bool:
        return self._page is not None

    async def launch(self) -> Page:
        """Start a fresh browser, closing any previous one first."""
        await self.close()

        self._playwright = await self.playwright_factory().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=BROWSER_ARGS,
        )
        self._context = await self._browser.new_context(
            user_agent=settings.browser_user_agent,
            viewport={
                "width": settings.browser_viewport_width,
                "height": settings.browser_viewport_height,
            },
            locale=settings.browser_locale,
        )

        cookies = self.cookie_store.load()
        if cookies:
            try:
                await self._context.add_cookies(cookies)
                logger.info(f"Restored {len(cookies)} cookies")
            except Exception as e:
                logger.warning(f"Could not restore cookies: {e}")

        self._page = await self._context.new_page()
        logger.info("Browser launched")
        return self._page

    async def restart(self, reason: str) -> Page:
        """Checkpoint cookies, then relaunch."""
        logger.info(f"Restarting browser ({reason})")
        record_browser_restart(reason)
        await self.checkpoint_cookies()
        return await self.launch()

    async def recreate_page(self) -> Page:
        """Replace the current page with a new one in the same context."""
        if self._context is None:
            raise RuntimeError("Browser session is not launched")

        old_page, self._page = self._page, None
        if old_page is not None:
            try:
                await with_timeout(old_page.close(), CLOSE_TIMEOUT_SECONDS, "page close")
            except Exception as e:
                logger.debug(f"Ignoring error closing stale page: {e}")

        self._page = await with_timeout(
            self._context.new_page(), CLOSE_TIMEOUT_SECONDS, "new page"
        )
        return self._page

    async def checkpoint_cookies(self) -> None:
        """Persist the context's cookies. Failures are logged only."""
        if self._context is None:
            return
        try:
            cookies = await with_timeout(
                self._context.cookies(), COOKIE_TIMEOUT_SECONDS, "read cookies"
            )
        except Exception as e:
            logger.warning(f"Cookie checkpoint failed: {e}")
            return
        self.cookie_store.save(cookies)

    async def close(self) -> None:
        """Close page, context, browser and driver, tolerating a wedged browser."""
        for label, closer in (
            ("context", self._context.close if self._context else None),
            ("browser", self._browser.close if self._browser else None),
            ("playwright", self._playwright.stop if self._playwright else None),
        ):
            if closer is None:
                continue
            try:
                await with_timeout(closer(), CLOSE_TIMEOUT_SECONDS, f"{label} close")
            except Exception as e:
                logger.error(f"Error closing {label}: {e}")

        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
