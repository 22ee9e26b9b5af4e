"""Reads one loaded product page into an observation."""

import logging
from typing import Optional

from playwright.async_api import Error as PlaywrightError, Page, TimeoutError as PlaywrightTimeoutError

from vendor_tracker.config import settings
from vendor_tracker.scrape.base import ClassificationAmbiguousError, ObservationData, PageNavigationError
from vendor_tracker.scrape.rules import (
    CAPTCHA_SELECTOR,
    PRODUCT_CONTAINER_SELECTOR,
    detect_problem_text,
    parse_product_html,
)
from vendor_tracker.utils.retry import OperationTimeoutError, with_timeout

logger = logging.getLogger(__name__)

VISIBLE_TEXT_SCRIPT = "() => (document.body ? document.body.innerText : '').substring(0, 5000)"
SCROLL_SCRIPT = "() => window.scrollTo(0, Math.floor(document.body.scrollHeight / 2))"


def product_url(item_id: str) -> str:
    return f"{settings.product_base_url}{item_id}{settings.product_url_suffix}"


class PageExtractor:
    """
    Classifies a loaded page and extracts product signals.

    CAPTCHA and 404 pages short-circuit to a synthetic Invalid Page
    observation before any product parsing. Every browser call is time-boxed;
    optional steps (scroll, title) degrade silently, while a failure to read
    the page snapshot itself is raised as a timeout for the worker to recover.
    """

    def __init__(
        self,
        container_timeout_ms: int | None = None,
        step_timeout_seconds: float | None = None,
        navigation_timeout_ms: int | None = None,
    ):
        self.container_timeout_ms = container_timeout_ms or settings.scrape_container_timeout_ms
        self.step_timeout_seconds = step_timeout_seconds or settings.scrape_step_timeout_seconds
        self.navigation_timeout_ms = navigation_timeout_ms or settings.scrape_navigation_timeout_ms

    async def navigate(self, page: Page, item_id: str) -> Optional[int]:
        """
        Load the item's detail page.

        Returns:
            HTTP status of the main response, or None if there was none

        Raises:
            OperationTimeoutError: Navigation exceeded its budget
            PageNavigationError: Navigation failed outright
        """
        url = product_url(item_id)
        try:
            response = await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise OperationTimeoutError(f"navigate {item_id}", self.navigation_timeout_ms / 1000) from e
        except PlaywrightError as e:
            raise PageNavigationError(url, str(e).splitlines()[0] if str(e) else type(e).__name__) from e
        return response.status if response is not None else None

    async def extract(
        self,
        page: Page,
        item_id: str,
        status: Optional[int] = None,
    ) -> ObservationData:
        """
        Extract an observation from the current page.

        Args:
            page: Page already navigated to the item's detail URL
            item_id: ASIN being scraped
            status: HTTP status of the navigation response, if known

        Raises:
            ClassificationAmbiguousError: No product container and no known error page
            OperationTimeoutError: The page snapshot could not be read in time
        """
        if status == 404:
            logger.info(f"{item_id}: HTTP 404, recording invalid page")
            return ObservationData.invalid_page(item_id, "HTTP 404")

        if await self._is_captcha(page):
            logger.warning(f"{item_id}: CAPTCHA page detected")
            return ObservationData.invalid_page(item_id, "captcha")

        if not await self._wait_for_container(page):
            problem = detect_problem_text(await self._visible_text(page))
            if problem:
                logger.info(f"{item_id}: {problem}, recording invalid page")
                return ObservationData.invalid_page(item_id, problem)
            raise ClassificationAmbiguousError(item_id, await self._title(page))

        # Rank sits below the fold on most layouts
        await self._optional(page.evaluate(SCROLL_SCRIPT), "scroll", item_id)

        html = await with_timeout(page.content(), self.step_timeout_seconds, f"{item_id} page content")
        observation = parse_product_html(html, item_id)
        logger.debug(
            f"{item_id}: {observation.availability.value} | {observation.price} | "
            f"{observation.seller.value} | {observation.rank}"
        )
        return observation

    async def _is_captcha(self, page: Page) -> bool:
        form = await self._optional(page.query_selector(CAPTCHA_SELECTOR), "captcha form", None)
        if form:
            return True
        return detect_problem_text(await self._visible_text(page)) == "captcha"

    async def _wait_for_container(self, page: Page) -> bool:
        try:
            await with_timeout(
                page.wait_for_selector(
                    PRODUCT_CONTAINER_SELECTOR,
                    timeout=self.container_timeout_ms,
                    state="attached",
                ),
                self.container_timeout_ms / 1000 + self.step_timeout_seconds,
                "product container",
            )
            return True
        except (PlaywrightTimeoutError, OperationTimeoutError):
            return False

    async def _visible_text(self, page: Page) -> str:
        text = await self._optional(page.evaluate(VISIBLE_TEXT_SCRIPT), "visible text", None)
        return text or ""

    async def _title(self, page: Page) -> Optional[str]:
        return await self._optional(page.title(), "title", None)

    async def _optional(self, awaitable, step: str, item_id: Optional[str]):
        """Await a non-essential browser call; None on failure or timeout."""
        try:
            return await with_timeout(awaitable, self.step_timeout_seconds, step)
        except Exception as e:
            logger.debug(f"{item_id or 'page'}: optional step '{step}' failed: {type(e).__name__}: {e}")
            return None
