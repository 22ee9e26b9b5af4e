"""Tests for page classification in the extractor."""

import asyncio

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from vendor_tracker.scrape.base import (
    AvailabilityState,
    ClassificationAmbiguousError,
    PageNavigationError,
)
from vendor_tracker.scrape.extractor import PageExtractor, product_url
from vendor_tracker.utils.retry import OperationTimeoutError

PRODUCT_HTML = """
<html><body><div id="dp-container">
    <span id="productTitle">Deluxe Puzzle Box</span>
    <div id="availability">In Stock</div>
    <input id="add-to-cart-button" type="submit" />
    <div id="merchant-info">Sold by Amazon.ca</div>
    <div id="corePrice_feature_div"><span class="a-price"><span class="a-offscreen">$24.99</span></span></div>
</div></body></html>
"""


class FakeResponse:
    def __init__(self, status):
        self.status = status


class FakePage:
    """Just enough of a Playwright page for the extractor."""

    def __init__(
        self,
        html=PRODUCT_HTML,
        text="",
        has_container=True,
        captcha_form=False,
        status=200,
        goto_error=None,
        title="Amazon.ca",
        content_hangs=False,
    ):
        self.html = html
        self.text = text
        self.has_container = has_container
        self.captcha_form = captcha_form
        self.status = status
        self.goto_error = goto_error
        self._title = title
        self.content_hangs = content_hangs
        self.visited = []

    async def goto(self, url, wait_until=None, timeout=None):
        self.visited.append(url)
        if self.goto_error:
            raise self.goto_error
        return FakeResponse(self.status)

    async def query_selector(self, selector):
        return object() if self.captcha_form else None

    async def evaluate(self, script):
        if "innerText" in script:
            return self.text
        return None

    async def wait_for_selector(self, selector, timeout=None, state=None):
        if not self.has_container:
            raise PlaywrightTimeoutError("Timeout waiting for selector")
        return object()

    async def content(self):
        if self.content_hangs:
            await asyncio.sleep(10)
        return self.html

    async def title(self):
        return self._title


@pytest.fixture
def extractor():
    return PageExtractor(container_timeout_ms=100, step_timeout_seconds=0.5, navigation_timeout_ms=1000)


@pytest.mark.asyncio
async def test_navigate_returns_status(extractor):
    page = FakePage(status=200)
    status = await extractor.navigate(page, "B000TEST01")

    assert status == 200
    assert page.visited == [product_url("B000TEST01")]


@pytest.mark.asyncio
async def test_navigate_timeout(extractor):
    page = FakePage(goto_error=PlaywrightTimeoutError("Timeout 1000ms exceeded"))
    with pytest.raises(OperationTimeoutError):
        await extractor.navigate(page, "B000TEST01")


@pytest.mark.asyncio
async def test_navigate_error(extractor):
    page = FakePage(goto_error=PlaywrightError("net::ERR_CONNECTION_RESET"))
    with pytest.raises(PageNavigationError):
        await extractor.navigate(page, "B000TEST01")


@pytest.mark.asyncio
async def test_extract_product(extractor):
    obs = await extractor.extract(FakePage(), "B000TEST01", 200)

    assert obs.title == "Deluxe Puzzle Box"
    assert obs.availability == AvailabilityState.IN_STOCK
    assert obs.price == "$24.99"


@pytest.mark.asyncio
async def test_404_is_invalid_page(extractor):
    obs = await extractor.extract(FakePage(), "B000TEST01", 404)

    assert obs.availability == AvailabilityState.INVALID_PAGE
    assert obs.stock_note == "HTTP 404"


@pytest.mark.asyncio
async def test_captcha_form_is_invalid_page(extractor):
    obs = await extractor.extract(FakePage(captcha_form=True), "B000TEST01", 200)

    assert obs.availability == AvailabilityState.INVALID_PAGE
    assert obs.stock_note == "captcha"


@pytest.mark.asyncio
async def test_captcha_text_is_invalid_page(extractor):
    page = FakePage(text="Sorry, we just need to make sure you're not a robot.")
    obs = await extractor.extract(page, "B000TEST01", 200)
    assert obs.availability == AvailabilityState.INVALID_PAGE


@pytest.mark.asyncio
async def test_error_page_without_container(extractor):
    page = FakePage(has_container=False, text="Looking for something? We're sorry.")
    obs = await extractor.extract(page, "B000TEST01", 200)

    assert obs.availability == AvailabilityState.INVALID_PAGE
    assert obs.stock_note == "page not found"


@pytest.mark.asyncio
async def test_unrecognized_page_is_ambiguous(extractor):
    page = FakePage(has_container=False, text="Something else entirely", title="Weird page")
    with pytest.raises(ClassificationAmbiguousError) as exc_info:
        await extractor.extract(page, "B000TEST01", 200)

    assert exc_info.value.page_title == "Weird page"


@pytest.mark.asyncio
async def test_content_timeout_raises(extractor):
    page = FakePage(content_hangs=True)
    with pytest.raises(OperationTimeoutError):
        await extractor.extract(page, "B000TEST01", 200)
