"""Ordered DOM rules for reading an Amazon product detail page.

Extraction runs on a single snapshot of the page HTML. Each field is read by
an ordered list of (selector, extractor) rules; the first rule yielding a
value wins. Selectors are ordered by priority, buy-box scoped ones first.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from selectolax.parser import HTMLParser, Node

from vendor_tracker.scrape.base import (
    NOT_AVAILABLE,
    AvailabilityState,
    ObservationData,
    SellerClass,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Product container: present on every real detail page
PRODUCT_CONTAINER_SELECTOR = "#dp-container, #ppd, #centerCol"

CAPTCHA_SELECTOR = "form[action*='validateCaptcha']"

CAPTCHA_INDICATORS = [
    "enter the characters you see below",
    "type the characters you see in this image",
    "sorry, we just need to make sure you're not a robot",
]

ERROR_PAGE_INDICATORS = [
    "looking for something?",
    "we're sorry. the web address you entered is not a functioning page",
    "sorry! we couldn't find that page",
    "page not found",
]

# Checked before any orderable signal: a match always means Unavailable
UNAVAILABLE_PHRASES = [
    "currently unavailable",
    "temporarily out of stock",
    "out of stock",
    "we don't know when or if this item will be back in stock",
    "this item is no longer available",
    "not available for purchase",
]

BACK_ORDER_PHRASES = [
    "order now and we'll deliver when available",
    "usually ships within",
    "usually dispatched within",
    "available to ship in",
    "pre-order",
    "will be released on",
]

LOW_STOCK_PATTERN = re.compile(r"only\s+(\d+)\s+left\s+in\s+stock", re.IGNORECASE)

RANK_PATTERN = re.compile(r"#\s?([\d,]+)\s+in\s+([A-Za-z][A-Za-z\s&,'>-]*)")

SOLD_BY_PATTERN = re.compile(r"sold by\s*:?\s*(.+)", re.IGNORECASE)

PRICE_PATTERN = re.compile(r"\d[.,]\d{2}\b")

DIGIT_PATTERN = re.compile(r"\d")

ORDER_CONTROL_SELECTORS = [
    "#add-to-cart-button",
    "#buy-now-button",
    "input[name='submit.add-to-cart']",
    "#add-to-cart-button-ubb",
]

AVAILABILITY_SELECTORS = [
    "#availability",
    "#outOfStock",
    "#availabilityInsideBuyBox_feature_div",
    "#exports_desktop_outOfStock_buybox_message_feature_div",
]


def clean_text(text: Optional[str]) -> str:
    """Collapse whitespace."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def node_text(node: Node) -> Optional[str]:
    """Visible text of a node, whitespace collapsed."""
    text = clean_text(node.text(deep=True, separator=" ", strip=True))
    return text or None


def price_text(node: Node) -> Optional[str]:
    """Node text, accepted only if it looks like a price."""
    text = node_text(node)
    if text and PRICE_PATTERN.search(text):
        return text
    return None


def price_from_parts(node: Node) -> Optional[str]:
    """Rebuild a price from the symbol/whole/fraction spans of an .a-price block."""
    whole = node.css_first(".a-price-whole")
    if whole is None:
        return None
    symbol = node.css_first(".a-price-symbol")
    fraction = node.css_first(".a-price-fraction")
    whole_text = clean_text(whole.text()).rstrip(".")
    if not DIGIT_PATTERN.search(whole_text):
        return None
    fraction_text = clean_text(fraction.text()) if fraction else "00"
    symbol_text = clean_text(symbol.text()) if symbol else "$"
    return f"{symbol_text}{whole_text}.{fraction_text}"


def rank_text(node: Node) -> Optional[str]:
    """First '#N in Category' phrase within a node."""
    text = node_text(node)
    if not text:
        return None
    match = RANK_PATTERN.search(text)
    if not match:
        return None
    category = match.group(2).split("(")[0].strip(" ,>")
    return f"#{match.group(1)} in {category}"


@dataclass(frozen=True)
class SelectorRule:
    """One selector and how to read a value out of the matching node."""

    selector: str
    extract: Callable[[Node], Optional[str]] = node_text


TITLE_RULES = [
    SelectorRule("#productTitle"),
    SelectorRule("h1#title"),
    SelectorRule("#title"),
]

# Buy box first: page-wide price nodes may belong to other offers or be stale
BUYBOX_PRICE_RULES = [
    SelectorRule("#corePrice_feature_div .a-price .a-offscreen", price_text),
    SelectorRule("#corePriceDisplay_desktop_feature_div .priceToPay .a-offscreen", price_text),
    SelectorRule("#apex_offerDisplay_desktop .a-price .a-offscreen", price_text),
    SelectorRule("#price_inside_buybox", price_text),
    SelectorRule("#newBuyBoxPrice", price_text),
    SelectorRule("#buybox .a-price .a-offscreen", price_text),
    SelectorRule("#corePrice_feature_div .a-price", price_from_parts),
]

PAGE_PRICE_RULES = [
    SelectorRule(".priceToPay .a-offscreen", price_text),
    SelectorRule("#priceblock_ourprice", price_text),
    SelectorRule("#priceblock_dealprice", price_text),
    SelectorRule("#priceblock_saleprice", price_text),
    SelectorRule(".a-price .a-offscreen", price_text),
    SelectorRule(".a-color-price", price_text),
]

SELLER_RULES = [
    SelectorRule("#merchantInfoFeature_feature_div"),
    SelectorRule("#merchant-info"),
    SelectorRule("#tabular-buybox"),
    SelectorRule("#sellerProfileTriggerId"),
    SelectorRule("#offerDisplayFeatures_desktop"),
]

RANK_RULES = [
    SelectorRule("#productDetails_detailBullets_sections1", rank_text),
    SelectorRule("#detailBulletsWrapper_feature_div", rank_text),
    SelectorRule("#SalesRank", rank_text),
    SelectorRule("#prodDetails", rank_text),
    SelectorRule("body", rank_text),
]


def first_match(tree: HTMLParser, rules: Sequence[SelectorRule]) -> Optional[str]:
    """Evaluate rules in order; return the first non-empty value."""
    for rule in rules:
        try:
            node = tree.css_first(rule.selector)
        except Exception as e:
            logger.debug(f"Selector error {rule.selector}: {e}")
            continue
        if node is None:
            continue
        value = rule.extract(node)
        if value:
            return value
    return None


def collect_text(tree: HTMLParser, selectors: Iterable[str]) -> str:
    """Join the text of every node matched by any selector."""
    parts = []
    for selector in selectors:
        for node in tree.css(selector):
            text = node_text(node)
            if text:
                parts.append(text)
    return " ".join(parts)


def has_any(tree: HTMLParser, selectors: Iterable[str]) -> bool:
    return any(tree.css_first(selector) is not None for selector in selectors)


def detect_problem_text(text: str) -> Optional[str]:
    """Classify a page from its visible text: 'captcha', 'page not found' or None."""
    lowered = text.lower()
    if any(indicator in lowered for indicator in CAPTCHA_INDICATORS):
        return "captcha"
    if any(indicator in lowered for indicator in ERROR_PAGE_INDICATORS):
        return "page not found"
    return None


def classify_availability(
    availability_text: str,
    orderable: bool,
) -> tuple[AvailabilityState, Optional[str]]:
    """
    Classify availability from the availability block text and order controls.

    Unavailable phrases are checked first and always win, even when the page
    still shows cart controls. A low-stock count forces In Stock.

    Returns:
        (availability, stock note)
    """
    text = clean_text(availability_text)
    lowered = text.lower()

    for phrase in UNAVAILABLE_PHRASES:
        if phrase in lowered:
            return AvailabilityState.UNAVAILABLE, text

    low_stock = LOW_STOCK_PATTERN.search(lowered)
    if low_stock:
        return AvailabilityState.IN_STOCK, f"Low Stock: {low_stock.group(1)}"

    if not orderable:
        return AvailabilityState.UNAVAILABLE, text or None

    for phrase in BACK_ORDER_PHRASES:
        if phrase in lowered:
            return AvailabilityState.BACK_ORDER, text

    return AvailabilityState.IN_STOCK, text or None


def classify_seller(
    merchant_text: Optional[str],
    orderable: bool,
    availability: AvailabilityState,
) -> SellerClass:
    """First/third party from the merchant block; Unknown unless orderable."""
    if not orderable or availability in (AvailabilityState.UNAVAILABLE, AvailabilityState.INVALID_PAGE):
        return SellerClass.UNKNOWN
    if not merchant_text:
        return SellerClass.UNKNOWN

    sold_by = SOLD_BY_PATTERN.search(merchant_text)
    seller_name = (sold_by.group(1) if sold_by else merchant_text).strip().lower()
    if sold_by:
        return SellerClass.FIRST_PARTY if seller_name.startswith("amazon") else SellerClass.THIRD_PARTY
    return SellerClass.FIRST_PARTY if "amazon" in seller_name else SellerClass.THIRD_PARTY


def _guarded(step: str, item_id: str, func: Callable[[], T], default: T) -> T:
    """Run one extraction step; a failure yields the default."""
    try:
        return func()
    except Exception as e:
        logger.warning(f"{item_id}: extraction step '{step}' failed: {type(e).__name__}: {e}")
        return default


def parse_product_html(html: str, item_id: str) -> ObservationData:
    """
    Build an observation from a product page snapshot.

    Never raises for malformed markup: each field falls back independently.
    """
    tree = HTMLParser(html)

    title = _guarded("title", item_id, lambda: first_match(tree, TITLE_RULES), None) or "Unknown"
    orderable = _guarded("orderable", item_id, lambda: has_any(tree, ORDER_CONTROL_SELECTORS), False)
    availability_text = _guarded(
        "availability", item_id, lambda: collect_text(tree, AVAILABILITY_SELECTORS), ""
    )
    availability, stock_note = classify_availability(availability_text, orderable)

    merchant_text = None
    if orderable and availability != AvailabilityState.UNAVAILABLE:
        merchant_text = _guarded("seller", item_id, lambda: first_match(tree, SELLER_RULES), None)
    seller = classify_seller(merchant_text, orderable, availability)

    price = NOT_AVAILABLE
    if availability != AvailabilityState.UNAVAILABLE:
        price = _guarded(
            "price",
            item_id,
            lambda: first_match(tree, BUYBOX_PRICE_RULES) or first_match(tree, PAGE_PRICE_RULES),
            None,
        ) or NOT_AVAILABLE

    rank = _guarded("rank", item_id, lambda: first_match(tree, RANK_RULES), None) or NOT_AVAILABLE

    return ObservationData(
        item_id=item_id,
        title=title[:500],
        availability=availability,
        seller=seller,
        price=price[:64],
        rank=rank,
        stock_note=stock_note[:255] if stock_note else None,
    )
