"""Types shared by the page extractor and the scrape worker."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

NOT_AVAILABLE = "N/A"


class AvailabilityState(str, Enum):
    IN_STOCK = "In Stock"
    BACK_ORDER = "Back Order"
    UNAVAILABLE = "Unavailable"
    INVALID_PAGE = "Invalid Page"


class SellerClass(str, Enum):
    FIRST_PARTY = "Amazon"
    THIRD_PARTY = "3rd Party"
    UNKNOWN = "Unknown"


class OutcomeKind(str, Enum):
    OBSERVATION = "observation"
    NO_DATA = "no_data"
    ERROR = "error"


@dataclass
class ObservationData:
    """Normalized signals captured from one product page."""

    item_id: str
    title: str
    availability: AvailabilityState
    seller: SellerClass = SellerClass.UNKNOWN
    price: str = NOT_AVAILABLE
    rank: str = NOT_AVAILABLE
    stock_note: Optional[str] = None
    observed_at: datetime = None

    def __post_init__(self):
        if self.observed_at is None:
            self.observed_at = datetime.utcnow()

    @classmethod
    def invalid_page(cls, item_id: str, reason: str) -> "ObservationData":
        """Synthetic observation for CAPTCHA, 404 and error pages."""
        return cls(
            item_id=item_id,
            title="Invalid Page",
            availability=AvailabilityState.INVALID_PAGE,
            stock_note=reason,
        )


@dataclass
class ScrapeOutcome:
    """Classified result of one scrape attempt."""

    kind: OutcomeKind
    item_id: str
    observation: Optional[ObservationData] = None
    error: Optional[BaseException] = None
    duration: float = 0.0
    timed_out: bool = field(default=False)

    @property
    def failed(self) -> bool:
        return self.kind != OutcomeKind.OBSERVATION


class ClassificationAmbiguousError(Exception):
    """Page loaded but shows neither a product nor a recognizable error."""

    def __init__(self, item_id: str, page_title: str | None = None):
        self.item_id = item_id
        self.page_title = page_title
        super().__init__(
            f"No product container for {item_id}"
            f"{f' (page: {page_title})' if page_title else ''}"
        )


class PageNavigationError(Exception):
    """Navigation to the product page failed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to load {url}: {reason}")
