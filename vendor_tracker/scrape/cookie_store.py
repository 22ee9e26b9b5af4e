"""Cookie persistence for the scraper's browser session."""

import json
import logging
from pathlib import Path
from typing import Optional

from vendor_tracker.config import settings

logger = logging.getLogger(__name__)


class CookieStore:
    """Keeps the browser's cookies in a JSON file between launches."""

    def __init__(self, storage_path: Optional[str] = None, name: str = "amazon"):
        self.session_dir = Path(storage_path or settings.session_storage_path)
        self.name = name

    @property
    def cookie_path(self) -> Path:
        return self.session_dir / f"{self.name}_cookies.json"

    def load(self) -> list[dict]:
        """Load stored cookies; an unreadable file counts as no cookies."""
        if not self.cookie_path.exists():
            return []

        try:
            with open(self.cookie_path, "r") as f:
                cookies = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load cookies from {self.cookie_path}: {e}")
            return []

        if not isinstance(cookies, list):
            logger.warning(f"Ignoring malformed cookie file {self.cookie_path}")
            return []
        return cookies

    def save(self, cookies: list[dict]) -> None:
        """Write cookies to disk. Failures are logged, never raised."""
        try:
            self.session_dir.mkdir(parents=True, exist_ok=True)
            with open(self.cookie_path, "w") as f:
                json.dump(cookies, f, indent=2)
            logger.debug(f"Saved {len(cookies)} cookies to {self.cookie_path}")
        except OSError as e:
            logger.error(f"Failed to save cookies to {self.cookie_path}: {e}")
