"""Login with Amazon access token management."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

import httpx

from vendor_tracker.config import settings
from vendor_tracker.metrics import record_token_refresh
from vendor_tracker.utils.retry import OperationTimeoutError, with_timeout

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES_IN = 3600


class AuthRefreshError(Exception):
    """The access token could not be refreshed. Always fatal to the caller."""


@dataclass
class OAuthTokenState:
    access_token: Optional[str]
    refresh_token: Optional[str]
    expires_at: Optional[datetime]


class TokenManager:
    """
    Hands out a valid SP-API access token.

    The stored token is re-read on every call, so several processes sharing
    the token row at worst duplicate one refresh. A cached token is returned
    only while it stays valid beyond the refresh margin; otherwise a
    refresh-token grant is made and the result persisted before returning.
    """

    def __init__(
        self,
        store,
        client: Optional[httpx.AsyncClient] = None,
        token_url: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        refresh_margin: Optional[timedelta] = None,
        timeout_seconds: Optional[float] = None,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        self.store = store
        self._client = client
        self._owns_client = client is None
        self.token_url = token_url or settings.lwa_token_url
        self.client_id = client_id if client_id is not None else settings.lwa_client_id
        self.client_secret = client_secret if client_secret is not None else settings.lwa_client_secret
        self.refresh_margin = refresh_margin or timedelta(seconds=settings.token_refresh_margin_seconds)
        self.timeout_seconds = timeout_seconds or settings.sp_api_timeout_seconds
        self.now = now

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def get_access_token(self) -> str:
        """
        Return a token valid for at least the refresh margin.

        Raises:
            AuthRefreshError: No token stored, or the refresh failed
        """
        state = await self.store.load_oauth_token()
        if state is None:
            raise AuthRefreshError("No OAuth token stored; authorize the application first")

        if state.access_token and state.expires_at and state.expires_at > self.now() + self.refresh_margin:
            return state.access_token

        return await self.refresh(state)

    async def refresh(self, state: Optional[OAuthTokenState] = None) -> str:
        """Perform a refresh-token grant and persist the new access token."""
        if state is None:
            state = await self.store.load_oauth_token()
        if state is None or not state.refresh_token:
            record_token_refresh(False)
            raise AuthRefreshError("No refresh token available")

        logger.info("Refreshing access token")
        try:
            response = await with_timeout(
                self.client.post(
                    self.token_url,
                    data={
                        "grant_type": "refresh_token",
                        "refresh_token": state.refresh_token,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                    },
                ),
                self.timeout_seconds,
                "token refresh",
            )
            payload = response.json()
        except (httpx.HTTPError, OperationTimeoutError, ValueError) as e:
            record_token_refresh(False)
            raise AuthRefreshError(f"Token refresh request failed: {e}") from e

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if response.status_code != 200 or not access_token:
            record_token_refresh(False)
            raise AuthRefreshError(f"Token refresh failed ({response.status_code}): {payload}")

        expires_in = payload.get("expires_in") or DEFAULT_EXPIRES_IN
        expires_at = self.now() + timedelta(seconds=int(expires_in))
        await self.store.save_oauth_token(
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=payload.get("refresh_token"),
        )
        record_token_refresh(True)
        logger.info(f"Access token refreshed, valid until {expires_at.isoformat()}")
        return access_token
