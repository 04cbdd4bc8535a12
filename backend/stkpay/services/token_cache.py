"""
Access Token Cache

Holds the single Daraja bearer token shared by every STK push call.
A token is never served past its expiry; on refresh the cached Token is
replaced wholesale.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..exceptions import CredentialsUnavailableError, UpstreamAuthFailureError
from .daraja_client import DarajaClient

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Token:
    value: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at


class TokenCache:
    """
    Process-wide cache for the Daraja OAuth token.

    Refreshes are single-flight: concurrent callers that find the cache empty
    wait on one lock, and the first one through performs the exchange while
    the rest reuse its result.
    """

    def __init__(
        self,
        client: DarajaClient,
        consumer_key: Optional[str],
        consumer_secret: Optional[str],
        default_ttl_seconds: int = 3600,
        expiry_margin_seconds: int = 60,
        clock: Callable[[], datetime] = utc_now
    ):
        self._client = client
        self._consumer_key = consumer_key
        self._consumer_secret = consumer_secret
        self._default_ttl = default_ttl_seconds
        self._margin = expiry_margin_seconds
        self._clock = clock
        self._token: Optional[Token] = None
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def current(self) -> Optional[Token]:
        """Cached token, if any, without checking expiry."""
        return self._token

    async def acquire(self) -> Token:
        """
        Return a valid token, refreshing from the gateway when needed.

        Raises:
            CredentialsUnavailableError: Consumer key/secret not configured
            UpstreamAuthFailureError: Credential exchange failed or timed out
        """
        token = self._token
        if token and token.is_valid(self._clock()):
            return token

        if not self._consumer_key or not self._consumer_secret:
            raise CredentialsUnavailableError("Daraja consumer key/secret not configured")

        async with self._lock:
            # Another task may have refreshed while we waited
            token = self._token
            if token and token.is_valid(self._clock()):
                return token

            token = await self._refresh()
            self._token = token
            return token

    def invalidate(self) -> None:
        """Drop the cached token so the next acquire() refreshes."""
        if self._token is not None:
            logger.info("Access token invalidated")
        self._token = None

    async def _refresh(self) -> Token:
        body = await self._client.fetch_access_token(self._consumer_key, self._consumer_secret)

        try:
            ttl = int(body.get("expires_in", self._default_ttl))
        except (TypeError, ValueError):
            ttl = self._default_ttl

        # Expire margin seconds ahead of the gateway
        lifetime = max(ttl - self._margin, 0)
        if lifetime == 0:
            raise UpstreamAuthFailureError(
                "Unable to fetch access token",
                {"reason": "token_lifetime_too_short", "expires_in": ttl}
            )

        self.refresh_count += 1
        expires_at = self._clock() + timedelta(seconds=lifetime)
        logger.info(f"Fetched new Daraja access token, valid until {expires_at.isoformat()}")
        return Token(value=body["access_token"], expires_at=expires_at)
