"""
Process-wide cache for the courier aggregator bearer token.

One instance is created per process (see main.py) and handed to every gateway client.
A token counts as expired once less than `buffer` remains before its expiry. Refresh is
serialized by an asyncio.Lock: a caller arriving mid-refresh waits and then reuses the new
token instead of logging in a second time.
"""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from app.config import settings

logger = logging.getLogger(__name__)

LoginFn = Callable[[], Awaitable[str]]
RefreshCallback = Callable[[str, datetime], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class TokenCache:
    def __init__(
        self,
        ttl: Optional[timedelta] = None,
        buffer: Optional[timedelta] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ttl = ttl or timedelta(hours=settings.SHIPROCKET_TOKEN_TTL_HOURS)
        self.buffer = buffer or timedelta(seconds=settings.SHIPROCKET_TOKEN_BUFFER_SEC)
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[datetime] = None
        self._key: Optional[str] = None
        self._lock = asyncio.Lock()
        self.login_count = 0

    @property
    def expires_at(self) -> Optional[datetime]:
        return self._expires_at

    def is_valid(self, key: Optional[str] = None) -> bool:
        if not self._token or not self._expires_at:
            return False
        if key is not None and self._key is not None and key != self._key:
            return False
        return self._expires_at - self._clock() >= self.buffer

    def seed(self, token: Optional[str], expires_at: Optional[datetime], key: Optional[str] = None) -> None:
        """Adopt a token persisted by an earlier process, if it is still usable."""
        if not token or not expires_at:
            return
        if self.is_valid(key):
            return
        candidate = _aware(expires_at)
        if candidate - self._clock() < self.buffer:
            return
        self._token, self._expires_at, self._key = token, candidate, key

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = None
        self._key = None

    async def get_valid_token(
        self,
        login: LoginFn,
        key: Optional[str] = None,
        on_refresh: Optional[RefreshCallback] = None,
    ) -> str:
        """
        Return a cached token, or log in once and cache the result.
        Login errors propagate unchanged; nothing here retries.
        """
        if self.is_valid(key):
            return self._token  # type: ignore[return-value]
        async with self._lock:
            # Another caller may have refreshed while we waited
            if self.is_valid(key):
                return self._token  # type: ignore[return-value]
            token = await login()
            self.login_count += 1
            self._token = token
            self._expires_at = self._clock() + self.ttl
            self._key = key
            logger.info("Courier aggregator token refreshed, valid until %s", self._expires_at.isoformat())
            if on_refresh is not None:
                try:
                    on_refresh(token, self._expires_at)
                except Exception as e:
                    # Persisting the token is an optimization; the in-memory copy is still valid
                    logger.warning("Could not persist refreshed token: %s", e)
            return token
