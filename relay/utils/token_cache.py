"""
Expiring holder for process-wide upstream tokens (OAuth app token, client
integrity token).

Values are refreshed lazily: a read inside the refresh margin counts as a miss.
Concurrent refreshes are collapsed into one upstream call by an asyncio lock.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

# (token, ttl_seconds)
TokenFetcher = Callable[[], Awaitable[Tuple[str, float]]]


class TokenCache:
    """Single cached token with an expiry timestamp."""

    def __init__(self, name: str, refresh_margin: float = 60):
        """
        Args:
            name: Label used in log messages
            refresh_margin: Seconds before expiry at which the token is treated as stale
        """
        self.name = name
        self.refresh_margin = refresh_margin
        self._value: Optional[str] = None
        self._expires_at: float = 0.0
        self._lock = asyncio.Lock()

    def get(self) -> Optional[str]:
        if self._value is None:
            return None
        if time.time() >= self._expires_at - self.refresh_margin:
            logger.debug(f"Cached {self.name} token is stale")
            return None
        return self._value

    def set(self, value: str, ttl: float) -> None:
        self._value = value
        self._expires_at = time.time() + ttl
        logger.debug(f"Cached {self.name} token (TTL: {ttl}s)")

    def clear(self) -> None:
        self._value = None
        self._expires_at = 0.0

    async def get_or_refresh(self, fetch: TokenFetcher) -> str:
        """
        Return the cached token, calling ``fetch`` at most once across
        concurrent callers when it is missing or stale.
        """
        value = self.get()
        if value is not None:
            return value

        async with self._lock:
            # Another task may have refreshed while we waited
            value = self.get()
            if value is not None:
                return value

            token, ttl = await fetch()
            self.set(token, ttl)
            return token
