# oneshot_webhook/x402/cache.py
"""
Short-lived cache of the 1Shot API supported-token registry.

Every x402 request needs the registry to build its payment requirements, but
the registry rarely changes, so responses are kept for a few minutes per
client identity. Entries expire lazily: a stale entry is refreshed by the
next lookup, there is no eviction timer.

Thread-safe: each client identity has its own lock, so concurrent misses for
the same identity result in a single backend fetch.
"""
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from oneshot_webhook.api.models.x402 import SupportedResponse
from oneshot_webhook.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A fetched registry and the time it was fetched."""
    timestamp: float
    response: SupportedResponse


class SupportedTokenCache:
    """In-memory TTL cache of supported-token registries keyed by client ID."""

    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time
    ):
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_lock = threading.Lock()

    @property
    def ttl_seconds(self) -> int:
        """Get the entry lifetime (lazy load from settings if not set)."""
        if self._ttl_seconds is not None:
            return self._ttl_seconds
        return settings.X402_SUPPORTED_CACHE_TTL

    def _lock_for(self, client_id: str) -> threading.Lock:
        with self._locks_lock:
            return self._locks[client_id]

    def _fresh_entry(self, client_id: str) -> Optional[CacheEntry]:
        entry = self._entries.get(client_id)
        if entry is not None and entry.timestamp > self._clock() - self.ttl_seconds:
            return entry
        return None

    def get_supported_tokens(
        self,
        client_id: str,
        fetch: Callable[[], SupportedResponse]
    ) -> SupportedResponse:
        """
        Return the registry for a client, fetching it if missing or stale.

        Args:
            client_id: The client identity the registry belongs to
            fetch: Called to load the registry from the backend on a miss

        Returns:
            The supported-token registry

        Raises:
            Whatever fetch raises. Failed fetches are not cached.
        """
        entry = self._fresh_entry(client_id)
        if entry is not None:
            return entry.response

        with self._lock_for(client_id):
            # Another thread may have refreshed the entry while we waited
            entry = self._fresh_entry(client_id)
            if entry is not None:
                return entry.response

            logger.debug(f"x402: Supported token cache miss for client {client_id}")
            try:
                response = fetch()
            except Exception as e:
                logger.error(f"x402: Error getting supported tokens for client {client_id}: {e}")
                raise

            self._entries[client_id] = CacheEntry(timestamp=self._clock(), response=response)
            return response

    def clear(self) -> None:
        """Forget all cached registries."""
        self._entries.clear()


# Global cache instance
_cache: Optional[SupportedTokenCache] = None
_cache_lock = threading.Lock()


def get_supported_token_cache() -> SupportedTokenCache:
    """
    Get the global supported-token cache.

    Returns:
        The singleton SupportedTokenCache
    """
    global _cache

    if _cache is None:
        with _cache_lock:
            if _cache is None:
                _cache = SupportedTokenCache()

    return _cache


def reset_supported_token_cache() -> None:
    """Reset the global cache (useful for testing)."""
    global _cache
    with _cache_lock:
        if _cache is not None:
            _cache.clear()
        _cache = None
