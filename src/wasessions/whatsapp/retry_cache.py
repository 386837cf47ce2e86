"""RetryCounterCache: process-wide registry of message retry counts.

The socket asks the sender to re-send messages it could not decrypt and
counts the attempts per message id, so it can stop asking after a few
tries. The count must survive socket replacement, so one cache is shared by
every session in the process.
Thread-safe in-memory storage with per-entry expiry.
"""

from __future__ import annotations

import logging
import threading
import time

logger = logging.getLogger(__name__)

DEFAULT_TTL = 600.0


class RetryCounterCache:
    """Tracks retry counts keyed by message id.

    Maintains in-memory registry of {message_id: (count, expiry_timestamp)}.
    Expired entries are dropped lazily on access, and writes sweep the whole
    registry at most once per TTL so ids that are never read again do not pile up.
    """

    def __init__(self, ttl: float = DEFAULT_TTL) -> None:
        if ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        self._ttl = ttl
        self._entries: dict[str, tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = time.monotonic()

    @property
    def ttl(self) -> float:
        return self._ttl

    def get(self, message_id: str) -> int | None:
        """Get the retry count for a message.

        Args:
            message_id: Message identifier

        Returns:
            Retry count, or None if the message is unknown or its entry expired
        """
        with self._lock:
            entry = self._entries.get(message_id)
            if entry is None:
                return None
            count, expiry = entry
            if time.monotonic() >= expiry:
                del self._entries[message_id]
                return None
            return count

    def set(self, message_id: str, count: int) -> None:
        """Set the retry count for a message and restart its TTL."""
        now = time.monotonic()
        with self._lock:
            self._sweep_locked(now)
            self._entries[message_id] = (count, now + self._ttl)

    def increment(self, message_id: str) -> int:
        """Increment the retry count for a message.

        An unknown or expired message starts again from zero.

        Returns:
            The new retry count
        """
        now = time.monotonic()
        with self._lock:
            self._sweep_locked(now)
            entry = self._entries.get(message_id)
            count = entry[0] if entry is not None and now < entry[1] else 0
            count += 1
            self._entries[message_id] = (count, now + self._ttl)
        return count

    def _sweep_locked(self, now: float) -> None:
        # Caller holds self._lock
        if now - self._last_sweep < self._ttl:
            return
        self._last_sweep = now
        expired = [mid for mid, (_, exp) in self._entries.items() if now >= exp]
        for mid in expired:
            del self._entries[mid]
        if expired:
            logger.debug(f"Swept {len(expired)} expired retry counters")

    def delete(self, message_id: str) -> bool:
        """Forget a message.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            return self._entries.pop(message_id, None) is not None

    def clear_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            now = time.monotonic()
            expired = [mid for mid, (_, exp) in self._entries.items() if now >= exp]
            for mid in expired:
                del self._entries[mid]
        if expired:
            logger.debug(f"Cleared {len(expired)} expired retry counters")
        return len(expired)

    def clear_all(self) -> int:
        """Clear all entries (for testing/cleanup).

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# Global singleton
_global_cache: RetryCounterCache | None = None
_cache_lock = threading.Lock()


def get_retry_cache(ttl: float = DEFAULT_TTL) -> RetryCounterCache:
    """Get the process-wide RetryCounterCache singleton.

    Args:
        ttl: Entry lifetime used when the singleton is first created

    Returns:
        Global RetryCounterCache instance
    """
    global _global_cache
    if _global_cache is None:
        with _cache_lock:
            if _global_cache is None:
                _global_cache = RetryCounterCache(ttl)
    return _global_cache


def reset_retry_cache() -> None:
    """Drop the global cache. Useful for testing."""
    global _global_cache
    with _cache_lock:
        _global_cache = None
