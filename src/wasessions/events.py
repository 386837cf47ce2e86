"""Event bus for broadcasting session status changes.

This module provides a simple publish-subscribe event bus for notifying
subscribers about session status changes as they happen.

Statuses published by WaSession:
- "connecting", "open", "closed": a lifecycle update changed the connection state
- "fatal": the socket closed for a reason that is not recovered automatically
- "cleaned_up": the session's socket was closed and its credentials deleted
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

Subscriber = Callable[[str, str], Awaitable[None]]

# Terminal statuses are never deduplicated or rate limited
UNTHROTTLED_STATUSES = frozenset({"fatal", "cleaned_up"})


class SessionEventBus:
    """Event bus for broadcasting session status changes.

    Usage:
        bus = SessionEventBus()

        async def handler(token: str, new_status: str):
            print(f"Session {token} changed to {new_status}")

        bus.subscribe(handler)
        await bus.publish("tenant-1", "open")
    """

    def __init__(self, max_events_per_second: int = 10, subscriber_timeout: float = 5.0) -> None:
        """Initialize the event bus.

        Args:
            max_events_per_second: Maximum events per session per second
            subscriber_timeout: Seconds a subscriber may take per event
        """
        self._subscribers: list[Subscriber] = []
        self._max_events_per_second = max_events_per_second
        self._subscriber_timeout = subscriber_timeout

        # Deduplication: track last status per session
        self._last_status: dict[str, str] = {}

        # Rate limiting: track event timestamps per session
        self._event_times: dict[str, list[float]] = defaultdict(list)

    def subscribe(self, callback: Subscriber) -> None:
        """Subscribe to session status change events.

        Subscribing the same callback twice is a no-op.

        Args:
            callback: Async function that receives (token, new_status)
        """
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        """Unsubscribe from session status change events."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _should_throttle(self, token: str, new_status: str) -> bool:
        if new_status in UNTHROTTLED_STATUSES:
            return False

        # Deduplication: drop if same status as last event
        if self._last_status.get(token) == new_status:
            return True

        now = time.monotonic()
        event_times = self._event_times[token]
        event_times[:] = [t for t in event_times if now - t < 1.0]
        return len(event_times) >= self._max_events_per_second

    async def publish(self, token: str, new_status: str) -> None:
        """Publish a session status change event to all subscribers.

        Events are throttled to prevent flooding:
        - Duplicate consecutive events are dropped
        - Events exceeding rate limit are dropped
        - "fatal" and "cleaned_up" are always delivered
        - A failing or slow subscriber does not affect the others

        Args:
            token: Tenant token of the session that changed
            new_status: New status of the session
        """
        if self._should_throttle(token, new_status):
            return

        self._last_status[token] = new_status
        self._event_times[token].append(time.monotonic())

        if self._subscribers:
            results = await asyncio.gather(
                *(
                    asyncio.wait_for(callback(token, new_status), timeout=self._subscriber_timeout)
                    for callback in self._subscribers
                ),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, Exception):
                    logger.warning(f"Subscriber failed on '{new_status}' for '{token}': {result}")

    def forget(self, token: str) -> None:
        """Drop throttling state of a session that no longer exists."""
        self._last_status.pop(token, None)
        self._event_times.pop(token, None)

    def clear_subscribers(self) -> None:
        """Remove all subscribers. Useful for testing."""
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


# Global event bus instance
_event_bus: SessionEventBus | None = None


def get_event_bus() -> SessionEventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = SessionEventBus()
    return _event_bus


def reset_event_bus() -> None:
    """Reset the global event bus. Useful for testing."""
    global _event_bus
    _event_bus = None
