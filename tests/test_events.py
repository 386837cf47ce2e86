"""Tests for session event bus module.

Tests cover:
- Event subscription and unsubscription
- Event publishing to subscribers
- Subscriber isolation (one failure doesn't affect others)
- Deduplication and rate limiting
- Global event bus singleton
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from wasessions.events import SessionEventBus, get_event_bus, reset_event_bus


class TestSessionEventBus:
    """Tests for SessionEventBus class."""

    def test_initialization(self) -> None:
        """Event bus should initialize with no subscribers."""
        bus = SessionEventBus()
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_subscribe_and_publish(self) -> None:
        """Subscriber should receive published events."""
        bus = SessionEventBus()
        received = []

        async def handler(token: str, new_status: str) -> None:
            received.append((token, new_status))

        bus.subscribe(handler)
        bus.subscribe(handler)
        await bus.publish("tenant-1", "open")

        assert bus.subscriber_count == 1
        assert received == [("tenant-1", "open")]

    @pytest.mark.asyncio
    async def test_mock_subscriber_awaited(self) -> None:
        bus = SessionEventBus()
        handler = AsyncMock()

        bus.subscribe(handler)
        await bus.publish("tenant-1", "closed")

        handler.assert_awaited_once_with("tenant-1", "closed")

    @pytest.mark.asyncio
    async def test_unsubscribe(self) -> None:
        bus = SessionEventBus()
        received = []

        async def handler(token: str, new_status: str) -> None:
            received.append((token, new_status))

        bus.subscribe(handler)
        bus.unsubscribe(handler)
        await bus.publish("tenant-1", "open")

        assert received == []

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self) -> None:
        """A subscriber raising does not keep others from receiving the event."""
        bus = SessionEventBus()
        received = []

        async def broken(token: str, new_status: str) -> None:
            raise RuntimeError("subscriber crashed")

        async def handler(token: str, new_status: str) -> None:
            received.append(new_status)

        bus.subscribe(broken)
        bus.subscribe(handler)
        await bus.publish("tenant-1", "fatal")

        assert received == ["fatal"]

    @pytest.mark.asyncio
    async def test_slow_subscriber_times_out(self) -> None:
        bus = SessionEventBus(subscriber_timeout=0.01)
        received = []

        async def slow(token: str, new_status: str) -> None:
            await asyncio.sleep(1)

        async def handler(token: str, new_status: str) -> None:
            received.append(new_status)

        bus.subscribe(slow)
        bus.subscribe(handler)
        await asyncio.wait_for(bus.publish("tenant-1", "open"), timeout=0.5)

        assert received == ["open"]

    @pytest.mark.asyncio
    async def test_duplicate_status_dropped(self) -> None:
        bus = SessionEventBus()
        received = []

        async def handler(token: str, new_status: str) -> None:
            received.append((token, new_status))

        bus.subscribe(handler)
        await bus.publish("tenant-1", "open")
        await bus.publish("tenant-1", "open")
        await bus.publish("tenant-2", "open")

        assert received == [("tenant-1", "open"), ("tenant-2", "open")]

    @pytest.mark.asyncio
    async def test_rate_limit(self) -> None:
        bus = SessionEventBus(max_events_per_second=2)
        received = []

        async def handler(token: str, new_status: str) -> None:
            received.append(new_status)

        bus.subscribe(handler)
        for status in ["connecting", "open", "closed", "connecting"]:
            await bus.publish("tenant-1", status)

        assert received == ["connecting", "open"]

    @pytest.mark.asyncio
    async def test_forget_resets_dedup(self) -> None:
        bus = SessionEventBus()
        received = []

        async def handler(token: str, new_status: str) -> None:
            received.append(new_status)

        bus.subscribe(handler)
        await bus.publish("tenant-1", "open")
        bus.forget("tenant-1")
        await bus.publish("tenant-1", "open")

        assert received == ["open", "open"]

    @pytest.mark.asyncio
    async def test_terminal_statuses_never_throttled(self) -> None:
        """fatal and cleaned_up get through a saturated rate limit and repeat."""
        bus = SessionEventBus(max_events_per_second=2)
        received = []

        async def handler(token: str, new_status: str) -> None:
            received.append(new_status)

        bus.subscribe(handler)
        for status in ["connecting", "open", "closed", "fatal", "cleaned_up", "cleaned_up"]:
            await bus.publish("tenant-1", status)

        assert received == ["connecting", "open", "fatal", "cleaned_up", "cleaned_up"]


class TestGlobalEventBus:
    def test_singleton(self) -> None:
        assert get_event_bus() is get_event_bus()

    def test_reset(self) -> None:
        bus = get_event_bus()
        reset_event_bus()
        assert get_event_bus() is not bus
