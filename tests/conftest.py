"""Pytest configuration and shared fixtures for WaSessions tests.

Fixtures:
- settings: Settings rooted in a temporary data dir with zero grace periods
- backend: FakeBackend producing FakeSockets
- retry_cache: Fresh RetryCounterCache
- event_bus: Fresh SessionEventBus
- published: Statuses published on ``event_bus``
- session: WaSession for token "tenant-1" (closed after the test)
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
import pytest_asyncio
from fakes import FakeBackend

from wasessions.config import Settings, reset_settings
from wasessions.events import SessionEventBus, reset_event_bus
from wasessions.utils.logging import clear_tenant_token
from wasessions.whatsapp.retry_cache import RetryCounterCache, reset_retry_cache
from wasessions.whatsapp.session_manager import WaSession


def fake_renderer(payload: str) -> bytes:
    return f"PNG:{payload}".encode()


@pytest.fixture(autouse=True)
def reset_globals() -> Generator[None, None, None]:
    """Reset process-wide singletons between tests."""
    yield
    reset_event_bus()
    reset_retry_cache()
    reset_settings()
    clear_tenant_token()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        data_dir=tmp_path,
        init_settle=0.0,
        ensure_grace=0.0,
        status_grace=0.0,
        qr_poll_interval=0.01,
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def retry_cache() -> RetryCounterCache:
    return RetryCounterCache(ttl=60)


@pytest.fixture
def event_bus() -> SessionEventBus:
    return SessionEventBus(max_events_per_second=1000)


@pytest.fixture
def published(event_bus: SessionEventBus) -> list[tuple[str, str]]:
    events: list[tuple[str, str]] = []

    async def record(token: str, status: str) -> None:
        events.append((token, status))

    event_bus.subscribe(record)
    return events


@pytest_asyncio.fixture
async def session(
    backend: FakeBackend,
    settings: Settings,
    retry_cache: RetryCounterCache,
    event_bus: SessionEventBus,
) -> AsyncGenerator[WaSession, None]:
    s = WaSession(
        "tenant-1",
        backend,
        settings=settings,
        retry_cache=retry_cache,
        event_bus=event_bus,
        qr_renderer=fake_renderer,
    )
    yield s
    await s.close()
