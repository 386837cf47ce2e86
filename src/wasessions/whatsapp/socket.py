"""Interface of the external messaging socket.

The socket performs protocol framing, encryption and credential
negotiation. This package only constructs it through a ``SocketBackend``,
listens to its lifecycle events and calls the few primitives below, so
everything here is a typing ``Protocol`` plus the configuration handed to
the backend.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from wasessions.whatsapp.retry_cache import RetryCounterCache

CONNECTION_UPDATE = "connection.update"
CREDS_UPDATE = "creds.update"

EventHandler = Callable[[Any], Awaitable[None] | None]


class AuthState(Protocol):
    """Credential state loaded from a tenant's credential directory."""

    creds: Any
    keys: Any

    async def save_creds(self, *args: Any) -> None:
        """Persist the current credentials to the credential directory."""
        ...


class MessagingSocket(Protocol):
    """A live protocol socket for one tenant."""

    def on(self, event: str, handler: EventHandler) -> None:
        """Register a handler for ``connection.update`` or ``creds.update``."""
        ...

    async def send_message(self, jid: str, content: Mapping[str, Any]) -> Any:
        """Send a message; returns once the socket accepted it."""
        ...

    async def group_fetch_all_participating(self) -> Mapping[str, Any]:
        """Fetch metadata of every group the account participates in, keyed by group JID."""
        ...

    async def close(self) -> None:
        """Close the underlying transport."""
        ...


@dataclass(frozen=True)
class SocketConfig:
    """Everything a backend needs to construct a socket."""

    version: tuple[int, ...]
    auth: AuthState
    connect_timeout_ms: int
    keep_alive_interval_ms: int
    retry_request_delay_ms: int
    msg_retry_counter_cache: RetryCounterCache
    browser: tuple[str, str, str]
    print_qr_in_terminal: bool = False
    generate_high_quality_link_preview: bool = True
    fire_init_queries: bool = False


class SocketBackend(Protocol):
    """Factory for sockets and their credential state (for dependency injection)."""

    async def load_auth_state(self, auth_dir: Path) -> AuthState:
        """Load or create the credential state stored in ``auth_dir``."""
        ...

    async def fetch_latest_version(self) -> tuple[int, ...]:
        """Negotiate the protocol version to announce."""
        ...

    def make_socket(self, config: SocketConfig) -> MessagingSocket:
        """Create a socket; it starts connecting immediately."""
        ...
