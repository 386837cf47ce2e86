"""Session manager for WhatsApp socket lifecycle management."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from wasessions.config import Settings, get_settings
from wasessions.events import SessionEventBus, get_event_bus
from wasessions.storage.credentials import credential_dir, remove_credential_dir, validate_token
from wasessions.utils.logging import set_tenant_token
from wasessions.whatsapp.connection import (
    ConnectionState,
    ConnectionStateMachine,
    ConnectionUpdate,
)
from wasessions.whatsapp.disconnect import DisconnectClassifier, DisconnectVerdict
from wasessions.whatsapp.errors import (
    CleanupFailedError,
    InitializationFailedError,
    InternalServerError,
    NotAllowedError,
    PreconditionFailedError,
    SessionError,
)
from wasessions.whatsapp.pairing import PairingFlow, PairingResult, QrRenderer, render_qr_png
from wasessions.whatsapp.retry_cache import RetryCounterCache, get_retry_cache
from wasessions.whatsapp.socket import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    MessagingSocket,
    SocketBackend,
    SocketConfig,
)

logger = logging.getLogger(__name__)

MESSAGE_SENT = "Message sent successfully"


@dataclass
class SessionInfo:
    """Information about a managed session."""

    token: str
    state: ConnectionState
    initialized: bool
    needs_pairing: bool = False
    last_disconnect_code: int | None = None
    error_message: str | None = None


def classifier_from_settings(settings: Settings) -> DisconnectClassifier:
    return DisconnectClassifier(settings.reconnect_reasons, settings.restart_session_reasons)


class WaSession:
    """One tenant's WhatsApp session: owns exactly one socket handle.

    Features:
    - Lazy, idempotent initialization guarded by a per-session lock
    - Lifecycle updates handled serially by a single consumer task
    - Automatic reconnect or credential reset depending on the disconnect reason
    - Sends and group listing gated on an open connection

    Example:
        ```python
        session = WaSession("tenant-1", backend)
        result = await session.await_pairing_image()
        if not result.already_paired:
            show(result.image)
        if await session.get_status():
            await session.send_message("123456789@s.whatsapp.net", "hello")
        ```
    """

    def __init__(
        self,
        token: str,
        backend: SocketBackend,
        *,
        settings: Settings | None = None,
        retry_cache: RetryCounterCache | None = None,
        classifier: DisconnectClassifier | None = None,
        event_bus: SessionEventBus | None = None,
        qr_renderer: QrRenderer = render_qr_png,
    ) -> None:
        """Initialize WaSession.

        Args:
            token: Tenant token; also names the credential directory
            backend: Factory for sockets and credential state
            settings: Timeouts, waits and reason codes (default: global settings)
            retry_cache: Shared retry counter cache (default: process-wide cache)
            classifier: Disconnect classifier (default: built from settings)
            event_bus: Status change bus (default: global bus)
            qr_renderer: Turns a pairing payload into image bytes
        """
        self.token = validate_token(token)
        self._backend = backend
        self._settings = settings or get_settings()
        self._retry_cache = (
            retry_cache if retry_cache is not None else get_retry_cache(self._settings.retry_cache_ttl)
        )
        self._event_bus = event_bus if event_bus is not None else get_event_bus()
        self.connection = ConnectionStateMachine(
            classifier or classifier_from_settings(self._settings), token=self.token
        )
        self._pairing = PairingFlow(
            self,
            settle=self._settings.init_settle,
            poll_interval=self._settings.qr_poll_interval,
            renderer=qr_renderer,
        )

        self._socket: MessagingSocket | None = None
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._last_error: SessionError | None = None
        self._recovering = False

        # Each socket gets a generation; updates from replaced sockets are dropped
        self._generation = 0
        self._updates: asyncio.Queue[tuple[int, Any]] = asyncio.Queue()
        self._consumer_task: asyncio.Task[None] | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def has_socket(self) -> bool:
        return self._socket is not None

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def recovering(self) -> bool:
        """True while a disconnect is being handled by reconnecting or resetting."""
        return self._recovering

    @property
    def last_error(self) -> SessionError | None:
        """Error left by the last fatal disconnect or failed automatic recovery."""
        return self._last_error

    def get_info(self) -> SessionInfo:
        snapshot = self.connection.snapshot()
        return SessionInfo(
            token=self.token,
            state=snapshot.state,
            initialized=self._initialized,
            needs_pairing=snapshot.needs_pairing,
            last_disconnect_code=snapshot.last_disconnect_code,
            error_message=self._last_error.message if self._last_error else None,
        )

    async def init(self) -> None:
        """Create the socket for this session.

        No-op if already initialized.

        Raises:
            InitializationFailedError: If credential loading, version negotiation
                or socket construction fails; the session stays uninitialized
        """
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            auth_dir = credential_dir(self._settings.sessions_dir, self.token)
            sock: MessagingSocket | None = None
            try:
                auth = await self._backend.load_auth_state(auth_dir)
                version = await self._backend.fetch_latest_version()
                config = SocketConfig(
                    version=tuple(version),
                    auth=auth,
                    connect_timeout_ms=int(self._settings.connect_timeout * 1000),
                    keep_alive_interval_ms=int(self._settings.keep_alive_interval * 1000),
                    retry_request_delay_ms=int(self._settings.retry_request_delay * 1000),
                    msg_retry_counter_cache=self._retry_cache,
                    browser=self._settings.browser,
                    generate_high_quality_link_preview=self._settings.generate_high_quality_link_preview,
                    fire_init_queries=self._settings.fire_init_queries,
                )
                sock = self._backend.make_socket(config)
                generation = self._generation + 1
                sock.on(CONNECTION_UPDATE, functools.partial(self._enqueue_update, generation))
                sock.on(CREDS_UPDATE, auth.save_creds)
            except Exception as e:
                logger.error(
                    f"Failed to initialize WhatsApp socket for '{self.token}': {e}",
                    exc_info=True,
                )
                if sock is not None:
                    await self._close_quietly(sock)
                raise InitializationFailedError(
                    f"Failed to initialize socket: {e}", token=self.token
                ) from e

            self._generation = generation
            self.connection.begin_socket()
            self._socket = sock
            self._initialized = True
            self._last_error = None
            self._ensure_consumer()
            logger.info(f"WhatsApp socket initialized for '{self.token}'")

    async def cleanup(self) -> None:
        """Close the socket and delete this session's credentials.

        A missing credential directory is not an error.

        Raises:
            CleanupFailedError: If closing the socket or deleting credentials fails
        """
        async with self._init_lock:
            sock, self._socket = self._socket, None
            self._initialized = False
            self.connection.reset()
            auth_dir = credential_dir(self._settings.sessions_dir, self.token)

            try:
                if sock is not None:
                    await sock.close()
                if remove_credential_dir(auth_dir):
                    logger.info(f"Session for '{self.token}' cleaned up successfully")
                else:
                    logger.warning(f"Session path {auth_dir} does not exist, nothing to clean up.")
            except Exception as e:
                logger.error(f"Error during cleanup for '{self.token}': {e}", exc_info=True)
                raise CleanupFailedError("Cleanup error", token=self.token) from e

        await self._event_bus.publish(self.token, "cleaned_up")

    async def close(self) -> None:
        """Stop handling updates and close the socket, keeping credentials.

        This method is safe to call even if not initialized.
        """
        if self._consumer_task is not None and not self._consumer_task.done():
            self._consumer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer_task
        self._consumer_task = None

        async with self._init_lock:
            sock, self._socket = self._socket, None
            self._initialized = False
            self.connection.reset()
        if sock is not None:
            await self._close_quietly(sock)
        logger.info(f"Session '{self.token}' closed")

    async def ensure_connection(self) -> None:
        """Initialize lazily and check that a socket exists.

        Raises:
            InitializationFailedError: If the lazy init fails
            NotAllowedError: If there is still no socket afterwards
        """
        try:
            if not self._initialized:
                logger.warning(
                    f"Socket not initialized or inactive for '{self.token}', "
                    "attempting to reconnect..."
                )
                await self.init()
                await asyncio.sleep(self._settings.ensure_grace)

            if self._socket is None:
                raise NotAllowedError("Socket not initialized", token=self.token)
        except SessionError as e:
            logger.error(f"Error ensuring connection for '{self.token}': {e}")
            raise

    async def on_disconnect_verdict(self, verdict: DisconnectVerdict, reason_code: int | None) -> None:
        """Act on the classification of a close update.

        Args:
            verdict: Classifier verdict
            reason_code: Disconnect reason code reported by the socket

        Raises:
            PreconditionFailedError: For a fatal verdict (also kept in last_error);
                the socket is released and the session is left uninitialized
            InitializationFailedError: If the reinit fails
            CleanupFailedError: If the reset cannot delete credentials
        """
        if verdict is not DisconnectVerdict.FATAL:
            self._recovering = True
            try:
                if verdict is DisconnectVerdict.RECONNECT:
                    logger.info(f"Attempting to reconnect for '{self.token}'...")
                    await self._release_socket()
                else:
                    logger.info(
                        f"Restarting session for '{self.token}' "
                        f"due to disconnect reason {reason_code}..."
                    )
                    await self.cleanup()
                await self.init()
            finally:
                self._recovering = False
        else:
            error = PreconditionFailedError(
                f"Unhandled disconnect reason: {reason_code}",
                token=self.token,
                reason_code=reason_code,
            )
            self._last_error = error
            logger.error(f"Unhandled disconnect reason: {reason_code} for '{self.token}'")
            # Credentials stay; a later init() reconnects with them
            await self._release_socket()
            await self._event_bus.publish(self.token, "fatal")
            raise error

    async def get_status(self) -> bool:
        """Report whether the connection is open.

        Raises:
            InitializationFailedError: If the lazy init fails
        """
        if not self._initialized:
            logger.warning(
                f"Socket not initialized or inactive for '{self.token}', attempting to reconnect..."
            )
            await self.init()
            await asyncio.sleep(self._settings.status_grace)

        return self.connection.state == ConnectionState.OPEN

    async def await_pairing_image(self) -> PairingResult:
        """Wait for a pairing QR code; see PairingFlow.await_pairing_image."""
        return await self._pairing.await_pairing_image()

    async def list_groups(self) -> list[Any]:
        """List the groups this account participates in.

        Returns:
            Group metadata records, in the order the socket reported them

        Raises:
            NotAllowedError: If there is no socket
            PreconditionFailedError: If the connection is not open or the fetch fails
        """
        await self.ensure_connection()
        sock = self._socket
        if sock is None:
            raise NotAllowedError("Connection not open", token=self.token)
        if self.connection.state != ConnectionState.OPEN:
            logger.error(
                f"Failed to get all groups for '{self.token}': "
                f"connection is {self.connection.state.value}"
            )
            raise PreconditionFailedError("Connection not open", token=self.token)

        try:
            groups = await sock.group_fetch_all_participating()
            return list(groups.values())
        except Exception as e:
            logger.error(f"Failed to get all groups for '{self.token}': {e}")
            raise PreconditionFailedError("Failed to get all groups", token=self.token) from e

    async def send_message(self, destination: str, text: str) -> str:
        """Send a text message.

        Success only means the socket accepted the message.

        Raises:
            NotAllowedError: If there is no socket
            PreconditionFailedError: If the connection is not open
            InternalServerError: If the send fails while the connection is open
        """
        await self.ensure_connection()
        sock = self._socket
        if sock is None:
            raise NotAllowedError("Connection not open", token=self.token)
        if self.connection.state != ConnectionState.OPEN:
            logger.error(
                f"Failed to send message from '{self.token}' to {destination}: "
                f"connection is {self.connection.state.value}"
            )
            raise PreconditionFailedError("Connection not open", token=self.token)

        try:
            await sock.send_message(destination, {"text": text})
        except Exception as e:
            logger.error(f"Failed to send message from '{self.token}' to {destination}: {e}")
            if self.connection.state != ConnectionState.OPEN:
                raise PreconditionFailedError("Connection not open", token=self.token) from e
            raise InternalServerError("Failed to send message", token=self.token) from e

        return MESSAGE_SENT

    async def wait_for_updates(self) -> None:
        """Wait until every lifecycle update received so far has been handled."""
        await self._updates.join()

    def _enqueue_update(self, generation: int, update: Any) -> None:
        self._updates.put_nowait((generation, update))

    def _ensure_consumer(self) -> None:
        if self._consumer_task is None or self._consumer_task.done():
            self._consumer_task = asyncio.create_task(
                self._consume_updates(), name=f"wasession-updates-{self.token}"
            )

    async def _consume_updates(self) -> None:
        set_tenant_token(self.token)
        while True:
            generation, raw = await self._updates.get()
            try:
                await self._handle_update(generation, raw)
            except Exception as e:
                logger.error(
                    f"Error handling connection update for '{self.token}': {e}", exc_info=True
                )
            finally:
                self._updates.task_done()

    async def _handle_update(self, generation: int, raw: Any) -> None:
        if generation != self._generation or self._socket is None:
            logger.debug(f"Dropping update from a replaced socket for '{self.token}'")
            return

        try:
            update = ConnectionUpdate.from_event(raw)
        except (ValidationError, TypeError) as e:
            logger.warning(f"Ignoring malformed connection update for '{self.token}': {e}")
            return

        decision = self.connection.apply(update)
        if update.connection is not None:
            await self._event_bus.publish(self.token, self.connection.state.value)

        if decision is None:
            return
        try:
            await self.on_disconnect_verdict(decision.verdict, decision.reason_code)
        except SessionError as e:
            # No caller is waiting on an update; keep the error for get_info()
            self._last_error = e
            logger.error(
                f"Session '{self.token}' did not recover from disconnect "
                f"({decision.verdict.value}): {e}"
            )

    async def _release_socket(self) -> None:
        async with self._init_lock:
            sock, self._socket = self._socket, None
            self._initialized = False
        if sock is not None:
            await self._close_quietly(sock)

    async def _close_quietly(self, sock: MessagingSocket) -> None:
        try:
            await sock.close()
        except Exception as e:
            logger.warning(f"Error closing stale socket for '{self.token}': {e}")


class SessionRegistry:
    """Creates and tracks one WaSession per tenant token.

    All sessions share the registry's backend, settings, retry cache,
    classifier and event bus.
    """

    def __init__(
        self,
        backend: SocketBackend,
        *,
        settings: Settings | None = None,
        retry_cache: RetryCounterCache | None = None,
        event_bus: SessionEventBus | None = None,
        qr_renderer: QrRenderer = render_qr_png,
    ) -> None:
        self._backend = backend
        self._settings = settings or get_settings()
        self._retry_cache = (
            retry_cache if retry_cache is not None else get_retry_cache(self._settings.retry_cache_ttl)
        )
        self._classifier = classifier_from_settings(self._settings)
        self._event_bus = event_bus if event_bus is not None else get_event_bus()
        self._qr_renderer = qr_renderer
        self._sessions: dict[str, WaSession] = {}

    def get(self, token: str) -> WaSession:
        """Get the session for a token, creating it on first access.

        Raises:
            ValueError: If the token is not usable as a credential directory name
        """
        session = self._sessions.get(token)
        if session is None:
            session = WaSession(
                token,
                self._backend,
                settings=self._settings,
                retry_cache=self._retry_cache,
                classifier=self._classifier,
                event_bus=self._event_bus,
                qr_renderer=self._qr_renderer,
            )
            self._sessions[token] = session
        return session

    def __contains__(self, token: object) -> bool:
        return token in self._sessions

    def list_sessions(self) -> list[str]:
        return list(self._sessions.keys())

    def get_info(self, token: str) -> SessionInfo | None:
        session = self._sessions.get(token)
        return session.get_info() if session is not None else None

    async def remove(self, token: str, *, delete_credentials: bool = False) -> None:
        """Forget a session, optionally deleting its credentials.

        This method is safe to call for unknown tokens.
        """
        session = self._sessions.pop(token, None)
        if session is None:
            return
        await session.close()
        if delete_credentials:
            await session.cleanup()
        self._event_bus.forget(token)

    async def shutdown(self) -> None:
        """Close every session. Useful for graceful shutdown."""
        for token in list(self._sessions.keys()):
            session = self._sessions[token]
            try:
                await session.close()
            except Exception as e:
                logger.error(f"Error closing session '{token}' during shutdown: {e}", exc_info=True)
