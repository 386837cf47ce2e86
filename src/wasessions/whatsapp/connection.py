"""Connection state machine for one tenant session.

The socket reports its lifecycle through ``connection.update`` events. The
state machine folds those events into the session's observable state and,
when the connection closes, classifies the disconnect. It only reports the
verdict; acting on it (reinit, reset) is the session manager's job.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from wasessions.whatsapp.disconnect import (
    DisconnectClassifier,
    DisconnectVerdict,
    extract_reason_code,
)

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """State machine for session connection lifecycle."""

    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class ConnectionUpdate(BaseModel):
    """One ``connection.update`` event as emitted by the socket.

    Unknown connection phases are rejected at parse time. An update without
    ``connection`` is a pairing-only update.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    connection: Literal["connecting", "open", "close"] | None = None
    last_disconnect: Any = Field(default=None, alias="lastDisconnect")
    qr: str | None = None

    @field_validator("qr", mode="before")
    @classmethod
    def empty_qr_is_none(cls, v: Any) -> Any:
        return v or None

    @classmethod
    def from_event(cls, raw: Any) -> ConnectionUpdate:
        """Parse a raw event payload (mapping or already-parsed update)."""
        if isinstance(raw, ConnectionUpdate):
            return raw
        if isinstance(raw, Mapping):
            return cls.model_validate(dict(raw))
        raise TypeError(f"Unsupported connection update payload: {type(raw).__name__}")


@dataclass(frozen=True)
class DisconnectDecision:
    """Verdict reached for a close update."""

    verdict: DisconnectVerdict
    reason_code: int | None


@dataclass(frozen=True)
class ConnectionSnapshot:
    """Point-in-time view of a session's connection state."""

    state: ConnectionState
    pairing_payload: str | None
    needs_pairing: bool
    updates_seen: int
    last_disconnect_code: int | None

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN


class ConnectionStateMachine:
    """Owns one session's connection state and latest pairing payload.

    Updates must be applied serially; the session manager feeds them from a
    single consumer task.
    """

    def __init__(self, classifier: DisconnectClassifier, *, token: str = "-") -> None:
        self._classifier = classifier
        self._token = token
        self._state = ConnectionState.UNINITIALIZED
        self._pairing_payload: str | None = None
        self._needs_pairing = False
        self._updates_seen = 0
        self._last_disconnect_code: int | None = None
        self._changed = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pairing_payload(self) -> str | None:
        return self._pairing_payload

    @property
    def needs_pairing(self) -> bool:
        return self._needs_pairing

    def snapshot(self) -> ConnectionSnapshot:
        return ConnectionSnapshot(
            state=self._state,
            pairing_payload=self._pairing_payload,
            needs_pairing=self._needs_pairing,
            updates_seen=self._updates_seen,
            last_disconnect_code=self._last_disconnect_code,
        )

    def apply(self, update: ConnectionUpdate) -> DisconnectDecision | None:
        """Fold one update into the state.

        Args:
            update: Parsed connection update

        Returns:
            The disconnect decision for a close update, None otherwise
        """
        self._pairing_payload = update.qr
        self._needs_pairing = update.qr is not None
        self._updates_seen += 1

        decision: DisconnectDecision | None = None
        if update.connection == "close":
            self._state = ConnectionState.CLOSED
            code = extract_reason_code(update.last_disconnect)
            self._last_disconnect_code = code
            decision = DisconnectDecision(self._classifier.classify(code), code)
            logger.info(
                f"Connection status for '{self._token}': close, "
                f"lastDisconnectCode: {code}, verdict: {decision.verdict.value}"
            )
        elif update.connection == "open":
            self._state = ConnectionState.OPEN
            logger.info(f"Connection established for '{self._token}'")
        elif update.connection == "connecting":
            self._state = ConnectionState.CONNECTING
            logger.debug(f"Connecting session '{self._token}'")

        if self._needs_pairing:
            logger.debug(f"Pairing code available for '{self._token}'")

        self._notify()
        return decision

    def begin_socket(self) -> None:
        """Forget per-socket data before a new socket starts emitting."""
        self._pairing_payload = None
        self._needs_pairing = False
        self._updates_seen = 0
        self._notify()

    def reset(self) -> None:
        """Mark the session torn down."""
        self._state = ConnectionState.CLOSED
        self._pairing_payload = None
        self._needs_pairing = False
        self._updates_seen = 0
        self._notify()

    async def wait_for_change(self, timeout: float) -> bool:
        """Wait until the next state change or ``timeout`` seconds.

        Returns:
            True if the state changed, False on timeout
        """
        changed = self._changed
        try:
            await asyncio.wait_for(changed.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    def _notify(self) -> None:
        # Wake current waiters; later waiters get a fresh event
        self._changed.set()
        self._changed = asyncio.Event()
