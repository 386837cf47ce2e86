"""Pairing (QR) handshake for a tenant session.

A fresh credential directory has no registered device, so the socket emits
pairing payloads that the user scans from their phone. The flow below waits
for such a payload, or for the socket to show that pairing is not needed.
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import qrcode
import qrcode.constants

from wasessions.whatsapp.connection import ConnectionState
from wasessions.whatsapp.errors import NotAllowedError, ServiceUnavailableError

if TYPE_CHECKING:
    from wasessions.whatsapp.session_manager import WaSession

logger = logging.getLogger(__name__)

QrRenderer = Callable[[str], bytes]


@dataclass(frozen=True)
class PairingResult:
    """Outcome of a pairing wait: a PNG to scan, or a note that none is needed."""

    image: bytes | None
    message: str | None = None

    @property
    def already_paired(self) -> bool:
        return self.image is None


ALREADY_PAIRED = PairingResult(image=None, message="You're all set!")


def render_qr_png(payload: str) -> bytes:
    """Render a pairing payload as a PNG QR code."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class PairingFlow:
    """Waits for a session's pairing payload.

    The wait itself is unbounded; each step is a cancellable timed wait that
    also wakes up as soon as the session's connection state changes.
    """

    def __init__(
        self,
        session: WaSession,
        *,
        settle: float,
        poll_interval: float,
        renderer: QrRenderer = render_qr_png,
    ) -> None:
        self._session = session
        self._settle = settle
        self._poll_interval = poll_interval
        self._renderer = renderer

    async def await_pairing_image(self) -> PairingResult:
        """Wait for a pairing payload and render it.

        Returns:
            PairingResult with PNG bytes, or ALREADY_PAIRED when the session
            reported an update without a pairing payload

        Raises:
            ServiceUnavailableError: On any failure, including a failed lazy init
        """
        session = self._session
        token = session.token

        try:
            if not session.initialized:
                logger.warning(
                    f"Socket not initialized or inactive for '{token}', attempting to reconnect..."
                )
                await session.init()
                await asyncio.sleep(self._settle)

            if not session.has_socket:
                raise NotAllowedError("Socket not initialized", token=token)

            while True:
                snapshot = session.connection.snapshot()
                if snapshot.pairing_payload:
                    return PairingResult(image=self._renderer(snapshot.pairing_payload))

                # A close carries no payload but does not mean the device is paired
                if (
                    snapshot.updates_seen > 0
                    and not snapshot.needs_pairing
                    and snapshot.state != ConnectionState.CLOSED
                ):
                    logger.info(f"QR code not needed for '{token}'")
                    return ALREADY_PAIRED

                if session.last_error is not None:
                    raise session.last_error
                # A reconnect or reset drops the socket briefly before the next one exists
                if not session.has_socket and not session.recovering:
                    raise NotAllowedError(
                        "Session was cleaned up while waiting for a pairing code", token=token
                    )

                logger.debug(f"Waiting to generate QR code for '{token}'")
                await session.connection.wait_for_change(self._poll_interval)
        except Exception as e:
            logger.error(f"Failed to generate QR code for '{token}': {e}")
            raise ServiceUnavailableError("Failed to generate QR code", token=token) from e
