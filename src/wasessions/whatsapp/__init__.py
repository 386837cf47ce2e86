"""WhatsApp session lifecycle module."""

from wasessions.whatsapp.connection import (
    ConnectionSnapshot,
    ConnectionState,
    ConnectionStateMachine,
    ConnectionUpdate,
    DisconnectDecision,
)
from wasessions.whatsapp.disconnect import (
    DisconnectClassifier,
    DisconnectVerdict,
    extract_reason_code,
)
from wasessions.whatsapp.errors import (
    CleanupFailedError,
    InitializationFailedError,
    InternalServerError,
    NotAllowedError,
    PreconditionFailedError,
    ServiceUnavailableError,
    SessionError,
)
from wasessions.whatsapp.pairing import ALREADY_PAIRED, PairingFlow, PairingResult, render_qr_png
from wasessions.whatsapp.retry_cache import RetryCounterCache, get_retry_cache
from wasessions.whatsapp.session_manager import (
    MESSAGE_SENT,
    SessionInfo,
    SessionRegistry,
    WaSession,
)
from wasessions.whatsapp.socket import (
    CONNECTION_UPDATE,
    CREDS_UPDATE,
    AuthState,
    MessagingSocket,
    SocketBackend,
    SocketConfig,
)

__all__ = [
    "ALREADY_PAIRED",
    "CONNECTION_UPDATE",
    "CREDS_UPDATE",
    "MESSAGE_SENT",
    "AuthState",
    "CleanupFailedError",
    "ConnectionSnapshot",
    "ConnectionState",
    "ConnectionStateMachine",
    "ConnectionUpdate",
    "DisconnectClassifier",
    "DisconnectDecision",
    "DisconnectVerdict",
    "InitializationFailedError",
    "InternalServerError",
    "MessagingSocket",
    "NotAllowedError",
    "PairingFlow",
    "PairingResult",
    "PreconditionFailedError",
    "RetryCounterCache",
    "ServiceUnavailableError",
    "SessionError",
    "SessionInfo",
    "SessionRegistry",
    "SocketBackend",
    "SocketConfig",
    "WaSession",
    "extract_reason_code",
    "get_retry_cache",
    "render_qr_png",
]
