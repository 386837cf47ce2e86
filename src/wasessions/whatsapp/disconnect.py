"""Classification of socket disconnect reasons."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from typing import Any


class DisconnectVerdict(str, Enum):
    """What a closed session should do next."""

    RECONNECT = "reconnect"
    RESET_AND_RECONNECT = "reset_and_reconnect"
    FATAL = "fatal"


def _field(obj: Any, *names: str) -> Any:
    for name in names:
        if isinstance(obj, Mapping):
            if name in obj:
                return obj[name]
        elif hasattr(obj, name):
            return getattr(obj, name)
    return None


def _as_code(value: Any) -> int | None:
    # bool is an int subclass, never a reason code
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def extract_reason_code(last_disconnect: Any) -> int | None:
    """Pull the numeric reason code out of a socket's disconnect info.

    Accepts ``{"error": {"output": {"statusCode": 401}}}``-shaped data (as
    mappings or attribute objects), an error carrying ``status_code`` or
    ``output.status_code``, or a mapping holding the code directly.

    Returns:
        The reason code, or None when it cannot be found
    """
    if last_disconnect is None:
        return None
    try:
        error = _field(last_disconnect, "error")
        for source in (error, last_disconnect):
            if source is None:
                continue
            output = _field(source, "output")
            if output is not None:
                code = _as_code(_field(output, "statusCode", "status_code"))
                if code is not None:
                    return code
            code = _as_code(_field(source, "statusCode", "status_code"))
            if code is not None:
                return code
    except Exception:
        # Property access on arbitrary collaborator objects; an unreadable code is an absent code
        return None
    return None


class DisconnectClassifier:
    """Maps a disconnect reason code to a DisconnectVerdict.

    Codes in ``reconnect_codes`` only need a fresh socket; codes in
    ``reset_codes`` mean the stored credentials are no longer usable.
    Anything else, including an absent code, is fatal.
    """

    def __init__(self, reconnect_codes: Iterable[int], reset_codes: Iterable[int]) -> None:
        self._reconnect_codes = frozenset(reconnect_codes)
        self._reset_codes = frozenset(reset_codes)
        overlap = self._reconnect_codes & self._reset_codes
        if overlap:
            raise ValueError(
                f"Reconnect and reset reason codes must be disjoint, both contain {sorted(overlap)}"
            )

    @property
    def reconnect_codes(self) -> frozenset[int]:
        return self._reconnect_codes

    @property
    def reset_codes(self) -> frozenset[int]:
        return self._reset_codes

    def classify(self, code: int | None) -> DisconnectVerdict:
        if _as_code(code) is None:
            return DisconnectVerdict.FATAL
        if code in self._reconnect_codes:
            return DisconnectVerdict.RECONNECT
        if code in self._reset_codes:
            return DisconnectVerdict.RESET_AND_RECONNECT
        return DisconnectVerdict.FATAL
