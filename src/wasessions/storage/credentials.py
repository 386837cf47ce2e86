"""Per-tenant credential directory layout.

Each tenant token owns one directory under the sessions directory. Its
contents are written and read entirely by the socket backend's auth-state
API; this module only knows where the directory lives and how to remove it.
"""

from __future__ import annotations

import re
import shutil
from pathlib import Path

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_.\-]{1,128}$")


def validate_token(token: str) -> str:
    """Check that a tenant token is safe to use as a directory name.

    Args:
        token: Tenant token

    Returns:
        The token unchanged

    Raises:
        ValueError: If the token could escape the sessions directory
    """
    if not isinstance(token, str) or not _TOKEN_RE.match(token) or token in {".", ".."}:
        raise ValueError(f"Invalid session token: {token!r}")
    return token


def credential_dir(sessions_dir: Path, token: str) -> Path:
    """Directory holding the persisted credentials of ``token``."""
    return sessions_dir / validate_token(token)


def remove_credential_dir(path: Path) -> bool:
    """Recursively delete a credential directory.

    Args:
        path: Directory to delete

    Returns:
        True if the directory was deleted, False if it did not exist

    Raises:
        OSError: If the directory exists but cannot be deleted
    """
    if not path.exists():
        return False
    if not path.is_dir():
        raise NotADirectoryError(f"Credential path is not a directory: {path}")
    shutil.rmtree(path)
    return True
