"""Configuration management for WaSessions.

Supports layered configuration with priority: constructor args > ENV vars > .env file > defaults
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import platformdirs
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Protocol disconnect reasons that only need a fresh socket
DEFAULT_RECONNECT_REASONS = (
    408,  # connection lost / timed out
    428,  # connection closed
    503,  # service unavailable
    515,  # restart required
)

# Protocol disconnect reasons that invalidate the stored credentials
DEFAULT_RESTART_SESSION_REASONS = (
    401,  # logged out
    403,  # forbidden
    411,  # multi-device mismatch
    500,  # bad session
)


def _get_default_data_dir() -> Path:
    """Get platform-appropriate default data directory using platformdirs.

    Uses OS-specific conventions:
    - macOS: ~/Library/Application Support/WaSessions
    - Windows: %APPDATA%/WaSessions
    - Linux: ~/.local/share/wasessions

    Returns:
        Path to platform-specific user data directory
    """
    return Path(platformdirs.user_data_dir("WaSessions", "WaSessions"))


def get_user_log_dir() -> Path:
    """Get platform-appropriate user logs directory.

    Returns:
        Path to platform-specific logs directory
    """
    return Path(platformdirs.user_log_dir("WaSessions", "WaSessions"))


def _parse_code_list(v: Any) -> list[int]:
    if v is None:
        return []
    if isinstance(v, str):
        return [int(code.strip()) for code in v.split(",") if code.strip()]
    if isinstance(v, int):
        return [v]
    return [int(code) for code in v]


class Settings(BaseSettings):
    """Application settings with layered configuration support.

    Configuration is loaded in the following priority (highest to lowest):
    1. Arguments passed directly to Settings()
    2. Environment variables (prefixed with WASESSIONS_)
    3. .env file (if present in current directory)
    4. Default values

    Example:
        ```python
        settings = get_settings()
        print(settings.sessions_dir)

        # Shorter waits for a test run
        settings = Settings(data_dir=tmp_path, ensure_grace=0.0)
        ```

    Environment variables:
        WASESSIONS_DATA_DIR: Data directory path
        WASESSIONS_CONNECT_TIMEOUT: Socket connect timeout in seconds
        WASESSIONS_RECONNECT_REASONS: JSON list of reconnect reason codes, e.g. [408,428]
        WASESSIONS_RESTART_SESSION_REASONS: JSON list of reset reason codes
        WASESSIONS_LOG_LEVEL: Logging level (default: INFO)
    """

    model_config = SettingsConfigDict(
        env_prefix="WASESSIONS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Paths
    data_dir: Path = Field(
        default_factory=_get_default_data_dir,
        description="Base directory for application data",
    )

    # Socket timeouts (seconds)
    connect_timeout: float = Field(
        default=60.0,
        ge=1.0,
        le=600.0,
        description="Timeout for the socket to connect",
    )
    keep_alive_interval: float = Field(
        default=30.0,
        ge=1.0,
        le=600.0,
        description="Interval between keep-alive pings",
    )
    retry_request_delay: float = Field(
        default=0.25,
        ge=0.0,
        le=60.0,
        description="Delay before re-requesting an undecryptable message",
    )

    # Lifecycle waits (seconds)
    init_settle: float = Field(
        default=5.0,
        ge=0.0,
        le=120.0,
        description="Wait after a lazy init before polling for a pairing code",
    )
    qr_poll_interval: float = Field(
        default=1.0,
        gt=0.0,
        le=60.0,
        description="Interval between pairing code polls",
    )
    ensure_grace: float = Field(
        default=1.0,
        ge=0.0,
        le=60.0,
        description="Wait after a lazy init before using the socket",
    )
    status_grace: float = Field(
        default=2.0,
        ge=0.0,
        le=60.0,
        description="Wait after a lazy init before reporting status",
    )

    # Retry accounting
    retry_cache_ttl: float = Field(
        default=600.0,
        gt=0.0,
        le=86400.0,
        description="Seconds a message retry counter is kept",
    )

    # Disconnect handling
    reconnect_reasons: list[int] = Field(
        default_factory=lambda: list(DEFAULT_RECONNECT_REASONS),
        description="Disconnect reason codes handled by reconnecting in place",
    )
    restart_session_reasons: list[int] = Field(
        default_factory=lambda: list(DEFAULT_RESTART_SESSION_REASONS),
        description="Disconnect reason codes handled by erasing credentials and reconnecting",
    )

    # Socket identity
    browser: tuple[str, str, str] = Field(
        default=("Mac OS", "Chrome", "WaSessions"),
        description="Browser identity announced to the server (platform, browser, version)",
    )
    generate_high_quality_link_preview: bool = Field(default=True)
    fire_init_queries: bool = Field(default=False)

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_format: str = Field(
        default="text",
        description="Log format: 'text' for human-readable, 'json' for structured logging",
    )
    log_to_file: bool = Field(
        default=False,
        description="Enable logging to file (in addition to console)",
    )
    log_file_max_bytes: int = Field(
        default=10 * 1024 * 1024,  # 10 MB
        ge=1024 * 1024,
        le=100 * 1024 * 1024,
        description="Maximum size of each log file before rotation",
    )
    log_file_backup_count: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Number of backup log files to keep",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is supported."""
        valid_formats = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid log format: {v}. Must be one of: {', '.join(valid_formats)}")
        return v_lower

    @field_validator("reconnect_reasons", "restart_session_reasons", mode="before")
    @classmethod
    def parse_reason_codes(cls, v: Any) -> list[int]:
        """Parse reason codes from comma-separated string or list."""
        return _parse_code_list(v)

    @model_validator(mode="after")
    def check_reason_sets_disjoint(self) -> Settings:
        """Reject a code that is both a reconnect and a restart reason."""
        overlap = set(self.reconnect_reasons) & set(self.restart_session_reasons)
        if overlap:
            raise ValueError(
                f"Disconnect reason codes cannot be both reconnect and restart reasons: "
                f"{sorted(overlap)}"
            )
        return self

    @property
    def sessions_dir(self) -> Path:
        """Directory holding one credential directory per tenant token."""
        return self.data_dir / "sessions"

    @property
    def log_dir(self) -> Path:
        """Directory for log files (uses platform-specific directory)."""
        return get_user_log_dir()

    @property
    def log_file_path(self) -> Path:
        """Path to the main log file."""
        return self.log_dir / "wasessions.log"

    def print_config(self) -> None:
        """Print current configuration to stdout."""
        print("WaSessions Configuration:")
        print(f"  Data Directory: {self.data_dir}")
        print(f"  Sessions Directory: {self.sessions_dir}")
        print(f"  Connect Timeout: {self.connect_timeout}s")
        print(f"  Keep-Alive Interval: {self.keep_alive_interval}s")
        print(f"  Retry Request Delay: {self.retry_request_delay}s")
        print(f"  Init Settle: {self.init_settle}s")
        print(f"  QR Poll Interval: {self.qr_poll_interval}s")
        print(f"  Retry Cache TTL: {self.retry_cache_ttl}s")
        print(f"  Reconnect Reasons: {', '.join(map(str, self.reconnect_reasons))}")
        print(f"  Restart Session Reasons: {', '.join(map(str, self.restart_session_reasons))}")
        print(f"  Log Level: {self.log_level}")
        print(f"  Log Format: {self.log_format}")
        print(f"  Log to File: {self.log_to_file}")
        if self.log_to_file:
            print(f"  Log File: {self.log_file_path}")


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Settings are loaded once and cached. To reload settings,
    call reset_settings() first.

    Returns:
        Settings instance
    """
    return Settings()


def reset_settings() -> None:
    """Clear settings cache to force reload on next get_settings() call."""
    get_settings.cache_clear()
