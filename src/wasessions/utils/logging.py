"""Logging utilities with sanitization, tenant context, and structured logging support.

This module provides:
- Log sanitization to mask sensitive data (JIDs, phone numbers, pairing codes, secrets)
- Tenant token context so records emitted while a session works carry its token
- SanitizingFormatter for complete output sanitization including exceptions
- JSONFormatter for structured JSON logging (log aggregators)
- setup_logging() for console and rotating file output
"""

from __future__ import annotations

import contextvars
import json
import logging
import re
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, ClassVar

# Context variable for the tenant token of the session being worked on
tenant_token: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "tenant_token", default=None
)

# Shared patterns for sensitive data detection
# Used by both LogSanitizer and SanitizingFormatter; order matters (JIDs before phones)
SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # Pairing payloads (ref,publicKey,identityKey,advSecret)
    (
        re.compile(r"\b\d@[A-Za-z0-9+/=_\-]{10,}(?:,[A-Za-z0-9+/=_\-]+){2,}"),
        "***PAIRING_CODE***",
    ),
    # User JIDs (phone number or LID, optional device suffix)
    (
        re.compile(r"\b\d{6,15}(?::\d+)?@(s\.whatsapp\.net|c\.us|lid)\b"),
        r"***@\1",
    ),
    # Phone numbers (international format)
    (re.compile(r"\+?[1-9]\d{10,14}"), "***PHONE***"),
    # API tokens and keys
    (
        re.compile(r"(api[_-]?key|secret|adv[_-]?secret)['\"]?\s*[:=]\s*['\"]?([A-Za-z0-9+/=_\-]{16,})"),
        r"\1=***SECRET***",
    ),
    # Noise/identity key material in repr() output
    (
        re.compile(r"(private|noise|identity)[_-]?key['\"]?\s*[:=]\s*['\"]?([A-Za-z0-9+/=_\-]{16,})"),
        r"\1_key=***KEY***",
    ),
    # Authorization headers
    (re.compile(r"(Authorization|Bearer)\s*:\s*([A-Za-z0-9_\-\.=]+)"), r"\1: ***AUTH***"),
]


def sanitize_text(text: str) -> str:
    """Apply all sanitization patterns to text.

    Args:
        text: The text to sanitize

    Returns:
        Sanitized text with sensitive data masked
    """
    for pattern, replacement in SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


class LogSanitizer(logging.Filter):
    """Filter that sanitizes sensitive data from log records.

    Protects against accidental logging of:
    - Contact JIDs and phone numbers
    - Pairing payloads
    - Key material and secrets

    Note: This filter sanitizes msg and args, but exception tracebacks
    are sanitized by SanitizingFormatter at format time.
    """

    PATTERNS: ClassVar[list[tuple[re.Pattern[str], str]]] = SENSITIVE_PATTERNS

    def filter(self, record: logging.LogRecord) -> bool:
        """Sanitize the log record message and args.

        Args:
            record: The log record to sanitize

        Returns:
            Always True (record is always processed)
        """
        if record.msg:
            record.msg = sanitize_text(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._sanitize_value(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._sanitize_value(arg) for arg in record.args)

        return True

    def _sanitize_value(self, value: Any) -> Any:
        if isinstance(value, str):
            return sanitize_text(value)
        elif isinstance(value, dict):
            return {k: self._sanitize_value(v) for k, v in value.items()}
        elif isinstance(value, list | tuple):
            sanitized = [self._sanitize_value(item) for item in value]
            return type(value)(sanitized)
        return value


class SanitizingFormatter(logging.Formatter):
    """Formatter that sanitizes the final formatted output.

    Catches sensitive data that LogSanitizer cannot see: exception
    messages, stack traces and formatted object representations.
    """

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        return sanitize_text(formatted)


def get_tenant_token() -> str | None:
    """Get the tenant token bound to the current context."""
    return tenant_token.get()


def set_tenant_token(token: str | None) -> contextvars.Token[str | None]:
    """Bind a tenant token to the current context.

    Args:
        token: The tenant token to set

    Returns:
        Token for resetting the context
    """
    return tenant_token.set(token)


def clear_tenant_token() -> None:
    """Clear the tenant token from context."""
    tenant_token.set(None)


class TokenContextFilter(logging.Filter):
    """Filter that adds the tenant token to log records as ``record.token``."""

    def filter(self, record: logging.LogRecord) -> bool:
        token = tenant_token.get()
        record.token = token if token else "-"
        return True


class JSONFormatter(logging.Formatter):
    """Formatter that outputs logs as JSON for log aggregators.

    Each log entry includes:
    - timestamp: ISO 8601 format
    - level: Log level name
    - logger: Logger name
    - message: Log message (sanitized)
    - token: Tenant token (if set)
    - Extra fields from log record
    """

    _STANDARD_ATTRS: ClassVar[frozenset[str]] = frozenset(
        {
            "name",
            "msg",
            "args",
            "created",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "module",
            "msecs",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "exc_info",
            "exc_text",
            "thread",
            "threadName",
            "taskName",
            "token",
            "message",
        }
    )

    def __init__(self, sanitize: bool = True) -> None:
        """Initialize JSON formatter.

        Args:
            sanitize: If True, sanitize sensitive data in output
        """
        super().__init__()
        self.sanitize = sanitize

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        token = getattr(record, "token", "-")
        if token != "-":
            log_entry["token"] = token

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in self._STANDARD_ATTRS and not key.startswith("_"):
                try:
                    json.dumps(value)
                    log_entry[key] = value
                except (TypeError, ValueError):
                    log_entry[key] = str(value)

        if self.sanitize:
            log_entry = {
                k: sanitize_text(v) if isinstance(v, str) else v for k, v in log_entry.items()
            }

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_to_file: bool = False,
    log_file_path: Path | None = None,
    log_file_max_bytes: int = 10 * 1024 * 1024,
    log_file_backup_count: int = 5,
) -> None:
    """Configure logging with console and optional rotating file output.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR)
        log_format: 'text' for human-readable lines, 'json' for structured output
        log_to_file: Enable file logging in addition to console
        log_file_path: Path to log file (required when log_to_file=True)
        log_file_max_bytes: Maximum size per log file before rotation
        log_file_backup_count: Number of rotated backup files to keep
    """
    effective_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(effective_level)

    # Clear any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    formatter: logging.Formatter
    if log_format == "json":
        formatter = JSONFormatter()
    else:
        formatter = SanitizingFormatter(
            "%(asctime)s [%(levelname)s] [%(token)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    # Filters are not inherited by child loggers, attach them to handlers
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(effective_level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(LogSanitizer())
    console_handler.addFilter(TokenContextFilter())
    root_logger.addHandler(console_handler)

    if log_to_file and log_file_path:
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file_path,
                maxBytes=log_file_max_bytes,
                backupCount=log_file_backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(effective_level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(LogSanitizer())
            file_handler.addFilter(TokenContextFilter())
            root_logger.addHandler(file_handler)
            logging.info(f"File logging enabled: {log_file_path}")
        except OSError as e:
            # Graceful degradation - continue with console-only logging
            logging.warning(f"Failed to initialize file logging: {e}. Using console-only logging.")
