"""Centralized logging utilities for expensecore.

This module provides:
- Logging configuration from SharedConfig
- Safe preview utilities for sensitive data
- Secret redaction
- Structured logging with session and caller context
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from .config import LogLevel, SharedConfig

# Patterns for detecting secrets (common patterns to redact)
SECRET_PATTERNS = [
    r'(?i)(?:password|passwd|pwd|secret|token|key|api[_-]?key|auth[_-]?token)\s*[:=]\s*["\']?([^"\'\s]+)',
    r'(?i)(?:bearer|basic)\s+([a-zA-Z0-9+/=]+)',
    r'(?i)(?:sk_live_|sk_test_|pk_live_|pk_test_)[a-zA-Z0-9]{16,}',
    r'[a-f0-9]{32,}',  # Long hex strings (could be hashes or keys)
]

# LogRecord attributes that are never copied into the structured payload
_RESERVED_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName", "relativeCreated",
        "thread", "threadName", "exc_info", "exc_text", "stack_info",
        "taskName", "session_id", "caller_id",
    }
)


def safe_preview(value: Any, limit: int = 240) -> str:
    """Create a safe, length-bounded, single-line preview of a value for logging.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)

    Returns:
        A truncated string representation
    """
    if value is None:
        return ""

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list)):
        try:
            s = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)

    s = " ".join(s.split())

    if len(s) > limit:
        return s[: limit - 1] + "…"

    return s


def redact_secrets(text: str, replacement: str = "[REDACTED]") -> str:
    """Redact secret patterns (API keys, bearer tokens, long hex keys) from text."""
    if not isinstance(text, str):
        return text

    result = text
    for pattern in SECRET_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE | re.DOTALL)

    return result


def safe_log_value(value: Any, limit: int = 240, redact: bool = True) -> str:
    """Preview + optional redaction. Use this for any potentially sensitive value."""
    preview = safe_preview(value, limit=limit)
    if redact:
        preview = redact_secrets(preview)
    return preview


class SessionFormatter(logging.Formatter):
    """Formatter that includes session_id / caller_id and optional JSON output.

    This formatter:
    - Extracts session_id and caller_id from log records (if available)
    - Formats logs as JSON for structured logging
    - Includes safe previews of extra fields
    - Redacts secrets automatically
    """

    def __init__(
        self,
        include_session: bool = True,
        json_format: bool = True,
        redact_secrets: bool = True,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.include_session = include_session
        self.json_format = json_format
        self.redact_secrets = redact_secrets

    def format(self, record: logging.LogRecord) -> str:
        session_id = getattr(record, "session_id", None)
        caller_id = getattr(record, "caller_id", None)

        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_session:
            if session_id:
                log_data["session_id"] = str(session_id)
            if caller_id:
                log_data["caller_id"] = str(caller_id)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = safe_log_value(value, redact=self.redact_secrets)

        if self.redact_secrets:
            log_data["message"] = redact_secrets(log_data["message"])

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [
            f"[{log_data['timestamp']}]",
            f"{log_data['level']}",
            f"{log_data['logger']}",
        ]
        if session_id:
            parts.append(f"session={log_data.get('session_id', '')}")
        if caller_id:
            parts.append(f"caller={log_data.get('caller_id', '')}")
        parts.append(f": {log_data['message']}")
        return " ".join(parts)


class SessionLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds session_id and caller_id to every record.

    Usage:
        logger = get_session_logger(__name__, session_id=session.session_id)
        logger.info("Organization switched", caller_id=caller_id)
    """

    def __init__(
        self,
        logger: logging.Logger,
        session_id: Optional[str] = None,
        caller_id: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.session_id = session_id
        self.caller_id = caller_id

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        session_id = kwargs.pop("session_id", self.session_id)
        caller_id = kwargs.pop("caller_id", self.caller_id)

        extra = kwargs.get("extra", {})
        if session_id:
            extra["session_id"] = session_id
        if caller_id:
            extra["caller_id"] = caller_id
        kwargs["extra"] = extra

        return msg, kwargs


def setup_logging(
    config: Optional[SharedConfig] = None,
    json_format: Optional[bool] = None,
    redact_secrets: bool = True,
) -> None:
    """Configure root logging for a service embedding expensecore.

    Args:
        config: SharedConfig instance (if None, loads from environment)
        json_format: Force JSON (True) or plain text (False); defaults to config.log_json
        redact_secrets: Whether to redact secrets (default: True)
    """
    if config is None:
        from .config import load_shared_config_from_env

        config = load_shared_config_from_env()

    level_map = {
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARNING: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
        LogLevel.CRITICAL: logging.CRITICAL,
    }
    log_level = level_map.get(LogLevel(config.log_level), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        SessionFormatter(
            include_session=True,
            json_format=config.log_json if json_format is None else json_format,
            redact_secrets=redact_secrets,
        )
    )
    root_logger.addHandler(console_handler)

    if config.service_name:
        logging.getLogger(config.service_name).setLevel(log_level)


def get_session_logger(
    name: str,
    session_id: Optional[str] = None,
    caller_id: Optional[str] = None,
) -> SessionLoggerAdapter:
    """Get a logger adapter bound to a session.

    Args:
        name: Logger name (typically __name__)
        session_id: Session identifier included in all records
        caller_id: Authenticated caller included in all records
    """
    return SessionLoggerAdapter(logging.getLogger(name), session_id=session_id, caller_id=caller_id)


__all__ = [
    "safe_preview",
    "redact_secrets",
    "safe_log_value",
    "SessionFormatter",
    "SessionLoggerAdapter",
    "setup_logging",
    "get_session_logger",
]
