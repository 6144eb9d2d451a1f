"""
Structured JSON Logging Module.

Provides a StructuredLogger factory that produces logging.Logger instances
configured with JSON-formatted output.  Session transitions, discarded
fetch results and audit events all flow through here.

Extra fields whose name marks them as credentials (tokens, passwords,
keys) are masked before they reach any handler.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

from authsync.config import get_config

_REDACTED: str = "***"
_SENSITIVE_MARKERS: tuple[str, ...] = ("token", "password", "secret", "api_key", "anon_key")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_MARKERS)


def _json_value(value: Any) -> Any:
    """Keep JSON scalars as-is; stringify everything else."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: ``timestamp`` (ISO-8601 UTC), ``level``, ``logger_name``,
    ``message``, and when present ``extra`` (fields passed through the
    ``extra`` kwarg, credentials masked) and ``exception``.
    """

    _STANDARD_ATTRS: frozenset[str] = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
        ).__dict__.keys()
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        extra = {
            key: _REDACTED if _is_sensitive(key) else _json_value(value)
            for key, value in record.__dict__.items()
            if key not in self._STANDARD_ATTRS
        }
        if extra:
            entry["extra"] = extra

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)


class StructuredLogger:
    """Injectable logger for the session core.

    Wraps a named ``logging.Logger`` carrying a stdout handler and,
    unless disabled, a rotating file handler, both with
    :class:`JSONFormatter`.  Handlers are attached once per logger name.

    Usage::

        log = StructuredLogger(name="authsync")
        log.info("Profile resolved", extra={"user_id": "abc-123"})

    Passing ``log_file=""`` (or setting ``LOG_FILE`` to an empty string)
    disables the rotating file handler.
    """

    def __init__(
        self,
        name: str = "authsync",
        level: int = logging.INFO,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        cfg = get_config()

        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)
        if self._logger.handlers:
            return

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setLevel(level)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        path = log_file if log_file is not None else cfg.LOG_FILE
        if path:
            self._attach_file_handler(
                path,
                level,
                formatter,
                max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
            )

    def _attach_file_handler(
        self,
        path: str,
        level: int,
        formatter: logging.Formatter,
        max_bytes: int,
        backup_count: int,
    ) -> None:
        try:
            log_path = Path(path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                filename=str(log_path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Log file '%s' unavailable (%s); logging to console only.", path, exc,
            )
            return
        handler.setLevel(level)
        handler.setFormatter(formatter)
        self._logger.addHandler(handler)

    @property
    def logger(self) -> logging.Logger:
        """The underlying ``logging.Logger``."""
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "authsync") -> StructuredLogger:
    """Return a ``StructuredLogger`` named *name* with configured defaults."""
    return StructuredLogger(name=name)
