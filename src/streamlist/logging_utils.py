"""Logging setup: JSON lines to a rotating file, rich-rendered console output."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_FILE_NAME = "streamlist.log"

# Attributes every LogRecord carries; anything else arrived via `extra=`.
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record; `extra=` values are nested under `context`."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        payload: dict[str, object] = {
            "timestamp": stamp.isoformat(timespec="milliseconds").replace(
                "+00:00", "Z"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = _record_context(record)
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True)


def _record_context(record: logging.LogRecord) -> dict[str, object]:
    return {
        key: _json_safe(value)
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


def _json_safe(value: object) -> object:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(item) for item in value]
    return repr(value)


def resolve_level(level: str | int) -> int:
    """Map a level name to its number; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    mapped = logging.getLevelName(level.strip().upper())
    return mapped if isinstance(mapped, int) else logging.INFO


def _file_handler(path: Path, max_bytes: int, backup_count: int) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setFormatter(JsonLogFormatter())
    return handler


def _console_handler(console: Console | None) -> logging.Handler:
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s %(message)s"))
    return handler


def setup_logging(
    log_dir: Path,
    level: str | int = "INFO",
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    log_file: Path | None = None,
    console: Console | None = None,
) -> Path:
    """Replace root handlers with a JSON file handler and a stderr console.

    Console records go to stderr so they never mix with command output on
    stdout. Returns the log file path in use.
    """
    log_path = log_file if log_file is not None else log_dir / LOG_FILE_NAME
    root = logging.getLogger()
    root.setLevel(resolve_level(level))
    root.handlers.clear()
    root.addHandler(_file_handler(log_path, max_bytes, backup_count))
    root.addHandler(_console_handler(console))
    return log_path
