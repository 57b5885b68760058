"""
ReviewSight Logging
===================

Two output modes share the same session context:
- JSON lines, one object per record, for log aggregation
- a console layout that tags each line with `[session/phase]`

Session context travels in `extra`:
    logger.info("phase done", extra={"session_id": sid, "phase": "recent"})

Usage:
    from src.orchestrator.logging_config import setup_logging

    setup_logging(json_output=True, log_file="logs/collection.log")
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from typing import Dict, Optional

CONTEXT_FIELDS = ("session_id", "phase", "pipeline", "batch", "attempt", "duration", "event_type")

# SDK and HTTP loggers are chatty at INFO
QUIET_LOGGERS = ("urllib3", "httpx", "anthropic", "openai")


def _context(record: logging.LogRecord) -> Dict[str, object]:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with any session context fields set on it."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(_context(record))

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable layout; `[session/phase]` prefixes the message when known."""

    def __init__(self):
        super().__init__(
            "%(asctime)s %(levelname)-7s %(name)s: %(tag)s%(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        parts = [str(p) for p in (getattr(record, "session_id", None), getattr(record, "phase", None)) if p]
        record.tag = f"[{'/'.join(parts)}] " if parts else ""
        return super().format(record)


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
) -> None:
    """
    Install handlers on the root logger, replacing any already there.

    The console handler writes to stderr since stdout carries CLI output.
    `log_file` adds a size-rotated file handler using the same formatter.
    """
    formatter = JSONFormatter() if json_output else ConsoleFormatter()

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.debug(f"Logging ready (level={level}, json={json_output}, file={log_file or '-'})")
