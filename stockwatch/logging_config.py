"""Logging setup: JSON lines outside development, readable lines locally.

Scheduler and checker log calls attach ``extra={"target_id": ..., "cycle_id": ...}``.
Both formatters surface those fields so a single target can be followed
through a cycle.
"""

import json
import logging
import sys
from datetime import UTC, datetime

CONTEXT_FIELDS = ("cycle_id", "target_id", "tier", "url")


def _context(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            **_context(record),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Plain format with any context fields appended as key=value pairs."""

    def __init__(self):
        super().__init__("%(asctime)s %(levelname)-8s [%(name)s] %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _context(record)
        if context:
            line += " " + " ".join(f"{k}={v}" for k, v in context.items())
        return line


def setup_logging(app_env: str = "development", log_level: str = "INFO") -> None:
    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ConsoleFormatter() if app_env == "development" else JSONFormatter())
    root.addHandler(handler)

    # Per-request and per-page noise
    for name in ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)
