"""
Structured logging.

JSON log lines with the active job ID attached to every record.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

from shared.config import settings

_job_id: ContextVar[Optional[str]] = ContextVar("job_id", default=None)

# Attributes present on every LogRecord; anything else came in through `extra`
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "asctime"}

_configured = False


def set_job_id(job_id: Optional[str]) -> None:
    """
    Bind a job ID to the current context.

    Every log record emitted from this task (and tasks it spawns) carries it.

    Args:
        job_id: Composite job ID, or None to clear
    """
    _job_id.set(str(job_id) if job_id is not None else None)


def get_job_id() -> Optional[str]:
    """Return the job ID bound to the current context."""
    return _job_id.get()


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        job_id = _job_id.get()
        if job_id and "job_id" not in record.__dict__:
            payload["job_id"] = job_id
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _configure_root() -> None:
    global _configured
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    if settings.log_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger("composite")
    root.addHandler(handler)
    root.setLevel(settings.log_level)
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger namespaced under "composite"
    """
    _configure_root()
    return logging.getLogger(f"composite.{name}")
