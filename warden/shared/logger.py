"""Structured JSON logging for Warden components.

Every component logger is a child of the ``warden`` logger, which owns the
output handler. ``configure_logging`` retargets that handler once the service
configuration is known.
"""

import json
import logging
from datetime import datetime, timezone

ROOT_LOGGER = "warden"


class JsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record):
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "component": record.name.removeprefix(f"{ROOT_LOGGER}."),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if hasattr(record, "warden_data"):
            entry["data"] = record.warden_data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _make_handler(log_file: str | None) -> logging.Handler:
    handler = logging.FileHandler(log_file) if log_file else logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    return handler


def _root_logger() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        root.addHandler(_make_handler(None))
        root.setLevel(logging.INFO)
    return root


def get_logger(
    component: str,
    log_file: str | None = None,
    level: int | str | None = None,
) -> logging.Logger:
    """Return a named logger that emits structured JSON.

    Args:
        component: Short name for the component (e.g. "registry").
        log_file: Optional path; this logger writes JSON lines there instead
            of going through the shared ``warden`` handler.
        level: Optional level for this logger; by default the level of the
            ``warden`` logger applies.

    Returns:
        A ``logging.Logger`` instance named ``warden.<component>``.
    """
    _root_logger()
    logger = logging.getLogger(f"{ROOT_LOGGER}.{component}")
    if level is not None:
        logger.setLevel(level)

    if log_file and not logger.handlers:
        logger.addHandler(_make_handler(log_file))
        logger.propagate = False

    return logger


def configure_logging(log_file: str | None = None, level: int | str = logging.INFO) -> logging.Logger:
    """Point the shared ``warden`` handler at ``log_file`` (or stderr) and set its level."""
    root = _root_logger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.addHandler(_make_handler(log_file))
    root.setLevel(level.upper() if isinstance(level, str) else level)
    return root
