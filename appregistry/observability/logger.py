"""Logging setup.

All components log through named stdlib loggers under the ``appregistry``
root. The fatal startup diagnostic is additionally written to the container
termination log so the host can surface it after the process exits.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, MutableMapping, Optional

ROOT_LOGGER_NAME = "appregistry"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Pass as ``extra=`` to route a record to the termination log.
FATAL_EXTRA = {"fatal": True}


def _is_fatal(record: logging.LogRecord) -> bool:
    return bool(getattr(record, "fatal", False))


class TerminationLogHandler(logging.FileHandler):
    """File handler that only records ERROR records marked fatal."""

    def __init__(self, path: str | Path) -> None:
        super().__init__(str(path), mode="a", encoding="utf-8")
        self.setLevel(logging.ERROR)
        self.addFilter(_is_fatal)
        self.setFormatter(logging.Formatter(fmt="%(levelname)s %(message)s"))


def get_logger(name: str = ROOT_LOGGER_NAME, level: Optional[str] = None) -> logging.Logger:
    """Create (or return) a configured logger.

    Args:
        name: Logger name. Names outside the ``appregistry`` hierarchy get
            their own stderr handler.
        level: Optional log level string (e.g. "DEBUG"). If omitted, keeps existing.

    Returns:
        Configured logger writing to stderr.
    """

    logger = logging.getLogger(name)

    if level is not None:
        logger.setLevel(level.upper())
    elif logger.level == logging.NOTSET and name == ROOT_LOGGER_NAME:
        logger.setLevel(logging.INFO)

    if name == ROOT_LOGGER_NAME or not name.startswith(ROOT_LOGGER_NAME + "."):
        logger.propagate = False
        if not any(type(h) is logging.StreamHandler for h in logger.handlers):
            handler = logging.StreamHandler(stream=sys.stderr)
            handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT))
            logger.addHandler(handler)

    return logger


def add_termination_log_handler(path: str | Path) -> TerminationLogHandler:
    """Attach a termination-log writer to the root ``appregistry`` logger.

    Raises:
        OSError: the termination log cannot be opened for writing.
    """

    root = get_logger(ROOT_LOGGER_NAME)
    for existing in list(root.handlers):
        if isinstance(existing, TerminationLogHandler):
            root.removeHandler(existing)
            existing.close()

    handler = TerminationLogHandler(path)
    root.addHandler(handler)
    return handler


class FieldsAdapter(logging.LoggerAdapter):
    """Appends ``key=value`` context fields to every message."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        fields = " ".join(f"{key}={value}" for key, value in self.extra.items())
        if fields:
            msg = f"{msg} [{fields}]"
        return msg, kwargs


def with_fields(logger: logging.Logger, **fields: Any) -> FieldsAdapter:
    return FieldsAdapter(logger, fields)
