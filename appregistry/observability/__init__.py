"""Observability helpers (logging)."""

from appregistry.observability.logger import (
    FATAL_EXTRA,
    add_termination_log_handler,
    get_logger,
    with_fields,
)

__all__ = ["FATAL_EXTRA", "get_logger", "add_termination_log_handler", "with_fields"]
