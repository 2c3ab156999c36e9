"""Tests for logger setup and the termination log handler."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from appregistry.observability import FATAL_EXTRA, add_termination_log_handler, get_logger, with_fields
from appregistry.observability.logger import ROOT_LOGGER_NAME, TerminationLogHandler
from appregistry.rpc_server import RegistryError, RegistryService
from appregistry.store import StoreError


@pytest.fixture(autouse=True)
def _clean_root_logger() -> Iterator[None]:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    level = root.level
    yield
    root.setLevel(level)
    for handler in list(root.handlers):
        if isinstance(handler, TerminationLogHandler):
            root.removeHandler(handler)
            handler.close()


def _stderr_handlers(logger: logging.Logger) -> list[logging.Handler]:
    # Subclasses (FileHandler, pytest capture handlers) are not ours.
    return [h for h in logger.handlers if type(h) is logging.StreamHandler]


class _BrokenStore:
    def get_package(self, name: str) -> None:
        raise StoreError("database is locked")


@pytest.mark.unit
class TestGetLogger:
    def test_root_logger_has_single_stderr_handler(self) -> None:
        first = get_logger()
        second = get_logger()

        assert first is second
        assert first.propagate is False
        assert len(_stderr_handlers(first)) == 1

    def test_level(self) -> None:
        assert get_logger(level="debug").level == logging.DEBUG
        assert get_logger().level == logging.DEBUG
        assert get_logger(level="INFO").level == logging.INFO

    def test_child_logger_propagates_to_root(self) -> None:
        child = get_logger(f"{ROOT_LOGGER_NAME}.ingestion")
        assert child.propagate is True
        assert _stderr_handlers(child) == []


@pytest.mark.unit
class TestTerminationLog:
    def test_only_fatal_errors_are_written(self, tmp_path: Path) -> None:
        path = tmp_path / "termination-log"
        add_termination_log_handler(path)
        logger = get_logger(f"{ROOT_LOGGER_NAME}.loader", level="DEBUG")

        logger.info("starting up")
        logger.warning("slow registry")
        logger.error("retrying listing")
        logger.error("error loading manifest from remote registry - boom", extra=FATAL_EXTRA)

        text = path.read_text(encoding="utf-8")
        assert "boom" in text
        assert "starting up" not in text
        assert "slow registry" not in text
        assert "retrying listing" not in text

    def test_request_errors_while_serving_are_not_written(self, tmp_path: Path) -> None:
        path = tmp_path / "termination-log"
        add_termination_log_handler(path)
        service = RegistryService(_BrokenStore())  # type: ignore[arg-type]

        with pytest.raises(RegistryError):
            service.handle_request("GetPackage", {"name": "etcd"})

        assert path.read_text(encoding="utf-8") == ""

    def test_replaces_previous_handler(self, tmp_path: Path) -> None:
        add_termination_log_handler(tmp_path / "first")
        add_termination_log_handler(tmp_path / "second")

        root = logging.getLogger(ROOT_LOGGER_NAME)
        handlers = [h for h in root.handlers if isinstance(h, TerminationLogHandler)]
        assert len(handlers) == 1
        assert handlers[0].baseFilename.endswith("second")

    def test_unwritable_path(self, tmp_path: Path) -> None:
        with pytest.raises(OSError):
            add_termination_log_handler(tmp_path / "no-such-dir" / "termination-log")


@pytest.mark.unit
def test_with_fields_appends_context(tmp_path: Path) -> None:
    path = tmp_path / "termination-log"
    add_termination_log_handler(path)

    with_fields(get_logger(), type="appregistry", port=50051).error("failed to listen", extra=FATAL_EXTRA)

    assert "failed to listen [type=appregistry port=50051]" in path.read_text(encoding="utf-8")
