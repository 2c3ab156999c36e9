"""Server bootstrap sequence.

States advance strictly forward::

    INIT -> LOG_SETUP_DONE -> CONFIG_READ -> SOURCES_RESOLVED -> LOADED
         -> LISTENING -> SERVING

Any failure moves to TERMINATED and raises BootstrapError. The bootstrap
never exits the process; the CLI decides that.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Union

from appregistry.core.settings import ServerSettings, SettingsError, parse_port
from appregistry.core.sources import SourceSpecifierSet, resolve
from appregistry.ingestion import Loader, LoadError, LoaderInitError
from appregistry.observability.logger import add_termination_log_handler, get_logger, with_fields
from appregistry.rpc_server import RegistryServer, ServeError, assemble, bind_listener
from appregistry.store import RegistryStore

Log = Union[logging.Logger, logging.LoggerAdapter]
LoaderFactory = Callable[[str, Log, bool], Loader]
ListenerFactory = Callable[[int], RegistryServer]
Assembler = Callable[[RegistryServer, RegistryStore], RegistryServer]


class BootstrapState(str, Enum):
    INIT = "init"
    LOG_SETUP_DONE = "log_setup_done"
    CONFIG_READ = "config_read"
    SOURCES_RESOLVED = "sources_resolved"
    LOADED = "loaded"
    LISTENING = "listening"
    SERVING = "serving"
    TERMINATED = "terminated"


class BootstrapError(RuntimeError):
    """A fatal bootstrap failure; ``state`` is the last state reached."""

    def __init__(self, state: BootstrapState, message: str) -> None:
        super().__init__(message)
        self.state = state


@dataclass
class Bootstrap:
    """Wires settings, loader and gRPC server together in order."""

    settings: ServerSettings
    loader_factory: LoaderFactory = Loader
    listener_factory: ListenerFactory = bind_listener
    assembler: Assembler = assemble

    state: BootstrapState = field(default=BootstrapState.INIT, init=False)
    history: list[BootstrapState] = field(default_factory=lambda: [BootstrapState.INIT], init=False)
    logger: Log = field(default_factory=get_logger, init=False)
    sources: SourceSpecifierSet | None = field(default=None, init=False)
    store: RegistryStore | None = field(default=None, init=False)
    server: RegistryServer | None = field(default=None, init=False)

    def start(self) -> RegistryServer:
        """Run every step up to SERVING and return the running server."""

        try:
            self._setup_logging()
            port = self._read_config()
            self._resolve_sources()
            self._load()
            self._listen(port)
            self._serve()
        except BootstrapError:
            self._advance(BootstrapState.TERMINATED)
            raise
        except Exception as exc:  # noqa: BLE001
            failed_at = self.state
            self._advance(BootstrapState.TERMINATED)
            raise BootstrapError(failed_at, f"unexpected error - {exc}") from exc

        assert self.server is not None
        return self.server

    def run(self) -> None:
        """start() and block until the server is stopped."""

        self.start().wait()

    def _advance(self, state: BootstrapState) -> None:
        self.state = state
        self.history.append(state)

    def _setup_logging(self) -> None:
        get_logger(level=self.settings.log_level)
        try:
            add_termination_log_handler(self.settings.termination_log)
        except OSError as e:
            raise BootstrapError(
                self.state, f"cannot open termination log {self.settings.termination_log}: {e}"
            ) from e
        self._advance(BootstrapState.LOG_SETUP_DONE)

    def _read_config(self) -> int:
        try:
            port = parse_port(self.settings.port)
        except SettingsError as e:
            raise BootstrapError(self.state, str(e)) from e
        self.logger = with_fields(get_logger(), type="appregistry", port=port)
        self._advance(BootstrapState.CONFIG_READ)
        return port

    def _resolve_sources(self) -> None:
        self.sources = resolve(self.settings.sources, self.settings.registry)
        if self.sources.legacy and self.settings.registry:
            self.logger.warning(
                "--sources takes precedence, ignoring %d --registry specifier(s)",
                len(self.settings.registry),
            )
        self.logger.debug(
            "sources resolved (legacy=%s): %s", self.sources.legacy, list(self.sources.specifiers)
        )
        self._advance(BootstrapState.SOURCES_RESOLVED)

    def _load(self) -> None:
        assert self.sources is not None
        try:
            loader = self.loader_factory(self.settings.kubeconfig, self.logger, self.sources.legacy)
        except LoaderInitError as e:
            raise BootstrapError(self.state, f"error initializing - {e}") from e

        try:
            self.store = loader.load(
                self.settings.database, list(self.sources.specifiers), self.settings.packages
            )
        except LoadError as e:
            raise BootstrapError(
                self.state, f"error loading manifest from remote registry - {e}"
            ) from e
        self._advance(BootstrapState.LOADED)

    def _listen(self, port: int) -> None:
        try:
            self.server = self.listener_factory(port)
        except ServeError as e:
            raise BootstrapError(self.state, f"failed to listen: {e}") from e
        self._advance(BootstrapState.LISTENING)

    def _serve(self) -> None:
        assert self.server is not None and self.store is not None
        try:
            self.assembler(self.server, self.store)
            self.logger.info("serving registry")
            self.server.serve()
        except ServeError as e:
            raise BootstrapError(self.state, f"failed to serve: {e}") from e
        self._advance(BootstrapState.SERVING)
