"""gRPC server assembly: bind, register services, serve.

The sequence mirrors the bootstrap states: ``bind_listener`` (LISTENING),
``assemble`` (registry, then health, then reflection) and ``serve``
(SERVING). ``wait`` blocks until ``stop`` is called from a signal handler or
another thread.
"""

from __future__ import annotations

import logging
from concurrent import futures
from typing import Optional

import grpc
from grpc_health.v1 import health, health_pb2, health_pb2_grpc
from grpc_reflection.v1alpha import reflection

from appregistry.observability.logger import get_logger
from appregistry.rpc_server.errors import ServeError
from appregistry.rpc_server.registry import SERVICE_NAME, RegistryService
from appregistry.store import RegistryStore

HEALTH_SERVICE_NAME = health_pb2.DESCRIPTOR.services_by_name["Health"].full_name
DEFAULT_MAX_WORKERS = 10


class RegistryServer:
    """Owns the gRPC server and its bound port."""

    def __init__(self, server: grpc.Server, address: str, port: int, logger: logging.Logger) -> None:
        self.grpc_server = server
        self.address = address
        self.port = port
        self.logger = logger
        self.health: Optional[health.HealthServicer] = None
        self.registry: Optional[RegistryService] = None
        self._started = False

    @property
    def services(self) -> tuple[str, ...]:
        return (SERVICE_NAME, HEALTH_SERVICE_NAME, reflection.SERVICE_NAME)

    def serve(self) -> None:
        if self.registry is None or self.health is None:
            raise ServeError("services must be registered before serving")
        try:
            self.grpc_server.start()
        except RuntimeError as e:
            raise ServeError(f"failed to serve: {e}") from e
        self._started = True
        self.logger.info("serving registry on %s", self.address)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the server stops; True if it stopped, False on timeout."""

        return not self.grpc_server.wait_for_termination(timeout)

    def stop(self, grace: float | None = None) -> None:
        if self.health is not None:
            self.health.enter_graceful_shutdown()
        self.grpc_server.stop(grace).wait()
        if self._started:
            self.logger.info("registry server stopped")
        self._started = False


def bind_listener(
    port: int,
    host: str = "[::]",
    *,
    max_workers: int = DEFAULT_MAX_WORKERS,
    logger: logging.Logger | None = None,
) -> RegistryServer:
    """Create the gRPC server and bind its TCP port."""

    log = logger or get_logger("appregistry.rpc")
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=max_workers))
    address = f"{host}:{port}"
    try:
        bound = server.add_insecure_port(address)
    except RuntimeError as e:
        server.stop(None)
        raise ServeError(f"failed to listen on {address}: {e}") from e
    if bound == 0:
        server.stop(None)
        raise ServeError(f"failed to listen on {address}")

    log.debug("bound %s (port %d)", address, bound)
    return RegistryServer(server, f"{host}:{bound}", bound, log)


def assemble(server: RegistryServer, store: RegistryStore) -> RegistryServer:
    """Register the registry and health services and enable reflection."""

    registry = RegistryService(store, logger=server.logger)
    server.grpc_server.add_generic_rpc_handlers((registry.generic_handler(),))
    server.registry = registry

    health_servicer = health.HealthServicer()
    health_servicer.set("", health_pb2.HealthCheckResponse.SERVING)
    health_servicer.set(SERVICE_NAME, health_pb2.HealthCheckResponse.SERVING)
    health_pb2_grpc.add_HealthServicer_to_server(health_servicer, server.grpc_server)
    server.health = health_servicer

    reflection.enable_server_reflection(server.services, server.grpc_server)
    return server
