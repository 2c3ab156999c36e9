"""gRPC surface: registry service, health service and reflection."""

from appregistry.rpc_server.errors import RegistryError, ServeError
from appregistry.rpc_server.registry import SERVICE_NAME, RegistryService
from appregistry.rpc_server.server import RegistryServer, assemble, bind_listener

__all__ = [
    "RegistryError",
    "ServeError",
    "SERVICE_NAME",
    "RegistryService",
    "RegistryServer",
    "assemble",
    "bind_listener",
]
