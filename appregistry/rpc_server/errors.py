"""gRPC status-aligned error helpers."""

from __future__ import annotations

import grpc


class RegistryError(Exception):
    def __init__(self, code: grpc.StatusCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def invalid_argument(message: str) -> RegistryError:
    return RegistryError(grpc.StatusCode.INVALID_ARGUMENT, message)


def not_found(message: str) -> RegistryError:
    return RegistryError(grpc.StatusCode.NOT_FOUND, message)


class ServeError(RuntimeError):
    """Raised when the server cannot bind or stops with a transport failure."""
