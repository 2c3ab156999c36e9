"""``api.Registry`` gRPC service over a RegistryStore.

Messages are JSON objects with camelCase field names. Requests are decoded
inside the handlers so malformed bodies surface as INVALID_ARGUMENT rather
than a transport failure.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Iterable, Iterator

import grpc

from appregistry.observability.logger import get_logger
from appregistry.rpc_server.errors import RegistryError, invalid_argument, not_found
from appregistry.store import RegistryStore, StoreError, StoreNotFound

SERVICE_NAME = "api.Registry"

Params = dict[str, Any]
UnaryMethod = Callable[[Params], dict[str, Any]]
StreamMethod = Callable[[Params], Iterable[dict[str, Any]]]


def decode_request(data: bytes) -> Params:
    if not data:
        return {}
    try:
        obj = json.loads(data)
    except (ValueError, UnicodeDecodeError) as e:
        raise invalid_argument("request body is not valid JSON") from e
    if not isinstance(obj, dict):
        raise invalid_argument("request body must be a JSON object")
    return obj


def encode_response(message: dict[str, Any]) -> bytes:
    return json.dumps(message, ensure_ascii=False).encode("utf-8")


def _require(params: Params, *keys: str) -> list[str]:
    values: list[str] = []
    for key in keys:
        value = params.get(key)
        if not isinstance(value, str) or not value.strip():
            raise invalid_argument(f"{key} must be a non-empty string")
        values.append(value)
    return values


class RegistryService:
    """Registry query service backed by a read-only store."""

    def __init__(self, store: RegistryStore, logger: logging.Logger | None = None):
        self.store = store
        self.logger = logger or get_logger("appregistry.rpc")

        self._unary: dict[str, UnaryMethod] = {
            "GetPackage": self._get_package,
            "GetBundle": self._get_bundle,
            "GetBundleForChannel": self._get_bundle_for_channel,
            "GetBundleThatReplaces": self._get_bundle_that_replaces,
            "GetDefaultBundleThatProvides": self._get_default_bundle_that_provides,
        }
        self._stream: dict[str, StreamMethod] = {
            "ListPackages": self._list_packages,
            "GetChannelEntriesThatReplace": self._get_channel_entries_that_replace,
            "GetChannelEntriesThatProvide": self._get_channel_entries_that_provide,
            "GetLatestChannelEntriesThatProvide": self._get_latest_channel_entries_that_provide,
        }

    @property
    def method_names(self) -> list[str]:
        return sorted([*self._unary, *self._stream])

    def _list_packages(self, params: Params) -> Iterable[dict[str, Any]]:
        return [{"name": name} for name in self.store.list_packages()]

    def _get_package(self, params: Params) -> dict[str, Any]:
        (name,) = _require(params, "name")
        return self.store.get_package(name).to_dict()

    def _get_bundle(self, params: Params) -> dict[str, Any]:
        pkg, channel, csv = _require(params, "pkgName", "channelName", "csvName")
        return self.store.get_bundle(pkg, channel, csv).to_dict()

    def _get_bundle_for_channel(self, params: Params) -> dict[str, Any]:
        pkg, channel = _require(params, "pkgName", "channelName")
        return self.store.get_bundle_for_channel(pkg, channel).to_dict()

    def _get_channel_entries_that_replace(self, params: Params) -> Iterable[dict[str, Any]]:
        (name,) = _require(params, "name")
        return [e.to_dict() for e in self.store.get_channel_entries_that_replace(name)]

    def _get_bundle_that_replaces(self, params: Params) -> dict[str, Any]:
        name, pkg, channel = _require(params, "name", "pkgName", "channelName")
        return self.store.get_bundle_that_replaces(name, pkg, channel).to_dict()

    def _get_channel_entries_that_provide(self, params: Params) -> Iterable[dict[str, Any]]:
        group, version, kind = _require(params, "group", "version", "kind")
        return [e.to_dict() for e in self.store.get_channel_entries_that_provide(group, version, kind)]

    def _get_latest_channel_entries_that_provide(self, params: Params) -> Iterable[dict[str, Any]]:
        group, version, kind = _require(params, "group", "version", "kind")
        entries = self.store.get_latest_channel_entries_that_provide(group, version, kind)
        return [e.to_dict() for e in entries]

    def _get_default_bundle_that_provides(self, params: Params) -> dict[str, Any]:
        group, version, kind = _require(params, "group", "version", "kind")
        return self.store.get_default_bundle_that_provides(group, version, kind).to_dict()

    def handle_request(self, method: str, params: Params) -> Any:
        """Dispatch one call; stream methods return a list of messages."""

        try:
            if method in self._unary:
                return self._unary[method](params)
            if method in self._stream:
                return list(self._stream[method](params))
        except StoreNotFound as e:
            raise not_found(str(e)) from e
        except StoreError as e:
            self.logger.exception("store query failed in %s", method)
            raise RegistryError(grpc.StatusCode.INTERNAL, str(e)) from e
        raise RegistryError(grpc.StatusCode.UNIMPLEMENTED, f"Method not found: {method}")

    def _unary_handler(self, method: str) -> Callable[[bytes, grpc.ServicerContext], dict[str, Any]]:
        def handler(request: bytes, context: grpc.ServicerContext) -> dict[str, Any]:
            try:
                return self.handle_request(method, decode_request(request))
            except RegistryError as e:
                context.abort(e.code, e.message)
                raise

        return handler

    def _stream_handler(
        self, method: str
    ) -> Callable[[bytes, grpc.ServicerContext], Iterator[dict[str, Any]]]:
        def handler(request: bytes, context: grpc.ServicerContext) -> Iterator[dict[str, Any]]:
            try:
                messages = self.handle_request(method, decode_request(request))
            except RegistryError as e:
                context.abort(e.code, e.message)
                raise
            yield from messages

        return handler

    def generic_handler(self) -> grpc.GenericRpcHandler:
        handlers: dict[str, grpc.RpcMethodHandler] = {}
        for method in self._unary:
            handlers[method] = grpc.unary_unary_rpc_method_handler(
                self._unary_handler(method), response_serializer=encode_response
            )
        for method in self._stream:
            handlers[method] = grpc.unary_stream_rpc_method_handler(
                self._stream_handler(method), response_serializer=encode_response
            )
        return grpc.method_handlers_generic_handler(SERVICE_NAME, handlers)
