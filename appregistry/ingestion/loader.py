"""Loader: resolves sources, downloads their manifests and builds the store.

Usage::

    loader = Loader(kubeconfig, logger, legacy=specifiers.legacy)
    store = loader.load("bundles.db", specifiers.specifiers, "etcd,prometheus")

Any failure raises; a store is only returned when every source and package
was fetched and written.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Callable, Optional, Sequence

from appregistry.core.types import SecretRef
from appregistry.ingestion.downloader import AuthorizedSource, Downloader, DownloadError
from appregistry.ingestion.manifests import ManifestError
from appregistry.ingestion.parser import (
    OperatorSourceParser,
    RegistryStringParser,
    SourceParseError,
    SourceParser,
    parse_package_filter,
)
from appregistry.libs.appregistry import AppRegistryError
from appregistry.libs.kube import (
    KubeClient,
    KubeClientError,
    KubeConfigError,
    KubeCredentials,
    load_in_cluster,
    load_kubeconfig,
)
from appregistry.store import RegistryStore, StoreError, build_database

KubeClientFactory = Callable[[KubeCredentials], KubeClient]
TOKEN_KEY = "token"


class LoaderInitError(RuntimeError):
    """Raised when the loader's credentials context cannot be built."""


class LoadError(RuntimeError):
    """Raised when sources cannot be resolved, fetched or stored."""


class Loader:
    """One-shot loader bound to a credentials context and a specifier mode."""

    def __init__(
        self,
        kubeconfig: str,
        logger: logging.Logger | logging.LoggerAdapter,
        legacy: bool,
        *,
        downloader: Downloader | None = None,
        kube_client_factory: KubeClientFactory | None = None,
        in_cluster: Callable[[], Optional[KubeCredentials]] = load_in_cluster,
    ) -> None:
        self.logger = logger
        self.legacy = legacy
        factory = kube_client_factory or KubeClient

        try:
            credentials = load_kubeconfig(kubeconfig) if kubeconfig else in_cluster()
            self.kube = factory(credentials) if credentials is not None else None
        except (KubeConfigError, OSError) as error:
            raise LoaderInitError(f"invalid credentials context: {error}") from error

        if self.kube is None:
            self.logger.debug("no kubeconfig or in-cluster credentials, secrets cannot be read")

        self.parser: SourceParser = (
            OperatorSourceParser(self.kube) if legacy else RegistryStringParser()
        )
        self.downloader = downloader or Downloader(logger)
        self._tokens: dict[SecretRef, str] = {}

    def load(self, database_name: str, specifiers: Sequence[str], packages: str) -> RegistryStore:
        """Build the store; the API-server connection is closed afterwards."""

        try:
            return self._load(database_name, specifiers, packages)
        finally:
            self.close()

    def close(self) -> None:
        if self.kube is not None:
            self.kube.close()

    def _load(self, database_name: str, specifiers: Sequence[str], packages: str) -> RegistryStore:
        if not specifiers:
            raise LoadError("no sources specified, use --registry or --sources")

        try:
            refs = parse_package_filter(packages)
            sources = self.parser.parse(specifiers)
            self.logger.info(
                "resolved %d source(s): %s", len(sources), ", ".join(str(s) for s in sources)
            )
            authorized = [AuthorizedSource(source, self._token(source.secret)) for source in sources]

            manifests = self.downloader.download(authorized, refs)
            if manifests.is_empty():
                self.logger.warning("no operator manifests found in the specified source(s)")

            store = build_database(database_name, manifests)
        except (
            SourceParseError,
            KubeClientError,
            AppRegistryError,
            DownloadError,
            ManifestError,
            StoreError,
        ) as error:
            raise LoadError(str(error)) from error

        self.logger.info(
            "loaded %d package(s) into %s", len(manifests.packages), database_name
        )
        return store

    def _token(self, secret: SecretRef | None) -> str | None:
        if secret is None:
            return None
        if secret in self._tokens:
            return self._tokens[secret]
        if self.kube is None:
            raise SourceParseError(
                f"cannot read secret {secret}: no kubeconfig or in-cluster credentials"
            )

        obj = self.kube.get_secret(secret.namespace, secret.name)
        data = obj.get("data")
        encoded = data.get(TOKEN_KEY) if isinstance(data, dict) else None
        if not isinstance(encoded, str) or not encoded:
            raise SourceParseError(f"secret {secret} has no '{TOKEN_KEY}' key")
        try:
            token = base64.b64decode(encoded, validate=True).decode("utf-8").strip()
        except (binascii.Error, UnicodeDecodeError) as error:
            raise SourceParseError(f"secret {secret}: '{TOKEN_KEY}' is not valid base64") from error

        self._tokens[secret] = token
        return token
