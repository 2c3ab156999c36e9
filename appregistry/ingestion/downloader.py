"""Manifest downloader: sources + package filter -> decoded manifests."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from appregistry.core.types import ManifestSet, PackageRef, RegistrySource, RemotePackage
from appregistry.ingestion.manifests import decode_archive
from appregistry.libs.appregistry import AppRegistryClient, PackageListing

ClientFactory = Callable[[str, Optional[str]], AppRegistryClient]


class DownloadError(RuntimeError):
    """Raised when a requested package cannot be located or fetched."""


@dataclass(frozen=True)
class AuthorizedSource:
    source: RegistrySource
    token: str | None = None


def _default_client_factory(endpoint: str, token: str | None) -> AppRegistryClient:
    return AppRegistryClient(endpoint, token=token)


class Downloader:
    """Lists each source namespace, picks the requested releases and decodes them."""

    def __init__(
        self,
        logger: logging.Logger | logging.LoggerAdapter,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self.logger = logger
        self.client_factory = client_factory or _default_client_factory

    def download(
        self, sources: Sequence[AuthorizedSource], packages: Sequence[PackageRef]
    ) -> ManifestSet:
        available = self._list_available(sources)
        selected = self._select(available, packages)

        merged = ManifestSet()
        for remote in selected:
            merged.merge(self._fetch(remote))
        return merged

    def _list_available(
        self, sources: Sequence[AuthorizedSource]
    ) -> dict[str, tuple[AuthorizedSource, PackageListing]]:
        available: dict[str, tuple[AuthorizedSource, PackageListing]] = {}
        for entry in sources:
            namespace = entry.source.registry_namespace
            with self.client_factory(entry.source.endpoint, entry.token) as client:
                listings = client.list_packages(namespace)

            self.logger.info("found %d package(s) in %s", len(listings), entry.source)
            for listing in listings:
                if listing.repository in available:
                    self.logger.warning(
                        "package %s also found in %s, keeping %s",
                        listing.repository,
                        entry.source,
                        available[listing.repository][0].source,
                    )
                    continue
                available[listing.repository] = (entry, listing)
        return available

    def _select(
        self,
        available: dict[str, tuple[AuthorizedSource, PackageListing]],
        packages: Sequence[PackageRef],
    ) -> list[RemotePackage]:
        refs = list(packages) or [PackageRef(name=name) for name in sorted(available)]

        selected: list[RemotePackage] = []
        for ref in refs:
            found = available.get(ref.name)
            if found is None:
                raise DownloadError(f"package {ref.name} not found in any of the specified source(s)")
            entry, listing = found

            release = ref.release or listing.latest_release()
            if release is None:
                raise DownloadError(f"package {ref.name} has no release in {entry.source}")
            if ref.release and listing.releases and ref.release not in listing.releases:
                raise DownloadError(f"release {ref.release} of package {ref.name} not found in {entry.source}")

            selected.append(
                RemotePackage(
                    source=entry.source,
                    repository=listing.repository,
                    release=release,
                    token=entry.token,
                )
            )
        return selected

    def _fetch(self, remote: RemotePackage) -> ManifestSet:
        namespace = remote.source.registry_namespace
        self.logger.info("downloading %s:%s from %s", remote.name, remote.release, remote.source.endpoint)
        with self.client_factory(remote.source.endpoint, remote.token) as client:
            digest = client.get_release_digest(namespace, remote.repository, remote.release)
            blob = client.get_blob(namespace, remote.repository, digest)
        self.logger.debug("downloaded %s (%d bytes, digest %s)", remote.name, len(blob), digest)
        return decode_archive(blob, origin=f"{remote.name}:{remote.release}")
