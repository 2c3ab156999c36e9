"""App-registry (CNR protocol) HTTP client.

Three calls are used by the downloader:

1. list the packages of a registry namespace
2. resolve a package release to its blob digest
3. fetch the blob (a gzipped tar of operator manifests)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

MEDIA_TYPE = "helm"


class AppRegistryError(RuntimeError):
    """Unified error for app-registry request failures."""


@dataclass(frozen=True)
class PackageListing:
    """One row of ``GET /api/v1/packages``."""

    name: str
    default: str | None = None
    releases: list[str] = field(default_factory=list)

    @property
    def repository(self) -> str:
        return self.name.split("/", 1)[-1]

    def latest_release(self) -> str | None:
        if self.default:
            return self.default
        return self.releases[-1] if self.releases else None


class AppRegistryClient:
    """Client for a single app-registry endpoint.

    ``token`` is sent verbatim in the ``Authorization`` header, the way quay
    expects its basic tokens.
    """

    DEFAULT_TIMEOUT = 60.0

    def __init__(
        self,
        endpoint: str,
        *,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.timeout = float(timeout if timeout is not None else self.DEFAULT_TIMEOUT)

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = token

        self._client = httpx.Client(
            base_url=self.endpoint,
            headers=headers,
            timeout=self.timeout,
            transport=transport,
            follow_redirects=True,
        )

    def __enter__(self) -> "AppRegistryClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def list_packages(self, namespace: str) -> list[PackageListing]:
        data = self._get_json("/api/v1/packages", params={"namespace": namespace})
        if not isinstance(data, list):
            raise AppRegistryError(f"[appregistry] unexpected package listing for namespace {namespace}")

        listings: list[PackageListing] = []
        for item in data:
            if not isinstance(item, dict) or not isinstance(item.get("name"), str):
                raise AppRegistryError(f"[appregistry] malformed package entry in namespace {namespace}")
            releases = item.get("releases") or []
            listings.append(
                PackageListing(
                    name=item["name"],
                    default=item.get("default") or None,
                    releases=[str(r) for r in releases],
                )
            )
        return listings

    def get_release_digest(self, namespace: str, repository: str, release: str) -> str:
        path = f"/api/v1/packages/{namespace}/{repository}/{release}/{MEDIA_TYPE}"
        data = self._get_json(path)

        # Some registries answer with a one-element list.
        if isinstance(data, list) and data:
            data = data[0]
        content = data.get("content") if isinstance(data, dict) else None
        digest = content.get("digest") if isinstance(content, dict) else None
        if not isinstance(digest, str) or not digest:
            raise AppRegistryError(f"[appregistry] no blob digest for {namespace}/{repository}:{release}")
        return digest

    def get_blob(self, namespace: str, repository: str, digest: str) -> bytes:
        path = f"/api/v1/packages/{namespace}/{repository}/blobs/sha256/{digest}"
        response = self._request(path)
        return response.content

    def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:
        response = self._request(path, params=params)
        try:
            return response.json()
        except ValueError as error:
            raise AppRegistryError(f"[appregistry] unexpected response format from {path}") from error

    def _request(self, path: str, params: dict[str, str] | None = None) -> httpx.Response:
        try:
            response = self._client.get(path, params=params)
        except httpx.TimeoutException as error:
            raise AppRegistryError(
                f"[appregistry] request to {self.endpoint} timed out after {self.timeout:.0f} seconds"
            ) from error
        except httpx.RequestError as error:
            raise AppRegistryError(f"[appregistry] request to {self.endpoint} failed: {error}") from error

        if response.status_code >= 400:
            raise AppRegistryError(
                f"[appregistry] API error (HTTP {response.status_code}) for {path}"
            )
        return response
