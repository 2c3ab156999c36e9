"""Shared fixtures: manifest archives, a fake app registry and a built store."""

from __future__ import annotations

import hashlib
import io
import logging
import tarfile
from pathlib import Path

import httpx
import pytest

from appregistry.core.types import ManifestSet
from appregistry.ingestion.manifests import decode_archive
from appregistry.libs.appregistry import AppRegistryClient
from appregistry.store import RegistryStore, build_database

FIXTURES_DIR = Path(__file__).parent / "fixtures" / "manifests"


def make_archive(root: Path) -> bytes:
    """tar.gz every file under root (or root itself if it is a file)."""

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        if root.is_file():
            archive.add(root, arcname=root.name)
        else:
            for path in sorted(root.rglob("*")):
                if path.is_file():
                    archive.add(path, arcname=str(Path(root.name) / path.relative_to(root)))
    return buffer.getvalue()


class FakeRegistry:
    """In-memory app registry served through httpx.MockTransport."""

    def __init__(self, namespace: str, packages: dict[str, dict[str, bytes]]) -> None:
        self.namespace = namespace
        self.packages = packages
        self.requests: list[httpx.Request] = []
        self.fail_blobs = False
        self.transport = httpx.MockTransport(self._handle)

    def client_factory(self, endpoint: str, token: str | None) -> AppRegistryClient:
        return AppRegistryClient(endpoint, token=token, transport=self.transport)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.strip("/").split("/")
        # Drop the endpoint's own path prefix (e.g. /cnr).
        if "api" in parts:
            parts = parts[parts.index("api"):]

        if parts == ["api", "v1", "packages"]:
            namespace = request.url.params.get("namespace")
            if namespace != self.namespace:
                return httpx.Response(200, json=[])
            return httpx.Response(
                200,
                json=[
                    {"name": f"{namespace}/{repo}", "default": list(releases)[-1], "releases": list(releases)}
                    for repo, releases in self.packages.items()
                ],
            )

        if len(parts) == 7 and parts[6] == "helm":
            blob = self.packages.get(parts[4], {}).get(parts[5])
            if blob is None:
                return httpx.Response(404, json={"error": "release not found"})
            return httpx.Response(
                200, json={"content": {"digest": hashlib.sha256(blob).hexdigest()}}
            )

        if len(parts) == 8 and parts[5] == "blobs":
            if self.fail_blobs:
                return httpx.Response(500, text="storage unavailable")
            for blob in self.packages.get(parts[4], {}).values():
                if hashlib.sha256(blob).hexdigest() == parts[7]:
                    return httpx.Response(200, content=blob)
            return httpx.Response(404)

        return httpx.Response(404)


@pytest.fixture
def etcd_archive() -> bytes:
    return make_archive(FIXTURES_DIR / "etcd")


@pytest.fixture
def prometheus_archive() -> bytes:
    return make_archive(FIXTURES_DIR / "prometheus.bundle.yaml")


@pytest.fixture
def fake_registry(etcd_archive: bytes, prometheus_archive: bytes) -> FakeRegistry:
    return FakeRegistry(
        "community",
        {
            "etcd": {"0.9.0": etcd_archive, "0.9.2": etcd_archive},
            "prometheus": {"0.22.2": prometheus_archive},
        },
    )


@pytest.fixture
def manifests(etcd_archive: bytes, prometheus_archive: bytes) -> ManifestSet:
    merged = decode_archive(etcd_archive, "etcd")
    merged.merge(decode_archive(prometheus_archive, "prometheus"))
    return merged


@pytest.fixture
def store(tmp_path: Path, manifests: ManifestSet) -> RegistryStore:
    return build_database(tmp_path / "bundles.db", manifests)


@pytest.fixture
def test_logger() -> logging.Logger:
    return logging.getLogger("appregistry.test")
