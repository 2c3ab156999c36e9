"""Tests for the Loader: credentials context, source resolution and store build."""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Any

import pytest

from appregistry.ingestion import Downloader, Loader, LoadError, LoaderInitError
from appregistry.libs.kube import KubeCredentials
from tests.conftest import FakeRegistry

ENDPOINT = "https://quay.example/cnr"


class FakeKube:
    def __init__(self, credentials: KubeCredentials | None = None) -> None:
        self.secrets: dict[tuple[str, str], dict[str, Any]] = {}
        self.sources: dict[tuple[str, str], dict[str, Any]] = {}
        self.closed = False

    def get_secret(self, namespace: str, name: str) -> dict[str, Any]:
        return self.secrets[(namespace, name)]

    def get_operator_source(self, namespace: str, name: str) -> dict[str, Any]:
        return self.sources[(namespace, name)]

    def close(self) -> None:
        self.closed = True


def _loader(
    fake_registry: FakeRegistry,
    logger: logging.Logger,
    *,
    legacy: bool = False,
    kube: FakeKube | None = None,
) -> Loader:
    return Loader(
        "",
        logger,
        legacy,
        downloader=Downloader(logger, client_factory=fake_registry.client_factory),
        kube_client_factory=lambda _creds: kube,
        in_cluster=lambda: KubeCredentials(server="http://kube.local") if kube else None,
    )


class TestConstruction:
    def test_invalid_kubeconfig_fails(self, tmp_path: Path, test_logger: logging.Logger) -> None:
        with pytest.raises(LoaderInitError, match="invalid credentials context"):
            Loader(str(tmp_path / "missing-kubeconfig"), test_logger, legacy=True)

    def test_invalid_certificate_authority_data_fails(
        self, tmp_path: Path, test_logger: logging.Logger
    ) -> None:
        config = tmp_path / "config"
        config.write_text(
            "current-context: dev\n"
            "contexts: [{name: dev, context: {cluster: local}}]\n"
            "clusters: [{name: local, cluster: {server: 'https://kube.local', "
            "certificate-authority-data: 'not*base64!'}}]\n",
            encoding="utf-8",
        )

        with pytest.raises(LoaderInitError, match="certificate-authority-data"):
            Loader(str(config), test_logger, legacy=False)

    def test_no_credentials_is_allowed(self, test_logger: logging.Logger) -> None:
        loader = Loader("", test_logger, legacy=False, in_cluster=lambda: None)
        assert loader.kube is None


class TestLoad:
    def test_modern_sources_with_filter(
        self, tmp_path: Path, fake_registry: FakeRegistry, test_logger: logging.Logger
    ) -> None:
        loader = _loader(fake_registry, test_logger)

        store = loader.load(str(tmp_path / "bundles.db"), [f"{ENDPOINT}|community|"], "etcd")

        assert store.list_packages() == ["etcd"]
        assert (tmp_path / "bundles.db").is_file()

    def test_empty_filter_loads_everything(
        self, tmp_path: Path, fake_registry: FakeRegistry, test_logger: logging.Logger
    ) -> None:
        store = _loader(fake_registry, test_logger).load(
            str(tmp_path / "bundles.db"), [f"{ENDPOINT}|community|"], ""
        )
        assert store.list_packages() == ["etcd", "prometheus"]

    def test_secret_token_is_sent(
        self, tmp_path: Path, fake_registry: FakeRegistry, test_logger: logging.Logger
    ) -> None:
        kube = FakeKube()
        kube.secrets[("marketplace", "quay")] = {
            "data": {"token": base64.b64encode(b"basic c2VjcmV0").decode("ascii")}
        }

        _loader(fake_registry, test_logger, kube=kube).load(
            str(tmp_path / "bundles.db"), [f"{ENDPOINT}|community|marketplace/quay"], "prometheus"
        )

        assert fake_registry.requests
        assert all(r.headers["Authorization"] == "basic c2VjcmV0" for r in fake_registry.requests)

    def test_legacy_sources_read_operator_source(
        self, tmp_path: Path, fake_registry: FakeRegistry, test_logger: logging.Logger
    ) -> None:
        kube = FakeKube()
        kube.sources[("marketplace", "community")] = {
            "spec": {"endpoint": ENDPOINT, "registryNamespace": "community"}
        }

        store = _loader(fake_registry, test_logger, legacy=True, kube=kube).load(
            str(tmp_path / "bundles.db"), ["marketplace/community"], "etcd"
        )

        assert store.get_package("etcd").default_channel_name == "alpha"
        assert kube.closed

    def test_kube_client_closed_after_failed_load(
        self, tmp_path: Path, fake_registry: FakeRegistry, test_logger: logging.Logger
    ) -> None:
        kube = FakeKube()
        kube.sources[("marketplace", "community")] = {"spec": {"endpoint": ENDPOINT}}

        with pytest.raises(LoadError, match="registryNamespace"):
            _loader(fake_registry, test_logger, legacy=True, kube=kube).load(
                str(tmp_path / "bundles.db"), ["marketplace/community"], ""
            )
        assert kube.closed

    def test_empty_specifiers_fetch_nothing(
        self, tmp_path: Path, fake_registry: FakeRegistry, test_logger: logging.Logger
    ) -> None:
        with pytest.raises(LoadError, match="no sources specified"):
            _loader(fake_registry, test_logger).load(str(tmp_path / "bundles.db"), [], "")

        assert fake_registry.requests == []
        assert not (tmp_path / "bundles.db").exists()

    def test_unknown_package_fails(
        self, tmp_path: Path, fake_registry: FakeRegistry, test_logger: logging.Logger
    ) -> None:
        with pytest.raises(LoadError, match="not found in any"):
            _loader(fake_registry, test_logger).load(
                str(tmp_path / "bundles.db"), [f"{ENDPOINT}|community|"], "etcd,vault"
            )
        assert not (tmp_path / "bundles.db").exists()

    def test_network_failure_fails_whole_load(
        self, tmp_path: Path, fake_registry: FakeRegistry, test_logger: logging.Logger
    ) -> None:
        fake_registry.fail_blobs = True

        with pytest.raises(LoadError, match="HTTP 500"):
            _loader(fake_registry, test_logger).load(
                str(tmp_path / "bundles.db"), [f"{ENDPOINT}|community|"], ""
            )
        assert not (tmp_path / "bundles.db").exists()

    def test_malformed_specifier_fails(
        self, tmp_path: Path, fake_registry: FakeRegistry, test_logger: logging.Logger
    ) -> None:
        with pytest.raises(LoadError, match="not in expected format"):
            _loader(fake_registry, test_logger).load(
                str(tmp_path / "bundles.db"), [f"{ENDPOINT}|community|", "ns/name"], ""
            )
        assert fake_registry.requests == []

    def test_secret_without_credentials(
        self, tmp_path: Path, fake_registry: FakeRegistry, test_logger: logging.Logger
    ) -> None:
        with pytest.raises(LoadError, match="cannot read secret"):
            _loader(fake_registry, test_logger).load(
                str(tmp_path / "bundles.db"), [f"{ENDPOINT}|community|marketplace/quay"], ""
            )
