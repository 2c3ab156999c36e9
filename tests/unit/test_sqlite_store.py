"""Tests for the SQLite registry store: build and query."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from appregistry.core.types import ChannelEntry, ManifestSet, PackageManifest
from appregistry.store import RegistryStore, StoreError, StoreNotFound, build_database, provided_apis

ETCD_GVK = ("etcd.database.coreos.com", "v1beta2", "EtcdCluster")


class TestBuild:
    def test_replaces_existing_file(self, tmp_path: Path, manifests: ManifestSet) -> None:
        db_path = tmp_path / "bundles.db"
        db_path.write_bytes(b"stale content")

        store = build_database(db_path, manifests)

        assert store.list_packages() == ["etcd", "prometheus"]

    def test_store_is_read_only(self, store: RegistryStore) -> None:
        conn = sqlite3.connect(store._uri, uri=True)
        try:
            with pytest.raises(sqlite3.OperationalError):
                conn.execute("DELETE FROM package")
        finally:
            conn.close()

    def test_missing_head_csv_removes_partial_file(self, tmp_path: Path) -> None:
        db_path = tmp_path / "bundles.db"
        broken = ManifestSet(packages=[PackageManifest("ghost", {"alpha": "ghost.v1"})])

        with pytest.raises(StoreError, match="has no CSV"):
            build_database(db_path, broken)
        assert not db_path.exists()

    def test_duplicate_package(self, tmp_path: Path, manifests: ManifestSet) -> None:
        manifests.packages.append(manifests.packages[0])
        with pytest.raises(StoreError, match="more than once"):
            build_database(tmp_path / "bundles.db", manifests)

    def test_empty_manifests_give_empty_store(self, tmp_path: Path) -> None:
        store = build_database(tmp_path / "empty.db", ManifestSet())
        assert store.list_packages() == []

    def test_provided_apis(self, manifests: ManifestSet) -> None:
        csv = next(c for c in manifests.csvs if c["metadata"]["name"] == "etcdoperator.v0.9.2")
        assert provided_apis(csv) == [ETCD_GVK]


class TestQueries:
    def test_get_package(self, store: RegistryStore) -> None:
        package = store.get_package("etcd")

        assert package.to_dict() == {
            "name": "etcd",
            "channels": [{"name": "alpha", "csvName": "etcdoperator.v0.9.2"}],
            "defaultChannelName": "alpha",
        }

    def test_unknown_package(self, store: RegistryStore) -> None:
        with pytest.raises(StoreNotFound):
            store.get_package("nope")

    def test_bundle_for_channel_includes_owned_crds(self, store: RegistryStore) -> None:
        bundle = store.get_bundle_for_channel("etcd", "alpha")

        assert bundle.csv_name == "etcdoperator.v0.9.2"
        assert json.loads(bundle.csv_json)["spec"]["replaces"] == "etcdoperator.v0.9.0"
        kinds = [json.loads(obj)["kind"] for obj in bundle.objects]
        assert kinds == ["ClusterServiceVersion", "CustomResourceDefinition"]

    def test_get_bundle_checks_channel_membership(self, store: RegistryStore) -> None:
        assert store.get_bundle("etcd", "alpha", "etcdoperator.v0.9.0").csv_name == "etcdoperator.v0.9.0"
        with pytest.raises(StoreNotFound):
            store.get_bundle("prometheus", "preview", "etcdoperator.v0.9.0")

    def test_replacement_chain(self, store: RegistryStore) -> None:
        assert store.get_channel_entries_that_replace("etcdoperator.v0.9.0") == [
            ChannelEntry("etcd", "alpha", "etcdoperator.v0.9.2", "etcdoperator.v0.9.0")
        ]
        bundle = store.get_bundle_that_replaces("etcdoperator.v0.9.0", "etcd", "alpha")
        assert bundle.csv_name == "etcdoperator.v0.9.2"
        with pytest.raises(StoreNotFound):
            store.get_bundle_that_replaces("etcdoperator.v0.9.2", "etcd", "alpha")

    def test_entries_that_provide(self, store: RegistryStore) -> None:
        entries = store.get_channel_entries_that_provide(*ETCD_GVK)
        assert [e.bundle_name for e in entries] == ["etcdoperator.v0.9.2", "etcdoperator.v0.9.0"]

        latest = store.get_latest_channel_entries_that_provide(*ETCD_GVK)
        assert [e.bundle_name for e in latest] == ["etcdoperator.v0.9.2"]

    def test_default_bundle_that_provides(self, store: RegistryStore) -> None:
        bundle = store.get_default_bundle_that_provides("monitoring.coreos.com", "v1", "Prometheus")
        assert bundle.package_name == "prometheus"
        assert bundle.channel_name == "preview"

        with pytest.raises(StoreNotFound):
            store.get_default_bundle_that_provides("example.com", "v1", "Nothing")

    def test_missing_database(self, tmp_path: Path) -> None:
        with pytest.raises(StoreError, match="database not found"):
            RegistryStore(tmp_path / "absent.db")
