"""SQLite-backed registry store.

The database is written once by ``build_database`` and then only read.
Every query opens its own read-only connection, so concurrent gRPC handlers
never share a connection.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Iterator, Mapping

from appregistry.core.types import Bundle, ChannelEntry, ManifestSet, Package, PackageManifest

SCHEMA = (
    """
    CREATE TABLE package (
        name TEXT PRIMARY KEY,
        default_channel TEXT
    )
    """,
    """
    CREATE TABLE channel (
        name TEXT NOT NULL,
        package_name TEXT NOT NULL,
        head_operatorbundle_name TEXT NOT NULL,
        PRIMARY KEY (name, package_name),
        FOREIGN KEY (package_name) REFERENCES package(name)
    )
    """,
    """
    CREATE TABLE operatorbundle (
        name TEXT PRIMARY KEY,
        csv TEXT NOT NULL,
        bundle TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE channel_entry (
        entry_id INTEGER PRIMARY KEY,
        channel_name TEXT NOT NULL,
        package_name TEXT NOT NULL,
        operatorbundle_name TEXT NOT NULL,
        replaces INTEGER,
        depth INTEGER NOT NULL,
        FOREIGN KEY (replaces) REFERENCES channel_entry(entry_id)
    )
    """,
    """
    CREATE TABLE api_provider (
        group_name TEXT NOT NULL,
        version TEXT NOT NULL,
        kind TEXT NOT NULL,
        channel_entry_id INTEGER NOT NULL,
        FOREIGN KEY (channel_entry_id) REFERENCES channel_entry(entry_id)
    )
    """,
    "CREATE INDEX idx_channel_entry_bundle ON channel_entry(operatorbundle_name)",
    "CREATE INDEX idx_api_provider_gvk ON api_provider(group_name, version, kind)",
)

_ENTRY_COLUMNS = """
    SELECT ce.package_name, ce.channel_name, ce.operatorbundle_name,
           COALESCE(rep.operatorbundle_name, ''), ce.depth
    FROM channel_entry ce
    LEFT JOIN channel_entry rep ON ce.replaces = rep.entry_id
"""


class StoreError(RuntimeError):
    """Raised when the store cannot be built or queried."""


class StoreNotFound(StoreError):
    """Raised when a query matches nothing."""


def _name_of(obj: Mapping[str, Any]) -> str:
    metadata = obj.get("metadata")
    name = metadata.get("name") if isinstance(metadata, Mapping) else None
    if not isinstance(name, str) or not name:
        raise StoreError(f"{obj.get('kind', 'object')} without metadata.name")
    return name


def _owned(csv: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    spec = csv.get("spec")
    section = spec.get(key) if isinstance(spec, Mapping) else None
    owned = section.get("owned") if isinstance(section, Mapping) else None
    return [item for item in owned or [] if isinstance(item, Mapping)]


def provided_apis(csv: Mapping[str, Any]) -> list[tuple[str, str, str]]:
    """(group, version, kind) for every CRD and API service the CSV owns."""

    apis: list[tuple[str, str, str]] = []
    for crd in _owned(csv, "customresourcedefinitions"):
        name = str(crd.get("name", ""))
        _, _, group = name.partition(".")
        if group and crd.get("version") and crd.get("kind"):
            apis.append((group, str(crd["version"]), str(crd["kind"])))
    for svc in _owned(csv, "apiservicedefinitions"):
        if svc.get("group") and svc.get("version") and svc.get("kind"):
            apis.append((str(svc["group"]), str(svc["version"]), str(svc["kind"])))
    return apis


def _replaces(csv: Mapping[str, Any]) -> str | None:
    spec = csv.get("spec")
    value = spec.get("replaces") if isinstance(spec, Mapping) else None
    return value if isinstance(value, str) and value else None


def _dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), sort_keys=True, default=str)


class _Writer:
    def __init__(self, conn: sqlite3.Connection, manifests: ManifestSet) -> None:
        self.conn = conn
        self.csvs: dict[str, dict[str, Any]] = {}
        self.crds: dict[str, dict[str, Any]] = {}
        for crd in manifests.crds:
            self.crds[_name_of(crd)] = crd
        for csv in manifests.csvs:
            self.csvs[_name_of(csv)] = csv
        self.packages = manifests.packages

    def write(self) -> None:
        for name, csv in self.csvs.items():
            objects = [_dumps(csv)]
            for owned in _owned(csv, "customresourcedefinitions"):
                crd = self.crds.get(str(owned.get("name", "")))
                if crd is not None:
                    objects.append(_dumps(crd))
            self.conn.execute(
                "INSERT INTO operatorbundle (name, csv, bundle) VALUES (?, ?, ?)",
                (name, _dumps(csv), json.dumps(objects)),
            )

        seen: set[str] = set()
        for package in self.packages:
            if package.name in seen:
                raise StoreError(f"package {package.name} defined more than once")
            seen.add(package.name)
            self._write_package(package)

    def _write_package(self, package: PackageManifest) -> None:
        if package.default_channel not in package.channels:
            raise StoreError(
                f"package {package.name}: default channel {package.default_channel!r} is not declared"
            )
        self.conn.execute(
            "INSERT INTO package (name, default_channel) VALUES (?, ?)",
            (package.name, package.default_channel),
        )
        for channel, head in package.channels.items():
            if head not in self.csvs:
                raise StoreError(f"package {package.name}: channel {channel} head {head} has no CSV")
            self.conn.execute(
                "INSERT INTO channel (name, package_name, head_operatorbundle_name) VALUES (?, ?, ?)",
                (channel, package.name, head),
            )
            self._write_channel_entries(package.name, channel, self._chain(package.name, head))

    def _chain(self, package: str, head: str) -> list[str]:
        chain: list[str] = []
        current: str | None = head
        while current is not None and current in self.csvs:
            if current in chain:
                raise StoreError(f"package {package}: replaces cycle at {current}")
            chain.append(current)
            current = _replaces(self.csvs[current])
        return chain

    def _write_channel_entries(self, package: str, channel: str, chain: list[str]) -> None:
        replaces_id: int | None = None
        for depth in range(len(chain) - 1, -1, -1):
            bundle = chain[depth]
            cursor = self.conn.execute(
                """
                INSERT INTO channel_entry
                    (channel_name, package_name, operatorbundle_name, replaces, depth)
                VALUES (?, ?, ?, ?, ?)
                """,
                (channel, package, bundle, replaces_id, depth),
            )
            replaces_id = cursor.lastrowid
            for group, version, kind in provided_apis(self.csvs[bundle]):
                self.conn.execute(
                    "INSERT INTO api_provider (group_name, version, kind, channel_entry_id) VALUES (?, ?, ?, ?)",
                    (group, version, kind, replaces_id),
                )


def build_database(db_path: str | Path, manifests: ManifestSet) -> "RegistryStore":
    """Write a fresh database at db_path and return a read-only store over it.

    An existing file at db_path is replaced. A failed build leaves no file behind.
    """

    path = Path(db_path)
    if path.parent and not path.parent.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
    path.unlink(missing_ok=True)

    conn = sqlite3.connect(str(path))
    try:
        for statement in SCHEMA:
            conn.execute(statement)
        _Writer(conn, manifests).write()
        conn.commit()
    except StoreError:
        conn.close()
        path.unlink(missing_ok=True)
        raise
    except sqlite3.Error as e:
        conn.close()
        path.unlink(missing_ok=True)
        raise StoreError(f"failed to write database {path}: {e}") from e
    conn.close()
    return RegistryStore(path)


class RegistryStore:
    """Read-only query layer over a built database."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        if not self.db_path.is_file():
            raise StoreError(f"database not found: {self.db_path}")
        self._uri = f"{self.db_path.resolve().as_uri()}?mode=ro"

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self._uri, uri=True)
        except sqlite3.Error as e:
            raise StoreError(f"cannot open database {self.db_path}: {e}") from e

    def _query(self, sql: str, params: tuple[Any, ...] = ()) -> list[tuple[Any, ...]]:
        conn = self._connect()
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"query failed: {e}") from e
        finally:
            conn.close()

    def _bundle(self, name: str, package: str, channel: str) -> Bundle:
        rows = self._query("SELECT csv, bundle FROM operatorbundle WHERE name = ?", (name,))
        if not rows:
            raise StoreNotFound(f"bundle {name} not found")
        csv_json, bundle_json = rows[0]
        return Bundle(
            csv_name=name,
            package_name=package,
            channel_name=channel,
            csv_json=csv_json,
            objects=tuple(json.loads(bundle_json)),
        )

    def list_packages(self) -> list[str]:
        return [row[0] for row in self._query("SELECT name FROM package ORDER BY name")]

    def get_package(self, name: str) -> Package:
        rows = self._query("SELECT default_channel FROM package WHERE name = ?", (name,))
        if not rows:
            raise StoreNotFound(f"package {name} not found")
        channels = self._query(
            "SELECT name, head_operatorbundle_name FROM channel WHERE package_name = ? ORDER BY name",
            (name,),
        )
        return Package(
            name=name,
            channels=tuple((row[0], row[1]) for row in channels),
            default_channel_name=rows[0][0] or "",
        )

    def get_bundle(self, package: str, channel: str, csv_name: str) -> Bundle:
        rows = self._query(
            """
            SELECT 1 FROM channel_entry
            WHERE package_name = ? AND channel_name = ? AND operatorbundle_name = ?
            """,
            (package, channel, csv_name),
        )
        if not rows:
            raise StoreNotFound(f"bundle {csv_name} not found in {package}/{channel}")
        return self._bundle(csv_name, package, channel)

    def get_bundle_for_channel(self, package: str, channel: str) -> Bundle:
        rows = self._query(
            "SELECT head_operatorbundle_name FROM channel WHERE package_name = ? AND name = ?",
            (package, channel),
        )
        if not rows:
            raise StoreNotFound(f"channel {package}/{channel} not found")
        return self._bundle(rows[0][0], package, channel)

    def _entries(self, where: str, params: tuple[Any, ...]) -> Iterator[tuple[ChannelEntry, int]]:
        for pkg, channel, bundle, replaces, depth in self._query(
            f"{_ENTRY_COLUMNS} {where} ORDER BY ce.package_name, ce.channel_name, ce.depth", params
        ):
            yield ChannelEntry(pkg, channel, bundle, replaces), depth

    def get_channel_entries_that_replace(self, name: str) -> list[ChannelEntry]:
        return [entry for entry, _ in self._entries("WHERE rep.operatorbundle_name = ?", (name,))]

    def get_bundle_that_replaces(self, name: str, package: str, channel: str) -> Bundle:
        for entry, _ in self._entries(
            "WHERE rep.operatorbundle_name = ? AND ce.package_name = ? AND ce.channel_name = ?",
            (name, package, channel),
        ):
            return self._bundle(entry.bundle_name, package, channel)
        raise StoreNotFound(f"no bundle replaces {name} in {package}/{channel}")

    def _providing(self, group: str, version: str, kind: str) -> Iterator[tuple[ChannelEntry, int]]:
        return self._entries(
            """
            JOIN api_provider ap ON ap.channel_entry_id = ce.entry_id
            WHERE ap.group_name = ? AND ap.version = ? AND ap.kind = ?
            """,
            (group, version, kind),
        )

    def get_channel_entries_that_provide(self, group: str, version: str, kind: str) -> list[ChannelEntry]:
        return [entry for entry, _ in self._providing(group, version, kind)]

    def get_latest_channel_entries_that_provide(
        self, group: str, version: str, kind: str
    ) -> list[ChannelEntry]:
        latest: dict[tuple[str, str], tuple[ChannelEntry, int]] = {}
        for entry, depth in self._providing(group, version, kind):
            key = (entry.package_name, entry.channel_name)
            if key not in latest or depth < latest[key][1]:
                latest[key] = (entry, depth)
        return [entry for entry, _ in latest.values()]

    def get_default_bundle_that_provides(self, group: str, version: str, kind: str) -> Bundle:
        for entry in self.get_latest_channel_entries_that_provide(group, version, kind):
            package = self.get_package(entry.package_name)
            if entry.channel_name == package.default_channel_name:
                return self._bundle(entry.bundle_name, entry.package_name, entry.channel_name)
        raise StoreNotFound(f"no default bundle provides {group}/{version}/{kind}")
