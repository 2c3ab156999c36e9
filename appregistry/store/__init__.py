"""Registry store: SQLite writer and read-only query layer."""

from appregistry.store.sqlite_store import (
    RegistryStore,
    StoreError,
    StoreNotFound,
    build_database,
    provided_apis,
)

__all__ = ["RegistryStore", "StoreError", "StoreNotFound", "build_database", "provided_apis"]
