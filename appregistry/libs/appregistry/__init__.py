"""App-registry HTTP client exports."""

from appregistry.libs.appregistry.client import AppRegistryClient, AppRegistryError, PackageListing

__all__ = ["AppRegistryClient", "AppRegistryError", "PackageListing"]
