"""Core data types shared by the loader, the store and the gRPC layer.

Rules:
- source records are immutable once parsed
- store-facing records are JSON-serializable via to_dict()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class SecretRef:
    """Namespaced reference to a secret holding a registry token."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class RegistrySource:
    """One remote app-registry namespace to pull packages from."""

    endpoint: str
    registry_namespace: str
    secret: SecretRef | None = None

    def __str__(self) -> str:
        return f"{self.endpoint}|{self.registry_namespace}"


@dataclass(frozen=True)
class PackageRef:
    """One entry of the package allow-list (``name`` or ``name:release``)."""

    name: str
    release: str | None = None


@dataclass(frozen=True)
class RemotePackage:
    """A package as listed by an app registry."""

    source: RegistrySource
    repository: str
    release: str
    token: str | None = None

    @property
    def name(self) -> str:
        return f"{self.source.registry_namespace}/{self.repository}"


@dataclass
class PackageManifest:
    """A package document: channels keyed by name, pointing at their head CSV."""

    name: str
    channels: dict[str, str]
    default_channel: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("packageName must be a non-empty string")
        if not self.channels:
            raise ValueError(f"package {self.name} declares no channels")
        if self.default_channel is None and len(self.channels) == 1:
            self.default_channel = next(iter(self.channels))


@dataclass
class ManifestSet:
    """Decoded manifests from one or more downloaded archives."""

    packages: list[PackageManifest] = field(default_factory=list)
    csvs: list[dict[str, Any]] = field(default_factory=list)
    crds: list[dict[str, Any]] = field(default_factory=list)

    def merge(self, other: "ManifestSet") -> None:
        self.packages.extend(other.packages)
        self.csvs.extend(other.csvs)
        self.crds.extend(other.crds)

    def is_empty(self) -> bool:
        return not (self.packages or self.csvs or self.crds)


@dataclass(frozen=True)
class ChannelEntry:
    package_name: str
    channel_name: str
    bundle_name: str
    replaces: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "packageName": self.package_name,
            "channelName": self.channel_name,
            "bundleName": self.bundle_name,
            "replaces": self.replaces,
        }


@dataclass(frozen=True)
class Bundle:
    csv_name: str
    package_name: str
    channel_name: str
    csv_json: str
    objects: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "csvName": self.csv_name,
            "packageName": self.package_name,
            "channelName": self.channel_name,
            "csvJson": self.csv_json,
            "object": list(self.objects),
        }


@dataclass(frozen=True)
class Package:
    name: str
    channels: tuple[tuple[str, str], ...]
    default_channel_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "channels": [{"name": name, "csvName": csv} for name, csv in self.channels],
            "defaultChannelName": self.default_channel_name,
        }
