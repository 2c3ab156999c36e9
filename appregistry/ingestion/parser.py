"""Source and package-filter parsers.

Legacy specifiers (``namespace/name``) point at OperatorSource objects and
need the API server to be resolved; modern specifiers
(``baseURL|registryNamespace|secretNamespace/secretName``) carry everything
inline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Protocol, Sequence

from appregistry.core.types import PackageRef, RegistrySource, SecretRef


class SourceParseError(ValueError):
    """Raised when a specifier cannot be turned into a RegistrySource."""


class OperatorSourceReader(Protocol):
    def get_operator_source(self, namespace: str, name: str) -> dict[str, Any]: ...


def _split_namespaced(value: str, what: str) -> tuple[str, str]:
    parts = value.split("/")
    if len(parts) != 2 or not all(p.strip() for p in parts):
        raise SourceParseError(f"{what} '{value}' is not in expected format {{namespace}}/{{name}}")
    return parts[0].strip(), parts[1].strip()


class SourceParser(ABC):
    """Turns specifiers into RegistrySource records."""

    def parse(self, specifiers: Sequence[str]) -> list[RegistrySource]:
        sources: list[RegistrySource] = []
        seen: set[RegistrySource] = set()
        for specifier in specifiers:
            source = self.parse_one(specifier)
            if source in seen:
                continue
            seen.add(source)
            sources.append(source)
        return sources

    @abstractmethod
    def parse_one(self, specifier: str) -> RegistrySource:
        """Parse a single specifier."""


class RegistryStringParser(SourceParser):
    """``baseURL|registryNamespace|secretNamespace/secretName``; the secret may be empty."""

    def parse_one(self, specifier: str) -> RegistrySource:
        values = specifier.split("|")
        if len(values) != 3:
            raise SourceParseError(
                f"specified source ({specifier}) is not in expected format "
                "{base url}|{registry namespace}|{secret namespace/secret name}"
            )

        endpoint, namespace, secret = (v.strip() for v in values)
        if not endpoint:
            raise SourceParseError(f"specified source ({specifier}) has no base url")
        if not namespace:
            raise SourceParseError(f"specified source ({specifier}) has no registry namespace")

        secret_ref = None
        if secret:
            secret_ns, secret_name = _split_namespaced(secret, "secret")
            secret_ref = SecretRef(namespace=secret_ns, name=secret_name)

        return RegistrySource(endpoint=endpoint.rstrip("/"), registry_namespace=namespace, secret=secret_ref)


class OperatorSourceParser(SourceParser):
    """``namespace/name`` of an OperatorSource object."""

    def __init__(self, reader: OperatorSourceReader | None) -> None:
        self.reader = reader

    def parse_one(self, specifier: str) -> RegistrySource:
        namespace, name = _split_namespaced(specifier, "OperatorSource")
        if self.reader is None:
            raise SourceParseError(
                f"cannot resolve OperatorSource {specifier}: no kubeconfig or in-cluster credentials"
            )

        obj = self.reader.get_operator_source(namespace, name)
        spec = obj.get("spec")
        if not isinstance(spec, dict):
            raise SourceParseError(f"OperatorSource {specifier} has no spec")

        endpoint = spec.get("endpoint")
        registry_namespace = spec.get("registryNamespace")
        if not isinstance(endpoint, str) or not endpoint.strip():
            raise SourceParseError(f"OperatorSource {specifier} has no spec.endpoint")
        if not isinstance(registry_namespace, str) or not registry_namespace.strip():
            raise SourceParseError(f"OperatorSource {specifier} has no spec.registryNamespace")

        secret_ref = None
        auth = spec.get("authorizationToken")
        if isinstance(auth, dict) and auth.get("secretName"):
            # The secret lives next to the OperatorSource.
            secret_ref = SecretRef(namespace=namespace, name=str(auth["secretName"]))

        return RegistrySource(
            endpoint=endpoint.strip().rstrip("/"),
            registry_namespace=registry_namespace.strip(),
            secret=secret_ref,
        )


def parse_package_filter(csv_packages: str) -> list[PackageRef]:
    """``"etcd, prometheus:0.22.2"`` -> PackageRefs; empty means no filter."""

    refs: list[PackageRef] = []
    seen: set[str] = set()
    for raw in csv_packages.split(","):
        item = raw.strip()
        if not item:
            continue
        name, _, release = item.partition(":")
        name = name.strip()
        if not name:
            raise SourceParseError(f"invalid package entry '{item}'")
        if name in seen:
            continue
        seen.add(name)
        refs.append(PackageRef(name=name, release=release.strip() or None))
    return refs
