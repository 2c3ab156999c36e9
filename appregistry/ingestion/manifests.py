"""Manifest archive decoding.

A downloaded release is a (gzipped) tar. Two layouts are accepted:

- flattened: one YAML document with a ``data`` mapping whose
  ``customResourceDefinitions``, ``clusterServiceVersions`` and ``packages``
  values are themselves YAML lists serialized as strings
- nested: a package directory with a ``*.package.yaml`` file and one
  directory per version holding CSV and CRD files

Archives are read in memory; nothing is extracted to disk.
"""

from __future__ import annotations

import io
import tarfile
from typing import Any, Iterable, Mapping

import yaml

from appregistry.core.types import ManifestSet, PackageManifest

CSV_KIND = "ClusterServiceVersion"
CRD_KIND = "CustomResourceDefinition"
YAML_SUFFIXES = (".yaml", ".yml")


class ManifestError(ValueError):
    """Raised when an archive or manifest document cannot be decoded."""


def _package_from_doc(doc: Mapping[str, Any], origin: str) -> PackageManifest:
    channels_raw = doc.get("channels")
    if not isinstance(channels_raw, list):
        raise ManifestError(f"{origin}: package channels must be a list")

    channels: dict[str, str] = {}
    for index, channel in enumerate(channels_raw):
        if not isinstance(channel, Mapping):
            raise ManifestError(f"{origin}: channels[{index}] must be a mapping")
        name = channel.get("name")
        current = channel.get("currentCSV")
        if not isinstance(name, str) or not isinstance(current, str):
            raise ManifestError(f"{origin}: channels[{index}] needs name and currentCSV")
        channels[name] = current

    try:
        return PackageManifest(
            name=str(doc.get("packageName") or ""),
            channels=channels,
            default_channel=doc.get("defaultChannel") or None,
        )
    except ValueError as e:
        raise ManifestError(f"{origin}: {e}") from e


def _classify(docs: Iterable[Any], origin: str, out: ManifestSet) -> None:
    for doc in docs:
        if doc is None:
            continue
        if not isinstance(doc, Mapping):
            raise ManifestError(f"{origin}: expected a mapping document")

        if isinstance(doc.get("data"), Mapping):
            _decode_flattened(doc["data"], origin, out)
        elif "packageName" in doc:
            out.packages.append(_package_from_doc(doc, origin))
        elif doc.get("kind") == CSV_KIND:
            out.csvs.append(dict(doc))
        elif doc.get("kind") == CRD_KIND:
            out.crds.append(dict(doc))


def _load_embedded_list(data: Mapping[str, Any], key: str, origin: str) -> list[Any]:
    raw = data.get(key)
    if raw is None:
        return []
    if isinstance(raw, str):
        try:
            raw = yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ManifestError(f"{origin}: invalid YAML in data.{key}") from e
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ManifestError(f"{origin}: data.{key} must be a list")
    return raw


def _decode_flattened(data: Mapping[str, Any], origin: str, out: ManifestSet) -> None:
    for crd in _load_embedded_list(data, "customResourceDefinitions", origin):
        if isinstance(crd, Mapping):
            out.crds.append(dict(crd))
    for csv in _load_embedded_list(data, "clusterServiceVersions", origin):
        if isinstance(csv, Mapping):
            out.csvs.append(dict(csv))
    for pkg in _load_embedded_list(data, "packages", origin):
        if not isinstance(pkg, Mapping):
            raise ManifestError(f"{origin}: data.packages entries must be mappings")
        out.packages.append(_package_from_doc(pkg, origin))


def decode_yaml(text: str, origin: str = "<manifest>") -> ManifestSet:
    out = ManifestSet()
    try:
        docs = list(yaml.safe_load_all(text))
    except yaml.YAMLError as e:
        raise ManifestError(f"{origin}: invalid YAML") from e
    _classify(docs, origin, out)
    return out


def decode_archive(blob: bytes, origin: str = "<archive>") -> ManifestSet:
    """Decode every YAML file in a tar(.gz) blob into one ManifestSet."""

    out = ManifestSet()
    try:
        with tarfile.open(fileobj=io.BytesIO(blob), mode="r:*") as archive:
            for member in archive.getmembers():
                if not member.isfile() or not member.name.lower().endswith(YAML_SUFFIXES):
                    continue
                handle = archive.extractfile(member)
                if handle is None:
                    continue
                text = handle.read().decode("utf-8")
                out.merge(decode_yaml(text, f"{origin}:{member.name}"))
    except (tarfile.TarError, EOFError, OSError) as e:
        raise ManifestError(f"{origin}: not a readable manifest archive: {e}") from e
    except UnicodeDecodeError as e:
        raise ManifestError(f"{origin}: manifest file is not valid UTF-8") from e

    if out.is_empty():
        raise ManifestError(f"{origin}: archive contains no operator manifests")
    return out
