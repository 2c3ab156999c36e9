"""Ingestion layer: parse sources, download manifests, build the store."""

from appregistry.ingestion.downloader import AuthorizedSource, Downloader, DownloadError
from appregistry.ingestion.loader import Loader, LoadError, LoaderInitError
from appregistry.ingestion.manifests import ManifestError, decode_archive, decode_yaml
from appregistry.ingestion.parser import (
    OperatorSourceParser,
    RegistryStringParser,
    SourceParseError,
    parse_package_filter,
)

__all__ = [
    "AuthorizedSource",
    "Downloader",
    "DownloadError",
    "Loader",
    "LoadError",
    "LoaderInitError",
    "ManifestError",
    "decode_archive",
    "decode_yaml",
    "OperatorSourceParser",
    "RegistryStringParser",
    "SourceParseError",
    "parse_package_filter",
]
