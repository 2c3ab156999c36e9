"""Command-line settings loading and validation.

Design principles:
- Fail-fast: an unknown flag or an invalid value raises a readable SettingsError
- No side effects: this module only parses/validates flags; no network/IO init
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Any, Sequence

DEFAULT_DATABASE = "bundles.db"
DEFAULT_PORT = "50051"
DEFAULT_TERMINATION_LOG = "/dev/termination-log"

DESCRIPTION = (
    "appregistry-server downloads operator manifest(s) from remote appregistry, "
    "builds a sqlite database containing these downloaded manifest(s) and serves "
    "a grpc API to query it"
)


class SettingsError(ValueError):
    """Raised when flags are missing or invalid."""


@dataclass(frozen=True)
class ServerSettings:
    debug: bool
    kubeconfig: str
    database: str
    sources: tuple[str, ...]
    registry: tuple[str, ...]
    packages: str
    port: str
    termination_log: str

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.debug else "INFO"


class _SettingsArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> Any:  # type: ignore[override]
        raise SettingsError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _SettingsArgumentParser(prog="appregistry-server", description=DESCRIPTION)
    parser.add_argument("--debug", action="store_true", default=False, help=argparse.SUPPRESS)
    parser.add_argument(
        "-k", "--kubeconfig", default="", help="absolute path to kubeconfig file"
    )
    parser.add_argument(
        "-d", "--database", default=DEFAULT_DATABASE, help="name of db to output"
    )
    parser.add_argument(
        "-s",
        "--sources",
        action="append",
        default=[],
        help="comma separated list of OperatorSource object(s) {namespace}/{name}",
    )
    parser.add_argument(
        "-r",
        "--registry",
        action="append",
        default=[],
        help=(
            "pipe delimited operator source - {base url with cnr prefix}|"
            "{quay registry namespace}|{secret namespace/secret name}"
        ),
    )
    parser.add_argument(
        "-o",
        "--packages",
        default="",
        help="comma separated list of package(s) to be downloaded from the specified operator source(s)",
    )
    parser.add_argument("-p", "--port", default=DEFAULT_PORT, help="port number to serve on")
    parser.add_argument(
        "-t",
        "--termination-log",
        default=DEFAULT_TERMINATION_LOG,
        help="path to a container termination log file",
    )
    return parser


def _split_list(values: Sequence[str]) -> tuple[str, ...]:
    """Flatten repeated, comma separated flag values."""

    out: list[str] = []
    for value in values:
        for item in value.split(","):
            item = item.strip()
            if item:
                out.append(item)
    return tuple(out)


def parse_port(value: Any, path: str = "--port") -> int:
    """Validate a port flag value; raised errors name the flag."""

    try:
        port = int(str(value).strip())
    except ValueError as e:
        raise SettingsError(f"Invalid value for {path}: expected port number, got {value!r}") from e
    if not 0 <= port <= 65535:
        raise SettingsError(f"Invalid value for {path}: port {port} out of range")
    return port


def _as_path(value: Any, path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise SettingsError(f"Invalid value for {path}: expected non-empty path")
    return value


def load_settings(argv: Sequence[str] | None = None) -> ServerSettings:
    """Parse command-line flags into ServerSettings."""

    args = build_parser().parse_args(argv)

    return ServerSettings(
        debug=bool(args.debug),
        kubeconfig=args.kubeconfig.strip(),
        database=_as_path(args.database, "--database"),
        sources=_split_list(args.sources),
        registry=_split_list(args.registry),
        packages=args.packages,
        port=str(args.port).strip(),
        termination_log=_as_path(args.termination_log, "--termination-log"),
    )
