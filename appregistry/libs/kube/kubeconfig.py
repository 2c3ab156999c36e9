"""Kubeconfig / in-cluster credentials resolution.

Only the fields needed to reach the API server are read: server URL, CA,
bearer token and client certificate paths.
"""

from __future__ import annotations

import base64
import binascii
import os
import ssl
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class KubeConfigError(RuntimeError):
    """Raised when a credentials context cannot be built."""


@dataclass(frozen=True)
class KubeCredentials:
    server: str
    token: str | None = None
    ca_file: str | None = None
    ca_data: str | None = None
    client_cert: str | None = None
    client_key: str | None = None
    insecure: bool = False

    def ssl_context(self) -> ssl.SSLContext | bool:
        if not self.server.startswith("https"):
            return False
        if self.insecure:
            return False
        context = ssl.create_default_context(cafile=self.ca_file, cadata=self.ca_data)
        if self.client_cert:
            context.load_cert_chain(self.client_cert, self.client_key)
        return context


def _named(entries: Any, name: str, kind: str) -> Mapping[str, Any]:
    if not isinstance(entries, list):
        raise KubeConfigError(f"kubeconfig: '{kind}s' must be a list")
    for entry in entries:
        if isinstance(entry, Mapping) and entry.get("name") == name:
            body = entry.get(kind)
            if not isinstance(body, Mapping):
                raise KubeConfigError(f"kubeconfig: {kind} '{name}' has no body")
            return body
    raise KubeConfigError(f"kubeconfig: {kind} '{name}' not found")


def _relative_to(base: Path, value: Any) -> str | None:
    if not isinstance(value, str) or not value:
        return None
    path = Path(value)
    return str(path if path.is_absolute() else base / path)


def _decode_ca_data(value: Any) -> str | None:
    if not value:
        return None
    try:
        return base64.b64decode("".join(str(value).split()), validate=True).decode("ascii")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise KubeConfigError("kubeconfig: certificate-authority-data is not valid base64 PEM") from e


def load_kubeconfig(path: str | Path) -> KubeCredentials:
    """Read the current context of a kubeconfig file."""

    config_path = Path(path)
    if not config_path.is_file():
        raise KubeConfigError(f"kubeconfig file not found: {config_path}")

    try:
        raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise KubeConfigError(f"invalid YAML in kubeconfig: {config_path}") from e
    if not isinstance(raw, Mapping):
        raise KubeConfigError(f"invalid kubeconfig root: expected mapping in {config_path}")

    current = raw.get("current-context")
    if not isinstance(current, str) or not current:
        raise KubeConfigError("kubeconfig: current-context is not set")

    context = _named(raw.get("contexts"), current, "context")
    cluster = _named(raw.get("clusters"), str(context.get("cluster", "")), "cluster")
    user: Mapping[str, Any] = {}
    if context.get("user"):
        user = _named(raw.get("users"), str(context["user"]), "user")

    server = cluster.get("server")
    if not isinstance(server, str) or not server:
        raise KubeConfigError(f"kubeconfig: cluster '{context.get('cluster')}' has no server")

    base = config_path.parent
    ca_data = _decode_ca_data(cluster.get("certificate-authority-data"))
    token = user.get("token")
    token_file = _relative_to(base, user.get("tokenFile"))
    if token is None and token_file:
        token = Path(token_file).read_text(encoding="utf-8").strip()

    return KubeCredentials(
        server=server.rstrip("/"),
        token=token,
        ca_file=_relative_to(base, cluster.get("certificate-authority")),
        ca_data=ca_data,
        client_cert=_relative_to(base, user.get("client-certificate")),
        client_key=_relative_to(base, user.get("client-key")),
        insecure=bool(cluster.get("insecure-skip-tls-verify", False)),
    )


def load_in_cluster(sa_dir: Path = SERVICE_ACCOUNT_DIR) -> KubeCredentials | None:
    """Service account credentials, or None when not running in a pod."""

    host = os.environ.get("KUBERNETES_SERVICE_HOST")
    port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
    token_path = sa_dir / "token"
    if not host or not token_path.is_file():
        return None

    if ":" in host:
        host = f"[{host}]"
    ca_path = sa_dir / "ca.crt"
    return KubeCredentials(
        server=f"https://{host}:{port}",
        token=token_path.read_text(encoding="utf-8").strip(),
        ca_file=str(ca_path) if ca_path.is_file() else None,
    )
