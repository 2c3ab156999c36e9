"""Narrow API-server reader for OperatorSource objects and secrets."""

from __future__ import annotations

from typing import Any

import httpx

from appregistry.libs.kube.kubeconfig import KubeConfigError, KubeCredentials


class KubeClientError(RuntimeError):
    """Raised when the API server request fails."""


class KubeClient:
    """Reads the two resource kinds the loader needs from the API server."""

    OPERATOR_SOURCE_PATH = "/apis/operators.coreos.com/v1/namespaces/{namespace}/operatorsources/{name}"
    SECRET_PATH = "/api/v1/namespaces/{namespace}/secrets/{name}"
    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        credentials: KubeCredentials,
        *,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.credentials = credentials
        self.timeout = float(timeout if timeout is not None else self.DEFAULT_TIMEOUT)

        headers = {"Accept": "application/json"}
        if credentials.token:
            headers["Authorization"] = f"Bearer {credentials.token}"

        try:
            verify = credentials.ssl_context()
        except (OSError, ValueError) as error:
            raise KubeConfigError(f"invalid TLS settings for {credentials.server}: {error}") from error

        self._client = httpx.Client(
            base_url=credentials.server,
            headers=headers,
            verify=verify,
            timeout=self.timeout,
            transport=transport,
        )

    def __enter__(self) -> "KubeClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def get_operator_source(self, namespace: str, name: str) -> dict[str, Any]:
        return self._get(self.OPERATOR_SOURCE_PATH.format(namespace=namespace, name=name))

    def get_secret(self, namespace: str, name: str) -> dict[str, Any]:
        return self._get(self.SECRET_PATH.format(namespace=namespace, name=name))

    def close(self) -> None:
        self._client.close()

    def _get(self, path: str) -> dict[str, Any]:
        try:
            response = self._client.get(path)
        except httpx.RequestError as error:
            raise KubeClientError(f"[kube] request failed for {path}: {error}") from error

        if response.status_code == 404:
            raise KubeClientError(f"[kube] object not found: {path}")
        if response.status_code >= 400:
            raise KubeClientError(f"[kube] API error (HTTP {response.status_code}) for {path}")

        try:
            data = response.json()
        except ValueError as error:
            raise KubeClientError(f"[kube] unexpected response format for {path}") from error
        if not isinstance(data, dict):
            raise KubeClientError(f"[kube] unexpected response format for {path}")
        return data
