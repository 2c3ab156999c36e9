"""Credentials context for reading OperatorSource objects and registry secrets."""

from appregistry.libs.kube.client import KubeClient, KubeClientError
from appregistry.libs.kube.kubeconfig import (
    KubeConfigError,
    KubeCredentials,
    load_in_cluster,
    load_kubeconfig,
)

__all__ = [
    "KubeClient",
    "KubeClientError",
    "KubeConfigError",
    "KubeCredentials",
    "load_in_cluster",
    "load_kubeconfig",
]
