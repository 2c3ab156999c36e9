"""appregistry-server: load operator manifests from remote app registries and serve them over gRPC."""

__version__ = "0.1.0"
