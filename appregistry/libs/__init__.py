"""Libs layer: thin clients for external systems."""
