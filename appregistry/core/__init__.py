"""
Core Layer - settings, source resolution and shared types.

The bootstrap sequence lives in ``appregistry.core.bootstrap`` and is not
re-exported here because it depends on every other layer.
"""

from appregistry.core.settings import ServerSettings, SettingsError, load_settings
from appregistry.core.sources import LegacySources, ModernSources, SourceSpecifierSet, resolve

__all__ = [
    "ServerSettings",
    "SettingsError",
    "load_settings",
    "LegacySources",
    "ModernSources",
    "SourceSpecifierSet",
    "resolve",
]
