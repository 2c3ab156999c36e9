"""Source specifier resolution.

Two flag styles name the sources to load:

- ``--sources``: legacy OperatorSource object references (``namespace/name``)
- ``--registry``: direct descriptors (``baseURL|namespace|secretNamespace/secretName``)

A non-empty legacy list always wins, even when ``--registry`` is also given,
because existing deployments still drive the server through ``--sources``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Union


@dataclass(frozen=True)
class LegacySources:
    """Specifiers that reference OperatorSource objects."""

    specifiers: tuple[str, ...]

    @property
    def legacy(self) -> bool:
        return True


@dataclass(frozen=True)
class ModernSources:
    """Pipe-delimited registry descriptors."""

    specifiers: tuple[str, ...]

    @property
    def legacy(self) -> bool:
        return False


SourceSpecifierSet = Union[LegacySources, ModernSources]


def resolve(
    legacy_specifiers: Iterable[str], modern_specifiers: Iterable[str]
) -> SourceSpecifierSet:
    """Pick the specifier list the loader should use.

    Specifier syntax is not checked here; the loader's parsers do that.
    """

    legacy = tuple(legacy_specifiers)
    if legacy:
        return LegacySources(legacy)
    return ModernSources(tuple(modern_specifiers))
