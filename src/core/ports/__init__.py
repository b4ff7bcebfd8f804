# -*- coding: utf-8 -*-
"""
Ports Interfaces Package

Defines the interfaces between the application and external infrastructure
(media catalog, audio output).

Design Principles:
- Use Protocol to define interfaces, supporting structural subtyping.
- Service layer depends on these interfaces rather than concrete implementations.
- Facilitates replacing with fake/mock during testing.
"""

from core.ports.audio import IAudioResource, PlayerState, AudioResourceError
from core.ports.catalog import (
    ICatalog,
    CatalogError,
    CatalogResyncError,
    Genre,
    SortOrder,
    TrackQuery,
)

__all__ = [
    "IAudioResource",
    "PlayerState",
    "AudioResourceError",
    "ICatalog",
    "CatalogError",
    "CatalogResyncError",
    "Genre",
    "SortOrder",
    "TrackQuery",
]
