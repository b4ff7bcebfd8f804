# -*- coding: utf-8 -*-
"""
Protocols Definition Module

Defines the interface protocols (Protocol) for the application-level services.
Uses Protocol instead of ABC to support structural subtyping checks.

Design Decisions:
- Default to using Protocol + @runtime_checkable
- ABC is only used for base classes that need to share default implementations (e.g., AudioResourceBase)
- Runtime checks are performed as one-time assertions during container assembly or testing
"""

from __future__ import annotations

from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

# Re-export infrastructure interfaces from core.ports
from core.ports.audio import IAudioResource
from core.ports.catalog import ICatalog

if TYPE_CHECKING:
    from models.queue import PlaybackSession
    from models.track import Track


# =============================================================================
# Event Bus Protocol
# =============================================================================

@runtime_checkable
class IEventBus(Protocol):
    """Event Bus Interface

    Provides a publish-subscribe pattern event system.
    """

    def subscribe(
        self,
        event_type: Enum,
        callback: Callable[[Any], None]
    ) -> str:
        """Subscribe to an event

        Returns:
            Subscription ID, used to unsubscribe
        """
        ...

    def unsubscribe(self, subscription_id: str) -> bool:
        ...

    def publish(self, event_type: Enum, data: Any = None) -> None:
        """Publish an event on the bus's worker threads"""
        ...

    def publish_sync(self, event_type: Enum, data: Any = None) -> None:
        """Publish an event, running every subscriber before returning"""
        ...


# =============================================================================
# Database Protocol
# =============================================================================

@runtime_checkable
class IDatabase(Protocol):
    """Database Interface"""

    def execute(self, sql: str, params: tuple = ()) -> Any:
        ...

    def fetch_one(self, sql: str, params: tuple = ()) -> Optional[Dict[str, Any]]:
        ...

    def fetch_all(self, sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        ...

    def close(self) -> None:
        ...


# =============================================================================
# Configuration Service Protocol
# =============================================================================

@runtime_checkable
class IConfigService(Protocol):
    """Configuration Service Interface"""

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value (dot-separated key)"""
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def save(self) -> bool:
        ...


# =============================================================================
# Playback Protocol
# =============================================================================

@runtime_checkable
class IPlaybackController(Protocol):
    """Playback Controller Interface (what a UI drives)"""

    @property
    def session(self) -> "PlaybackSession":
        ...

    def start(self, track: "Track") -> bool:
        ...

    def pause(self) -> None:
        ...

    def resume(self) -> bool:
        ...

    def toggle(self) -> None:
        ...

    def seek(self, position: float) -> None:
        ...

    def set_volume(self, volume: float) -> None:
        ...

    def next(self) -> bool:
        ...

    def previous(self) -> bool:
        ...

    def shutdown(self) -> None:
        ...


__all__ = [
    "IEventBus",
    "IDatabase",
    "IConfigService",
    "IPlaybackController",
    "IAudioResource",
    "ICatalog",
]
