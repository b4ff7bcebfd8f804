# -*- coding: utf-8 -*-
"""
Application Container Module

Defines the dependency container for the application, holding all service instances centrally.

Design Principles:
- The entry point (or a UI shell) holds the complete AppContainer
- Every service is created once by AppContainerFactory and injected; there are no singletons
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from app.protocols import IConfigService, IDatabase, IEventBus
    from services.playback_controller import PlaybackController
    from services.queue_engine import QueueEngine


@dataclass
class AppContainer:
    """Application Dependency Container

    Holds all service instances centrally, serving as the composition root for dependency injection.

    Usage Example:
        # In main.py
        container = AppContainerFactory.create(config_path="config.yaml")
        container.queue.play_album(tracks)
        ...
        container.cleanup()
    """

    # === Public Attributes ===
    config: "IConfigService"
    event_bus: "IEventBus"
    db: "IDatabase"
    queue: "QueueEngine"
    playback: "PlaybackController"

    # === Internal Service References ===
    # Use field(repr=False) to avoid leaking in debug output
    _catalog: Any = field(default=None, repr=False)
    _audio: Any = field(default=None, repr=False)
    _pipeline: Any = field(default=None, repr=False)
    _scheduler: Any = field(default=None, repr=False)
    _sync_monitor: Any = field(default=None, repr=False)
    _queue_persistence: Any = field(default=None, repr=False)

    @property
    def catalog(self) -> Any:
        return self._catalog

    @property
    def scheduler(self) -> Any:
        return self._scheduler

    @property
    def queue_persistence(self) -> Any:
        return self._queue_persistence

    def cleanup(self) -> None:
        """Clean up all resources

        Should be called when the application exits.
        """
        # Stop background recommendation work first so nothing mutates the queue
        if self._scheduler and hasattr(self._scheduler, 'shutdown'):
            self._scheduler.shutdown()

        if self._sync_monitor and hasattr(self._sync_monitor, 'shutdown'):
            self._sync_monitor.shutdown()

        # Clean up playback
        if self.playback and hasattr(self.playback, 'shutdown'):
            self.playback.shutdown()

        # Shutdown queue persistence service
        if self._queue_persistence and hasattr(self._queue_persistence, 'shutdown'):
            self._queue_persistence.shutdown()

        # Shutdown event bus
        if self.event_bus and hasattr(self.event_bus, 'shutdown'):
            self.event_bus.shutdown()

        # Close database
        if self.db and hasattr(self.db, 'close'):
            self.db.close()
