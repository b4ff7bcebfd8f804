# -*- coding: utf-8 -*-
"""
Container Factory Module

Responsible for creating and assembling all application dependencies.

This is the **only** instance creation point (Composition Root) for the application.
All service instance creation should be done here, not within individual services.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from app.container import AppContainer
    from core.ports.audio import IAudioResource
    from core.ports.catalog import ICatalog
    from core.timers import TimerFactory

logger = logging.getLogger(__name__)


class AppContainerFactory:
    """Application Container Factory

    Creates and assembles all application dependencies.

    Usage Example:
        # In main.py
        container = AppContainerFactory.create(config_path="config.yaml")

        # In tests (in-memory database, injected fakes)
        container = AppContainerFactory.create_for_testing(
            config_path=str(tmp_path / "config.yaml"),
            audio=FakeAudioResource(),
        )
    """

    @staticmethod
    def create(
        config_path: Optional[str] = None,
        db_path: Optional[str] = None,
        catalog: Optional["ICatalog"] = None,
        audio: Optional["IAudioResource"] = None,
        timers: Optional["TimerFactory"] = None,
        executor: Optional[Executor] = None,
        rng: Any = None,
    ) -> "AppContainer":
        """Create Application Container

        Creates all service instances in dependency order and assembles them into the container.

        Args:
            config_path: Configuration file path (platform default when None)
            db_path: SQLite database path (platform default when None)
            catalog: Catalog to use instead of the local SQLite library
            audio: Audio resource to use instead of the silent one
            timers: Timer factory shared by every service
            executor: Executor for recommendation fetches
            rng: random.Random used for shuffling

        Returns:
            A configured AppContainer instance
        """
        from app.container import AppContainer
        from core.audio_engine import SilentAudioResource
        from core.database import DatabaseManager
        from core.event_bus import EventBus
        from core.timers import TimerFactory
        from services.catalog_sync_monitor import CatalogSyncMonitor
        from services.config_service import ConfigService
        from services.library_catalog import LibraryCatalog
        from services.playback_controller import PlaybackController
        from services.queue_engine import QueueEngine
        from services.queue_persistence_service import QueuePersistenceService
        from services.recommendation_pipeline import RecommendationPipeline
        from services.recommendation_scheduler import RecommendationScheduler, SchedulerSettings
        from services.recommendation_strategies import PipelineSettings

        logger.info("Creating application container...")

        # === 1. Infrastructure Layer ===
        config = ConfigService(config_path)
        db = DatabaseManager(db_path)
        event_bus = EventBus()
        timers = timers or TimerFactory()

        # === 2. Catalog ===
        library = None
        if catalog is None:
            library = LibraryCatalog(db=db, event_bus=event_bus)
            catalog = library
            logger.debug("Using local library catalog")
        sync_monitor = CatalogSyncMonitor(
            event_bus=event_bus,
            grace_seconds=config.get_float("catalog.resync_grace_seconds", 30.0),
            timers=timers,
        )
        sync_monitor.attach()

        # === 3. Audio Resource ===
        if audio is None:
            resolver = library.duration_for_url if library is not None else None
            audio = SilentAudioResource(duration_resolver=resolver, timers=timers)
            logger.info("Using silent audio resource")

        # === 4. Queue and Playback ===
        queue = QueueEngine(
            event_bus=event_bus,
            capacity=config.get_int("queue.capacity", 1000),
            keep_previous=config.get_int("queue.keep_previous", 5),
            rng=rng,
        )
        playback = PlaybackController(
            queue=queue,
            audio=audio,
            catalog=catalog,
            event_bus=event_bus,
            timers=timers,
            report_delay=config.get_float("playback.play_report_delay_seconds", 5.0),
            near_end_seconds=config.get_float("playback.near_end_seconds", 1.0),
            restart_threshold=config.get_float("playback.restart_threshold_seconds", 3.0),
            volume=config.get_float("playback.default_volume", 1.0),
        )
        playback.attach()

        # === 5. Recommendations ===
        pipeline = RecommendationPipeline(
            catalog=catalog,
            settings=PipelineSettings.from_config(config),
            sync_monitor=sync_monitor,
            rng=rng,
        )
        scheduler = RecommendationScheduler(
            queue=queue,
            pipeline=pipeline,
            event_bus=event_bus,
            settings=SchedulerSettings.from_config(config),
            timers=timers,
            executor=executor,
        )

        # === 6. Queue Persistence Service ===
        queue_persistence = QueuePersistenceService(
            db=db,
            config=config,
            event_bus=event_bus,
        )
        queue_persistence.attach()

        # === 7. Assemble Container ===
        container = AppContainer(
            config=config,
            event_bus=event_bus,
            db=db,
            queue=queue,
            playback=playback,
            _catalog=catalog,
            _audio=audio,
            _pipeline=pipeline,
            _scheduler=scheduler,
            _sync_monitor=sync_monitor,
            _queue_persistence=queue_persistence,
        )

        logger.info("Application container creation complete")
        return container

    @staticmethod
    def create_for_testing(
        config_path: str,
        db_path: str = ":memory:",
        **overrides: Any,
    ) -> "AppContainer":
        """Create a container for testing

        Same wiring as create(), on an in-memory database by default. The
        scheduler is left detached so tests decide when recommendations run.
        """
        container = AppContainerFactory.create(
            config_path=config_path,
            db_path=db_path,
            **overrides,
        )
        logger.info("Test application container creation complete")
        return container

    @staticmethod
    def start(container: "AppContainer") -> bool:
        """Restore the saved queue, then let the scheduler follow queue changes

        Returns:
            bool: Whether a saved queue was restored
        """
        restored = container.queue_persistence.restore(container.queue, container.playback)
        container.scheduler.attach()
        return restored
