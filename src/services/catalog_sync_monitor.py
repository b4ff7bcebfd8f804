"""
Catalog Sync Monitor

Tracks whether the catalog is in the middle of a library resync. While a
resync is running, empty genre searches are treated as transient instead of
as "no matches".
"""

from typing import Any, List, Optional
import logging
import threading

from core.event_bus import EventBus, EventType
from core.timers import TimerFactory

logger = logging.getLogger(__name__)


class CatalogSyncMonitor:
    """
    Catalog Sync Monitor

    A LIBRARY_CHANGED event opens a resync window that closes on
    LIBRARY_SYNC_COMPLETED, or after ``grace_seconds`` if completion is never
    reported.
    """

    def __init__(
        self,
        event_bus: EventBus,
        grace_seconds: float = 30.0,
        timers: Optional[TimerFactory] = None,
    ):
        self._event_bus = event_bus
        self._grace_seconds = grace_seconds
        self._timers = timers or TimerFactory()
        self._lock = threading.Lock()
        self._started_at: Optional[float] = None
        self._sub_ids: List[str] = []

    def attach(self) -> None:
        if self._sub_ids:
            return
        self._sub_ids.append(
            self._event_bus.subscribe(EventType.LIBRARY_CHANGED, self._on_library_changed)
        )
        self._sub_ids.append(
            self._event_bus.subscribe(EventType.LIBRARY_SYNC_COMPLETED, self._on_sync_completed)
        )

    def shutdown(self) -> None:
        for sub_id in self._sub_ids:
            self._event_bus.unsubscribe(sub_id)
        self._sub_ids.clear()

    def mark_resync_started(self) -> None:
        with self._lock:
            if self._started_at is None:
                logger.info("Catalog resync started")
            self._started_at = self._timers.now()

    def mark_resync_completed(self) -> None:
        with self._lock:
            if self._started_at is not None:
                logger.info("Catalog resync completed")
            self._started_at = None

    def is_resyncing(self) -> bool:
        with self._lock:
            if self._started_at is None:
                return False
            if self._timers.now() - self._started_at >= self._grace_seconds:
                logger.debug("Catalog resync window expired without completion")
                self._started_at = None
                return False
            return True

    def _on_library_changed(self, data: Any) -> None:
        self.mark_resync_started()

    def _on_sync_completed(self, data: Any) -> None:
        self.mark_resync_completed()
