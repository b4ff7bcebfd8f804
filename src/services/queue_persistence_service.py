"""
Queue Persistence Service

Supports:
- Restoring the last queue (entries, indices, orderings, modes) after restart
- Saving the queue state on every change, and the volume whenever it moves
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional
import json
import logging
import threading

from core.database import DatabaseManager
from core.event_bus import EventBus, EventType
from models.queue import QueueSnapshot
from services.config_service import ConfigService
from services.queue_engine import QueueEngine

if TYPE_CHECKING:
    from services.playback_controller import PlaybackController

logger = logging.getLogger(__name__)


class QueuePersistenceService:
    LAST_QUEUE_KEY = "playback.last_queue"
    VOLUME_KEY = "playback.volume"

    def __init__(
        self,
        db: DatabaseManager,
        config: ConfigService,
        event_bus: EventBus,
    ):
        self._db = db
        self._config = config
        self._event_bus = event_bus

        self._enabled = bool(self._config.get("playback.persist_queue", True))

        self._sub_ids: List[str] = []
        self._suppress = False

        # Snapshots can arrive from several threads; only newer revisions are written
        self._save_lock = threading.Lock()
        self._last_revision = -1

    @property
    def enabled(self) -> bool:
        return self._enabled

    def attach(self) -> None:
        """Start listening for queue and volume changes to persist them automatically."""
        if not self._enabled or self._sub_ids:
            return

        self._sub_ids.append(self._event_bus.subscribe(EventType.QUEUE_CHANGED, self._on_queue_changed))
        self._sub_ids.append(self._event_bus.subscribe(EventType.VOLUME_CHANGED, self._on_volume_changed))

    def shutdown(self) -> None:
        """Unsubscribe (cleanup on exit)."""
        for sub_id in self._sub_ids:
            self._event_bus.unsubscribe(sub_id)
        self._sub_ids.clear()

    def save_snapshot(self, snapshot: QueueSnapshot) -> None:
        """Save the queue state. Playback position and play/pause state are not kept."""
        if not self._enabled:
            return
        self._put(self.LAST_QUEUE_KEY, json.dumps(snapshot.to_dict(), ensure_ascii=False))

    def load_snapshot(self) -> Optional[QueueSnapshot]:
        raw = self._get(self.LAST_QUEUE_KEY)
        if not raw:
            return None

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                return None
            return QueueSnapshot.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable saved queue: %s", e)
            return None

    def save_volume(self, volume: float) -> None:
        if not self._enabled:
            return
        self._put(self.VOLUME_KEY, json.dumps(float(volume)))

    def load_volume(self) -> Optional[float]:
        raw = self._get(self.VOLUME_KEY)
        if not raw:
            return None
        try:
            return max(0.0, min(1.0, float(json.loads(raw))))
        except (ValueError, TypeError):
            return None

    def restore(self, queue: QueueEngine, controller: Optional["PlaybackController"] = None) -> bool:
        """
        Restore the saved queue into the engine, and the volume into the controller

        Returns:
            bool: Whether a saved queue was restored
        """
        if not self._enabled:
            return False

        snapshot = self.load_snapshot()
        volume = self.load_volume()

        self._suppress = True
        try:
            if snapshot is not None and snapshot.entries:
                queue.restore(snapshot)
            if controller is not None and volume is not None:
                controller.set_volume(volume)
        finally:
            self._suppress = False

        restored = snapshot is not None and bool(snapshot.entries)
        if restored:
            logger.info("Restored saved queue with %d entries", len(snapshot.entries))
        return restored

    def _put(self, key: str, value: str) -> None:
        self._db.execute(
            "INSERT OR REPLACE INTO app_state(key, value, updated_at) VALUES(?, ?, CURRENT_TIMESTAMP)",
            (key, value),
        )

    def _get(self, key: str) -> Optional[str]:
        row = self._db.fetch_one("SELECT value FROM app_state WHERE key = ?", (key,))
        return row.get("value") if row else None

    def _on_queue_changed(self, snapshot: Any) -> None:
        if self._suppress or not isinstance(snapshot, QueueSnapshot):
            return
        with self._save_lock:
            if snapshot.revision <= self._last_revision:
                logger.debug("Skipping stale queue snapshot %d (saved %d)",
                             snapshot.revision, self._last_revision)
                return
            self.save_snapshot(snapshot)
            self._last_revision = snapshot.revision

    def _on_volume_changed(self, volume: Any) -> None:
        if self._suppress:
            return
        try:
            self.save_volume(float(volume))
        except (TypeError, ValueError):
            logger.debug("Ignoring invalid volume event: %r", volume)
