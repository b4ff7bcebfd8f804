# -*- coding: utf-8 -*-
"""
Event Bus Module - Publish-Subscribe Pattern Implementation

Provides loose-coupled communication between the queue engine, the playback
controller, the recommendation scheduler and whatever UI sits on top.

Design Notes:
- Pure Python, does not depend on any UI framework
- One instance per application container; there is no process-wide instance
"""

from typing import Dict, Callable, Any, Optional
from enum import Enum
import threading
import uuid
import logging
from concurrent.futures import ThreadPoolExecutor

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Event type enumeration"""

    # Queue events
    QUEUE_CHANGED = "queue_changed"          # data: QueueSnapshot
    TRACK_CHANGED = "track_changed"          # data: {"track", "index", "reason"}

    # Playback events
    PLAYBACK_STATE_CHANGED = "playback_state_changed"  # data: PlaybackSession
    POSITION_CHANGED = "position_changed"    # data: {"position", "duration"}
    VOLUME_CHANGED = "volume_changed"        # data: float
    PLAYBACK_ERROR = "playback_error"        # data: {"track", "error"}
    TRACK_REPORTED = "track_reported"        # data: track id

    # Recommendation events
    RECOMMENDATIONS_ADDED = "recommendations_added"                    # data: List[Track]
    RECOMMENDATION_QUALITY_CHANGED = "recommendation_quality_changed"  # data: RecommendationQuality
    RECOMMENDATION_STATE_CHANGED = "recommendation_state_changed"      # data: SchedulerState

    # Catalog events
    LIBRARY_CHANGED = "library_changed"
    LIBRARY_SYNC_COMPLETED = "library_sync_completed"

    # System events
    CONFIG_CHANGED = "config_changed"
    ERROR_OCCURRED = "error_occurred"


class EventBus:
    """
    Event Bus

    Provides publish-subscribe pattern event system, supports asynchronous event handling.

    Usage example:
        event_bus = EventBus()

        # Subscribe to event
        def on_track_changed(data):
            logger.info("Now playing: %s", data["track"].name)

        sub_id = event_bus.subscribe(EventType.TRACK_CHANGED, on_track_changed)

        # Publish event
        event_bus.publish_sync(EventType.TRACK_CHANGED, {"track": track})

        # Unsubscribe
        event_bus.unsubscribe(sub_id)
    """

    def __init__(self, max_workers: int = 4):
        self._subscribers: Dict[EventType, Dict[str, Callable]] = {}
        self._executor: Optional[ThreadPoolExecutor] = None
        self._max_workers = max_workers
        self._sub_lock = threading.Lock()

    def subscribe(
        self,
        event_type: EventType,
        callback: Callable[[Any], None]
    ) -> str:
        """
        Subscribe to event

        Args:
            event_type: Event type
            callback: Callback function, receiving event data as an argument

        Returns:
            str: Subscription ID, used for unsubscription
        """
        subscription_id = str(uuid.uuid4())

        with self._sub_lock:
            if event_type not in self._subscribers:
                self._subscribers[event_type] = {}
            self._subscribers[event_type][subscription_id] = callback

        return subscription_id

    def unsubscribe(self, subscription_id: str) -> bool:
        """
        Unsubscribe

        Args:
            subscription_id: The ID returned when subscribing

        Returns:
            bool: Whether the unsubscription was successful
        """
        with self._sub_lock:
            for event_type in self._subscribers:
                if subscription_id in self._subscribers[event_type]:
                    del self._subscribers[event_type][subscription_id]
                    return True
        return False

    def publish(self, event_type: EventType, data: Any = None) -> None:
        """
        Publish event asynchronously

        The callbacks are executed in a small thread pool, created on first use.
        """
        with self._sub_lock:
            callbacks = list(self._subscribers.get(event_type, {}).values())
            if callbacks and self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="EventBus"
                )
            executor = self._executor

        for callback in callbacks:
            executor.submit(self._safe_call, callback, data)

    def publish_sync(self, event_type: EventType, data: Any = None) -> None:
        """
        Publish event synchronously

        All callbacks are executed in the current thread, in subscription order.
        """
        with self._sub_lock:
            callbacks = list(self._subscribers.get(event_type, {}).values())

        for callback in callbacks:
            self._safe_call(callback, data)

    def _safe_call(self, callback: Callable, data: Any) -> None:
        """Safely call a callback function"""
        try:
            callback(data)
        except Exception as e:
            # Avoid loop: Do not use publish to report error events
            logger.error("Event callback execution error: %s", e)

    def clear(self) -> None:
        """Clear all subscriptions"""
        with self._sub_lock:
            self._subscribers.clear()

    def shutdown(self) -> None:
        """Shutdown the event bus"""
        with self._sub_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)
