"""
Recommendation Scheduler

Keeps the upcoming part of the queue topped up with recommendation entries.
Watches QUEUE_CHANGED, decides when a fetch is allowed (cooldowns, retry
backoff, halting), runs the pipeline for a few seed tracks on a worker thread
and merges the results back into the queue engine.

State machine:
    idle -> fetching -> success -> cooldown -> idle
                     -> failure -> backoff -> idle
                     -> retryable -> scheduled_retry -> idle
    (retries exhausted -> halted until track change or re-enable)
"""

from __future__ import annotations

import logging
import math
import threading
from collections import deque
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Deque, List, Optional, Set

from core.event_bus import EventBus, EventType
from core.timers import TimerFactory, TimerHandle, cancel_timer
from models.queue import Origin, QueueSnapshot
from models.recommendation import (
    ExclusionContext,
    RecommendationQuality,
    RecommendationResult,
)
from models.track import Track
from services.queue_engine import QueueEngine
from services.recommendation_pipeline import RecommendationPipeline, spread_artists

if TYPE_CHECKING:
    from services.config_service import ConfigService

logger = logging.getLogger(__name__)


class SchedulerState(Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    COOLDOWN = "cooldown"                # after a success
    BACKOFF = "backoff"                  # after a failure
    SCHEDULED_RETRY = "scheduled_retry"  # catalog resync, retry timer pending
    HALTED = "halted"                    # retries exhausted


@dataclass(frozen=True)
class SchedulerSettings:
    enabled: bool = True
    target_upcoming: int = 12
    max_seeds: int = 3
    failure_cooldown: float = 10.0
    success_cooldown: float = 5.0
    max_retries: int = 3
    backoff_base: float = 15.0
    safety_timeout: float = 30.0
    recent_history_size: int = 20

    @classmethod
    def from_config(cls, config: "ConfigService") -> "SchedulerSettings":
        return cls(
            enabled=bool(config.get("recommendations.enabled", cls.enabled)),
            target_upcoming=config.get_int("recommendations.target_upcoming", cls.target_upcoming),
            max_seeds=config.get_int("recommendations.max_seeds", cls.max_seeds),
            failure_cooldown=config.get_float(
                "recommendations.failure_cooldown_seconds", cls.failure_cooldown
            ),
            success_cooldown=config.get_float(
                "recommendations.success_cooldown_seconds", cls.success_cooldown
            ),
            max_retries=config.get_int("recommendations.max_retries", cls.max_retries),
            backoff_base=config.get_float("recommendations.backoff_base_seconds", cls.backoff_base),
            safety_timeout=config.get_float(
                "recommendations.safety_timeout_seconds", cls.safety_timeout
            ),
            recent_history_size=config.get_int(
                "recommendations.recent_history_size", cls.recent_history_size
            ),
        )


def select_seeds(snapshot: QueueSnapshot, max_seeds: int) -> List[Track]:
    """The current track plus nearby upcoming ones, then the one before it"""
    if snapshot.current_entry is None or max_seeds <= 0:
        return []
    cur = snapshot.current_index
    seeds: List[Track] = []
    for index in (cur, cur + 1, cur + 2, cur - 1):
        if len(seeds) >= max_seeds:
            break
        if 0 <= index < len(snapshot.entries):
            track = snapshot.entries[index].track
            if all(s.id != track.id for s in seeds):
                seeds.append(track)
    return seeds


def distribute_quota(results: List[RecommendationResult], needed: int) -> List[Track]:
    """
    Merge per-seed results into at most ``needed`` tracks

    Seeds that produced genre matches share the quota evenly; when none did,
    every seed with candidates takes part. Leftover room is filled from the
    remaining candidates in seed order.
    """
    if needed <= 0:
        return []
    matched = [r for r in results if r.has_genre_matches and r.candidates]
    pool = matched or [r for r in results if r.candidates]
    if not pool:
        return []

    per_seed = math.ceil(needed / len(pool))
    picks: List[Track] = []
    seen: Set[str] = set()
    for result in pool:
        taken = 0
        for track in result.candidates:
            if taken >= per_seed:
                break
            if track.id in seen:
                continue
            picks.append(track)
            seen.add(track.id)
            taken += 1

    for result in pool:
        for track in result.candidates:
            if len(picks) >= needed:
                break
            if track.id not in seen:
                picks.append(track)
                seen.add(track.id)
    return picks[:needed]


class RecommendationScheduler:
    """
    Recommendation Scheduler

    Usage example:
        scheduler = RecommendationScheduler(queue, pipeline, event_bus)
        scheduler.attach()       # fetches start on the next queue change
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        queue: QueueEngine,
        pipeline: RecommendationPipeline,
        event_bus: EventBus,
        settings: Optional[SchedulerSettings] = None,
        timers: Optional[TimerFactory] = None,
        executor: Optional[Executor] = None,
    ):
        self._queue = queue
        self._pipeline = pipeline
        self._event_bus = event_bus
        self._settings = settings or SchedulerSettings()
        self._timers = timers or TimerFactory()
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="recommendations"
        )

        self._lock = threading.RLock()
        self._enabled = self._settings.enabled
        self._state = SchedulerState.IDLE
        self._quality: Optional[RecommendationQuality] = None

        self._fetching = False
        # Bumped whenever an in-flight fetch is abandoned; stale results are dropped
        self._generation = 0
        self._cancel_event: Optional[threading.Event] = None
        self._last_success_at: Optional[float] = None
        self._last_failure_at: Optional[float] = None
        self._retry_count = 0
        self._halted = False
        self._retry_timer: Optional[TimerHandle] = None
        self._safety_timer: Optional[TimerHandle] = None

        self._current_seq: Optional[int] = None
        self._current_track_id: Optional[str] = None
        self._recent_ids: Deque[str] = deque(maxlen=max(1, self._settings.recent_history_size))
        self._recommended_ids: Set[str] = set()
        self._sub_ids: List[str] = []

    # ===== Lifecycle =====

    def attach(self) -> None:
        if not self._sub_ids:
            self._sub_ids.append(
                self._event_bus.subscribe(EventType.QUEUE_CHANGED, self._on_queue_changed)
            )

    def shutdown(self) -> None:
        """Cancel timers and any in-flight fetch"""
        for sub_id in self._sub_ids:
            self._event_bus.unsubscribe(sub_id)
        self._sub_ids.clear()
        with self._lock:
            self._abandon_fetch_locked()
            self._cancel_timers_locked()
        if self._owns_executor:
            self._executor.shutdown(wait=False)
        logger.info("Recommendation scheduler stopped")

    # ===== Read access =====

    @property
    def enabled(self) -> bool:
        with self._lock:
            return self._enabled

    @property
    def state(self) -> SchedulerState:
        with self._lock:
            now = self._timers.now()
            if (
                self._state == SchedulerState.COOLDOWN
                and self._elapsed(self._last_success_at, now) >= self._settings.success_cooldown
            ) or (
                self._state == SchedulerState.BACKOFF
                and self._elapsed(self._last_failure_at, now) >= self._settings.failure_cooldown
            ):
                self._state = SchedulerState.IDLE
            return self._state

    @property
    def quality(self) -> Optional[RecommendationQuality]:
        with self._lock:
            return self._quality

    @property
    def is_fetching(self) -> bool:
        with self._lock:
            return self._fetching

    @property
    def retry_count(self) -> int:
        with self._lock:
            return self._retry_count

    @property
    def recommended_ids(self) -> Set[str]:
        with self._lock:
            return set(self._recommended_ids)

    # ===== Control =====

    def set_enabled(self, enabled: bool) -> None:
        """Toggle the feature; re-enabling clears a halt"""
        with self._lock:
            self._enabled = enabled
            self._abandon_fetch_locked()
            self._cancel_timers_locked()
            self._reset_counters_locked()
            self._state = SchedulerState.IDLE
        logger.info("Recommendations %s", "enabled" if enabled else "disabled")
        self._publish_state()
        if enabled:
            self.maybe_trigger()

    def maybe_trigger(self, snapshot: Optional[QueueSnapshot] = None) -> bool:
        """
        Start a fetch if every trigger condition holds

        Returns:
            bool: Whether a fetch was started
        """
        snapshot = snapshot or self._queue.snapshot()
        with self._lock:
            blocked = self._blocked_reason_locked(snapshot)
            if blocked:
                logger.debug("Recommendation fetch skipped: %s", blocked)
                return False

            upcoming = sum(1 for e in snapshot.upcoming() if e.is_recommendation)
            needed = self._settings.target_upcoming - upcoming
            seeds = select_seeds(snapshot, self._settings.max_seeds)
            if not seeds:
                return False

            self._fetching = True
            self._generation += 1
            generation = self._generation
            cancel_event = threading.Event()
            self._cancel_event = cancel_event
            self._state = SchedulerState.FETCHING
            exclusions = self._build_exclusions(snapshot)
            self._safety_timer = self._timers.schedule(
                self._settings.safety_timeout,
                lambda: self._on_safety_timeout(generation),
                name="recommendation-timeout",
            )

        logger.info(
            "Fetching %d recommendations from %d seed(s)", needed, len(seeds)
        )
        self._publish_state()
        self._executor.submit(self._fetch, generation, seeds, exclusions, needed, cancel_event)
        return True

    # ===== Internals =====

    def _blocked_reason_locked(self, snapshot: QueueSnapshot) -> Optional[str]:
        now = self._timers.now()
        if not self._enabled:
            return "disabled"
        if self._fetching:
            return "fetch in flight"
        if snapshot.current_entry is None:
            return "no current track"
        if snapshot.manually_cleared:
            return "queue was cleared"
        if self._halted:
            return "halted after retries"
        if self._retry_timer is not None and self._retry_timer.active:
            return "retry pending"
        upcoming = sum(1 for e in snapshot.upcoming() if e.is_recommendation)
        if upcoming >= self._settings.target_upcoming:
            return "enough upcoming recommendations"
        if self._elapsed(self._last_failure_at, now) <= self._settings.failure_cooldown:
            return "failure cooldown"
        if self._elapsed(self._last_success_at, now) <= self._settings.success_cooldown:
            return "success cooldown"
        return None

    @staticmethod
    def _elapsed(since: Optional[float], now: float) -> float:
        return math.inf if since is None else now - since

    def _build_exclusions(self, snapshot: QueueSnapshot) -> ExclusionContext:
        user_tracks = [e.track for e in snapshot.entries if e.is_user]
        return ExclusionContext(
            queued_ids=frozenset(e.track.id for e in snapshot.entries),
            recent_ids=frozenset(self._recent_ids),
            recommended_ids=frozenset(self._recommended_ids),
            last_played_id=snapshot.last_played.id if snapshot.last_played else None,
            user_artist_ids=frozenset(a for t in user_tracks for a in t.artist_ids),
            user_groupings=frozenset(g for t in user_tracks for g in t.groupings),
        )

    def _fetch(
        self,
        generation: int,
        seeds: List[Track],
        exclusions: ExclusionContext,
        needed: int,
        cancel_event: threading.Event,
    ) -> None:
        """Worker thread: run the pipeline per seed, then merge"""
        results: List[RecommendationResult] = []
        try:
            for seed in seeds:
                if cancel_event.is_set():
                    return
                result = self._pipeline.recommend(seed, exclusions, cancel_event=cancel_event)
                results.append(result)
                if result.needs_retry:
                    break
        except Exception as e:
            logger.error("Recommendation fetch failed: %s", e, exc_info=True)
            self._finish_failure(generation)
            return

        if cancel_event.is_set():
            return
        if any(r.needs_retry for r in results):
            self._schedule_retry(generation)
            return
        self._apply(generation, results, needed)

    def _apply(self, generation: int, results: List[RecommendationResult], needed: int) -> None:
        picks = spread_artists(distribute_quota(results, needed))
        if not picks:
            logger.info("No recommendations found")
            self._finish_failure(generation)
            return

        quality = (
            RecommendationQuality.GOOD
            if any(r.has_genre_matches for r in results)
            else RecommendationQuality.DEGRADED
        )

        with self._lock:
            if generation != self._generation or not self._fetching:
                logger.debug("Discarding stale recommendation results")
                return
            # Recorded before inserting so the resulting QUEUE_CHANGED does not re-trigger
            self._last_success_at = self._timers.now()
            self._fetching = False
            self._retry_count = 0
            cancel_timer(self._safety_timer)
            self._safety_timer = None
            self._state = SchedulerState.COOLDOWN
            quality_changed = quality != self._quality
            self._quality = quality

        # Fresh queue state: the user may have changed the queue during the fetch
        snapshot = self._queue.snapshot()
        inserted_tracks: List[Track] = []
        if snapshot.current_entry is not None and not snapshot.manually_cleared:
            queued = {e.track.id for e in snapshot.entries}
            room = self._settings.target_upcoming - sum(
                1 for e in snapshot.upcoming() if e.is_recommendation
            )
            fresh = [t for t in picks if t.id not in queued][:max(0, room)]
            inserted = self._queue.add_to_queue(fresh, origin=Origin.RECOMMENDATION)
            inserted_tracks = fresh[:inserted]

        with self._lock:
            self._recommended_ids.update(t.id for t in inserted_tracks)

        logger.info("Added %d recommendations (%s)", len(inserted_tracks), quality.value)
        if inserted_tracks:
            self._event_bus.publish_sync(EventType.RECOMMENDATIONS_ADDED, inserted_tracks)
        if quality_changed:
            self._event_bus.publish_sync(EventType.RECOMMENDATION_QUALITY_CHANGED, quality)
        self._publish_state()

    def _finish_failure(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._fetching = False
            self._last_failure_at = self._timers.now()
            cancel_timer(self._safety_timer)
            self._safety_timer = None
            self._state = SchedulerState.BACKOFF
        self._publish_state()

    def _schedule_retry(self, generation: int) -> None:
        """Catalog resync: back off 15s, 30s, 60s, then give up"""
        quality_failed = False
        with self._lock:
            if generation != self._generation:
                return
            self._fetching = False
            cancel_timer(self._safety_timer)
            self._safety_timer = None
            self._retry_count += 1

            if self._retry_count > self._settings.max_retries:
                self._halted = True
                self._last_failure_at = self._timers.now()
                self._state = SchedulerState.HALTED
                quality_failed = self._quality != RecommendationQuality.FAILED
                self._quality = RecommendationQuality.FAILED
                logger.warning("Catalog still resyncing after %d retries, giving up",
                               self._settings.max_retries)
            else:
                delay = self._settings.backoff_base * 2 ** (self._retry_count - 1)
                self._state = SchedulerState.SCHEDULED_RETRY
                self._retry_timer = self._timers.schedule(
                    delay, self._on_retry_timer, name="recommendation-retry"
                )
                logger.info("Catalog resync detected, retry %d in %.0fs", self._retry_count, delay)

        if quality_failed:
            self._event_bus.publish_sync(
                EventType.RECOMMENDATION_QUALITY_CHANGED, RecommendationQuality.FAILED
            )
        self._publish_state()

    def _on_retry_timer(self) -> None:
        with self._lock:
            self._retry_timer = None
            if self._state == SchedulerState.SCHEDULED_RETRY:
                self._state = SchedulerState.IDLE
        self.maybe_trigger()

    def _on_safety_timeout(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or not self._fetching:
                return
            logger.warning("Recommendation fetch timed out, resetting")
            self._safety_timer = None
            self._abandon_fetch_locked()
            self._state = SchedulerState.IDLE
        self._publish_state()

    def _on_queue_changed(self, snapshot: Any) -> None:
        if not isinstance(snapshot, QueueSnapshot):
            snapshot = self._queue.snapshot()

        entry = snapshot.current_entry
        seq = entry.seq if entry else None
        with self._lock:
            track_changed = seq != self._current_seq
            if track_changed:
                if self._current_track_id is not None:
                    self._recent_ids.append(self._current_track_id)
                self._current_seq = seq
                self._current_track_id = entry.track.id if entry else None
                self._abandon_fetch_locked()
                self._cancel_timers_locked()
                self._reset_counters_locked()
                self._state = SchedulerState.IDLE

        self.maybe_trigger(snapshot)

    def _abandon_fetch_locked(self) -> None:
        if self._cancel_event is not None:
            self._cancel_event.set()
            self._cancel_event = None
        if self._fetching:
            self._generation += 1
            self._fetching = False

    def _cancel_timers_locked(self) -> None:
        cancel_timer(self._retry_timer)
        cancel_timer(self._safety_timer)
        self._retry_timer = None
        self._safety_timer = None

    def _reset_counters_locked(self) -> None:
        self._last_success_at = None
        self._last_failure_at = None
        self._retry_count = 0
        self._halted = False

    def _publish_state(self) -> None:
        self._event_bus.publish_sync(EventType.RECOMMENDATION_STATE_CHANGED, self.state)
