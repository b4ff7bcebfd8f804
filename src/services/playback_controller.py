"""
Playback Controller Module

Owns the single audio resource and translates queue navigation into
load/play/pause/seek. Track completion is reported back to the queue engine.
"""

from dataclasses import replace
from typing import Any, Optional
import logging
import threading

from core.event_bus import EventBus, EventType
from core.ports.audio import AudioResourceError, IAudioResource
from core.ports.catalog import CatalogError, ICatalog
from core.timers import TimerFactory, TimerHandle, cancel_timer
from models.queue import PlaybackSession, RepeatMode
from models.track import Track
from services.queue_engine import QueueEngine

logger = logging.getLogger(__name__)


class PlaybackController:
    """
    Playback Controller

    Reacts to TRACK_CHANGED from the queue engine by starting the new current
    track, and advances the engine when a track finishes. No other component
    touches the audio resource.

    Example:
        controller = PlaybackController(queue, audio, catalog, event_bus)
        controller.attach()

        queue.play_album(tracks)   # controller starts the first track
        controller.toggle()
        controller.seek(30.0)
    """

    def __init__(
        self,
        queue: QueueEngine,
        audio: IAudioResource,
        catalog: ICatalog,
        event_bus: EventBus,
        timers: Optional[TimerFactory] = None,
        report_delay: float = 5.0,
        near_end_seconds: float = 1.0,
        restart_threshold: float = 3.0,
        volume: float = 1.0,
    ):
        self._queue = queue
        self._audio = audio
        self._catalog = catalog
        self._event_bus = event_bus
        self._timers = timers or TimerFactory()
        self._report_delay = report_delay
        self._near_end_seconds = near_end_seconds
        self._restart_threshold = restart_threshold

        # Thread safety lock (audio callbacks arrive on a backend thread)
        self._lock = threading.RLock()

        self._session = PlaybackSession(volume=self._clamp(volume, 0.0, 1.0))
        self._loaded_track: Optional[Track] = None
        # One-shot guard so "near end" and "ended" advance only once per track
        self._completion_handled = False
        self._report_timer: Optional[TimerHandle] = None
        self._sub_ids = []

        self._audio.set_volume(self._session.volume)
        self._audio.set_on_ended(self._on_ended)
        self._audio.set_on_error(self._on_error)
        self._audio.set_on_position(self.on_position)

    def attach(self) -> None:
        """Start following the queue engine's current track"""
        if not self._sub_ids:
            self._sub_ids.append(
                self._event_bus.subscribe(EventType.TRACK_CHANGED, self._on_track_changed)
            )

    @property
    def session(self) -> PlaybackSession:
        with self._lock:
            return replace(self._session)

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._session.is_playing

    @property
    def volume(self) -> float:
        with self._lock:
            return self._session.volume

    @property
    def loaded_track(self) -> Optional[Track]:
        with self._lock:
            return self._loaded_track

    # ===== Transport =====

    def start(self, track: Track) -> bool:
        """
        Load and play a track

        Returns:
            bool: Whether playback started; failures leave the queue untouched
        """
        self._cancel_report()
        with self._lock:
            self._completion_handled = False
            self._loaded_track = None

        try:
            url = self._catalog.get_stream_url(track.id)
            self._audio.load(url)
            self._audio.play()
        except (CatalogError, AudioResourceError) as e:
            logger.error("Failed to start %s: %s", track.display_name, e)
            with self._lock:
                self._session.is_playing = False
            self._event_bus.publish_sync(EventType.PLAYBACK_ERROR, {
                "track": track,
                "error": str(e),
            })
            self._publish_state()
            return False

        with self._lock:
            self._loaded_track = track
            self._session.is_playing = True
            self._session.current_time = 0.0
            self._session.duration = self._audio.duration or track.duration_seconds
            self._report_timer = self._timers.schedule(
                self._report_delay, lambda: self._report_play(track), name="play-report"
            )

        logger.info("Playing: %s", track.display_name)
        self._publish_state()
        return True

    def pause(self) -> None:
        with self._lock:
            if not self._session.is_playing:
                return
        try:
            self._audio.pause()
        except AudioResourceError as e:
            self._on_error(str(e))
            return
        with self._lock:
            self._session.is_playing = False
        self._publish_state()

    def resume(self) -> bool:
        """Resume playback; with nothing loaded, start the queue's current track"""
        with self._lock:
            loaded = self._loaded_track
            playing = self._session.is_playing
        if playing:
            return True
        if loaded is None:
            track = self._queue.current_track
            if track is None:
                return False
            return self.start(track)

        try:
            self._audio.play()
        except AudioResourceError as e:
            self._on_error(str(e))
            return False
        with self._lock:
            self._session.is_playing = True
        self._publish_state()
        return True

    def toggle(self) -> None:
        """Toggle play/pause"""
        if self.is_playing:
            self.pause()
        else:
            self.resume()

    def stop(self) -> None:
        self._cancel_report()
        self._audio.stop()
        with self._lock:
            self._loaded_track = None
            self._session.is_playing = False
            self._session.current_time = 0.0
        self._publish_state()

    def seek(self, position: float) -> None:
        """
        Seek to a position

        Args:
            position: Target position in seconds, clamped to [0, duration]
        """
        with self._lock:
            duration = self._session.duration or self._audio.duration
            position = self._clamp(position, 0.0, duration) if duration else max(0.0, position)
            self._audio.seek(position)
            self._session.current_time = position
        self._event_bus.publish_sync(EventType.POSITION_CHANGED, {
            "position": position,
            "duration": duration,
        })

    def set_volume(self, volume: float) -> None:
        """
        Set volume

        Args:
            volume: Volume value (0.0 - 1.0)
        """
        volume = self._clamp(volume, 0.0, 1.0)
        with self._lock:
            self._audio.set_volume(volume)
            self._session.volume = volume
        self._event_bus.publish_sync(EventType.VOLUME_CHANGED, volume)

    def next(self) -> bool:
        """Skip to the next queue entry"""
        return self._queue.advance()

    def previous(self) -> bool:
        """
        Previous track

        Restarts the current track instead when it has played for longer than
        the restart threshold.
        """
        if self.session.current_time > self._restart_threshold:
            self.seek(0.0)
            return True
        if self._queue.retreat():
            return True
        if self.loaded_track is not None:
            self.seek(0.0)
            return True
        return False

    # ===== Telemetry and completion =====

    def on_position(self, position: float, duration: float) -> None:
        """Position update from the audio resource"""
        with self._lock:
            if self._loaded_track is None:
                return
            self._session.current_time = position
            if duration:
                self._session.duration = duration
            duration = self._session.duration
        self._event_bus.publish_sync(EventType.POSITION_CHANGED, {
            "position": position,
            "duration": duration,
        })
        if duration > 0 and duration - position <= self._near_end_seconds:
            self._complete(near_end=True)

    def _on_ended(self) -> None:
        self._complete(near_end=False)

    def _complete(self, near_end: bool) -> None:
        repeat = self._queue.mode.repeat
        with self._lock:
            if self._completion_handled or self._loaded_track is None:
                return
            if near_end and repeat != RepeatMode.ONE and not self._queue.has_next:
                # Nothing to advance to: let the last track play out
                return
            self._completion_handled = True
            track = self._loaded_track

        logger.debug("Track finished (%s): %s", "near end" if near_end else "ended", track.id)

        if repeat == RepeatMode.ONE:
            self._restart(track)
            return
        if not self._queue.advance():
            logger.info("End of queue reached")
            self.stop()

    def _restart(self, track: Track) -> None:
        self._cancel_report()
        try:
            self._audio.seek(0.0)
            self._audio.play()
        except AudioResourceError as e:
            self._on_error(str(e))
            return
        with self._lock:
            self._completion_handled = False
            self._session.current_time = 0.0
            self._session.is_playing = True
            self._report_timer = self._timers.schedule(
                self._report_delay, lambda: self._report_play(track), name="play-report"
            )
        self._publish_state()

    def _on_track_changed(self, data: Any) -> None:
        track = data.get("track") if isinstance(data, dict) else None
        if track is None:
            self.stop()
        else:
            self.start(track)

    def _on_error(self, error: str) -> None:
        """Error callback: pause and report, the queue stays as it is"""
        logger.error("Audio resource error: %s", error)
        with self._lock:
            track = self._loaded_track
            self._session.is_playing = False
        try:
            self._audio.pause()
        except AudioResourceError as e:
            logger.debug("Pause after error failed: %s", e)
        self._event_bus.publish_sync(EventType.PLAYBACK_ERROR, {
            "track": track,
            "error": error,
        })
        self._publish_state()

    def _report_play(self, track: Track) -> None:
        """Debounced play report, fired once the track has played long enough"""
        try:
            self._catalog.mark_played(track.id)
        except CatalogError as e:
            logger.warning("Failed to report play of %s: %s", track.id, e)
            return
        logger.debug("Reported play: %s", track.id)
        self._event_bus.publish_sync(EventType.TRACK_REPORTED, track.id)

    def _cancel_report(self) -> None:
        with self._lock:
            cancel_timer(self._report_timer)
            self._report_timer = None

    def _publish_state(self) -> None:
        self._event_bus.publish_sync(EventType.PLAYBACK_STATE_CHANGED, self.session)

    @staticmethod
    def _clamp(value: float, low: float, high: float) -> float:
        return max(low, min(high, float(value)))

    def shutdown(self) -> None:
        """Clean up resources"""
        for sub_id in self._sub_ids:
            self._event_bus.unsubscribe(sub_id)
        self._sub_ids.clear()
        self._cancel_report()
        self._audio.set_on_ended(None)
        self._audio.set_on_error(None)
        self._audio.set_on_position(None)
        self._audio.stop()
        with self._lock:
            self._loaded_track = None
            self._session.is_playing = False
