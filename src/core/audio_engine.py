"""
Audio Engine Module

Base class for audio resources plus a silent, clock-driven implementation used
for headless runs and tests. Real backends implement the same IAudioResource
port.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional
import logging
import threading

from core.ports.audio import AudioResourceError, PlayerState
from core.timers import TimerFactory, TimerHandle, cancel_timer

logger = logging.getLogger(__name__)


class AudioResourceBase(ABC):
    """
    Abstract Base Class for Audio Resources

    Holds state, volume and the three callbacks; subclasses implement the
    transport.
    """

    def __init__(self):
        self._state: PlayerState = PlayerState.IDLE
        self._volume: float = 1.0
        self._source: Optional[str] = None
        self._on_ended: Optional[Callable[[], None]] = None
        self._on_error: Optional[Callable[[str], None]] = None
        self._on_position: Optional[Callable[[float, float], None]] = None

    @property
    def state(self) -> PlayerState:
        """Get the current playback state"""
        return self._state

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def source(self) -> Optional[str]:
        """The currently loaded URL"""
        return self._source

    @property
    @abstractmethod
    def position(self) -> float:
        pass

    @property
    @abstractmethod
    def duration(self) -> float:
        pass

    @abstractmethod
    def load(self, url: str) -> None:
        pass

    @abstractmethod
    def play(self) -> None:
        pass

    @abstractmethod
    def pause(self) -> None:
        pass

    @abstractmethod
    def stop(self) -> None:
        pass

    @abstractmethod
    def seek(self, position: float) -> None:
        pass

    def set_volume(self, volume: float) -> None:
        """
        Set the volume

        Args:
            volume: Volume value (0.0 - 1.0)
        """
        self._volume = max(0.0, min(1.0, volume))

    def set_on_ended(self, callback: Optional[Callable[[], None]]) -> None:
        self._on_ended = callback

    def set_on_error(self, callback: Optional[Callable[[str], None]]) -> None:
        self._on_error = callback

    def set_on_position(self, callback: Optional[Callable[[float, float], None]]) -> None:
        self._on_position = callback

    def _emit_ended(self) -> None:
        if self._on_ended:
            self._on_ended()

    def _emit_error(self, error: str) -> None:
        logger.error("Audio error: %s", error)
        if self._on_error:
            self._on_error(error)

    def _emit_position(self, position: float, duration: float) -> None:
        if self._on_position:
            self._on_position(position, duration)


class SilentAudioResource(AudioResourceBase):
    """
    Audio resource that plays nothing but keeps time

    Position advances by ``tick_seconds`` on every timer tick while playing, and
    "ended" fires once the duration is reached. Durations come from
    ``duration_resolver`` (URL -> seconds); an unknown duration never ends.
    """

    def __init__(
        self,
        duration_resolver: Optional[Callable[[str], float]] = None,
        timers: Optional[TimerFactory] = None,
        tick_seconds: float = 0.5,
    ):
        super().__init__()
        self._duration_resolver = duration_resolver
        self._timers = timers or TimerFactory()
        self._tick_seconds = tick_seconds
        self._lock = threading.RLock()
        self._position = 0.0
        self._duration = 0.0
        self._tick: Optional[TimerHandle] = None

    @property
    def position(self) -> float:
        with self._lock:
            return self._position

    @property
    def duration(self) -> float:
        with self._lock:
            return self._duration

    def load(self, url: str) -> None:
        if not url:
            raise AudioResourceError("Empty source URL")
        with self._lock:
            self._stop_ticking()
            self._state = PlayerState.LOADING
            self._source = url
            self._position = 0.0
            try:
                self._duration = float(self._duration_resolver(url)) if self._duration_resolver else 0.0
            except (TypeError, ValueError) as e:
                logger.debug("Unknown duration for %s: %s", url, e)
                self._duration = 0.0
            self._state = PlayerState.STOPPED
        logger.debug("Loaded %s (%.1fs)", url, self._duration)

    def play(self) -> None:
        with self._lock:
            if self._source is None:
                raise AudioResourceError("Nothing loaded")
            self._state = PlayerState.PLAYING
            self._schedule_tick()

    def pause(self) -> None:
        with self._lock:
            if self._state == PlayerState.PLAYING:
                self._state = PlayerState.PAUSED
            self._stop_ticking()

    def stop(self) -> None:
        with self._lock:
            self._stop_ticking()
            self._state = PlayerState.STOPPED
            self._source = None
            self._position = 0.0
            self._duration = 0.0

    def seek(self, position: float) -> None:
        with self._lock:
            upper = self._duration if self._duration else max(0.0, position)
            self._position = max(0.0, min(upper, position))

    def _schedule_tick(self) -> None:
        self._stop_ticking()
        self._tick = self._timers.schedule(self._tick_seconds, self._on_tick, name="audio-tick")

    def _stop_ticking(self) -> None:
        cancel_timer(self._tick)
        self._tick = None

    def _on_tick(self) -> None:
        with self._lock:
            if self._state != PlayerState.PLAYING:
                return
            self._position += self._tick_seconds
            ended = bool(self._duration) and self._position >= self._duration
            if ended:
                self._position = self._duration
                self._state = PlayerState.STOPPED
                self._tick = None
            else:
                self._schedule_tick()
            position, duration, source = self._position, self._duration, self._source

        self._emit_position(position, duration)
        # A position callback may already have moved on to another source
        if ended and self.source == source:
            self._emit_ended()
