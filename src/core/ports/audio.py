# -*- coding: utf-8 -*-
"""
Audio Resource Port Interface

Defines an abstract interface for the single audio output, ensuring the
playback controller does not depend on a specific audio backend.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional, Protocol, runtime_checkable


class PlayerState(Enum):
    """Player Status"""
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERROR = "error"


class AudioResourceError(Exception):
    """The audio resource could not load or play a source"""


@runtime_checkable
class IAudioResource(Protocol):
    """Audio Resource Interface

    Times are in seconds. Callbacks may fire from a backend thread.
    """

    @property
    def state(self) -> PlayerState:
        """Current playback state"""
        ...

    @property
    def position(self) -> float:
        """Current position in seconds"""
        ...

    @property
    def duration(self) -> float:
        """Duration of the loaded source in seconds (0 if unknown)"""
        ...

    def load(self, url: str) -> None:
        """Load a source

        Raises:
            AudioResourceError: The source cannot be loaded
        """
        ...

    def play(self) -> None:
        """Start or resume playback

        Raises:
            AudioResourceError: Playback could not start
        """
        ...

    def pause(self) -> None:
        """Pause playback"""
        ...

    def stop(self) -> None:
        """Stop playback and release the source"""
        ...

    def seek(self, position: float) -> None:
        """Seek to a position in seconds"""
        ...

    def set_volume(self, volume: float) -> None:
        """Set volume (0.0 - 1.0)"""
        ...

    def set_on_ended(self, callback: Optional[Callable[[], None]]) -> None:
        """Callback fired when the source plays to its end"""
        ...

    def set_on_error(self, callback: Optional[Callable[[str], None]]) -> None:
        """Callback fired on a decode/network error"""
        ...

    def set_on_position(self, callback: Optional[Callable[[float, float], None]]) -> None:
        """Callback fired periodically with (position, duration)"""
        ...
