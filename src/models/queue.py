"""
Queue data models

Entries, playback modes and the snapshot used for events and persistence.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from .track import Track


class Origin(Enum):
    """Who put an entry into the queue"""
    USER = "user"
    RECOMMENDATION = "recommendation"


class RepeatMode(Enum):
    """Repeat mode, cycled off -> all -> one -> off"""
    OFF = "off"
    ALL = "all"
    ONE = "one"

    def next(self) -> "RepeatMode":
        order = [RepeatMode.OFF, RepeatMode.ALL, RepeatMode.ONE]
        return order[(order.index(self) + 1) % len(order)]


@dataclass(frozen=True)
class QueueEntry:
    """
    A track in the queue

    ``seq`` is assigned once at insertion and never changes; the standard and
    shuffle orderings are sequences of these numbers.
    """
    track: Track
    origin: Origin = Origin.USER
    seq: int = 0

    @property
    def is_user(self) -> bool:
        return self.origin == Origin.USER

    @property
    def is_recommendation(self) -> bool:
        return self.origin == Origin.RECOMMENDATION

    def to_dict(self) -> dict:
        return {
            'track': self.track.to_dict(),
            'origin': self.origin.value,
            'seq': self.seq,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'QueueEntry':
        return cls(
            track=Track.from_dict(data['track']),
            origin=Origin(data.get('origin', Origin.USER.value)),
            seq=int(data.get('seq', 0)),
        )


@dataclass(frozen=True)
class PlaybackMode:
    """Shuffle / repeat flags"""
    shuffle: bool = False
    repeat: RepeatMode = RepeatMode.OFF


@dataclass
class PlaybackSession:
    """Transient playback telemetry (never persisted except volume)"""
    is_playing: bool = False
    current_time: float = 0.0
    duration: float = 0.0
    volume: float = 1.0


@dataclass(frozen=True)
class QueueSnapshot:
    """
    Immutable view of the queue state

    Published with every QUEUE_CHANGED event and written by the persistence
    service. ``standard_order``/``shuffle_order`` hold entry sequence numbers.
    ``revision`` grows with every published change, so a consumer can tell an
    older snapshot from a newer one that arrived first.
    """
    entries: Tuple[QueueEntry, ...] = ()
    current_index: int = -1
    previous_index: int = -1
    standard_order: Tuple[int, ...] = ()
    shuffle_order: Tuple[int, ...] = ()
    mode: PlaybackMode = field(default_factory=PlaybackMode)
    last_played: Optional[Track] = None
    manually_cleared: bool = False
    revision: int = 0

    @property
    def current_entry(self) -> Optional[QueueEntry]:
        if 0 <= self.current_index < len(self.entries):
            return self.entries[self.current_index]
        return None

    @property
    def tracks(self) -> List[Track]:
        return [e.track for e in self.entries]

    def upcoming(self) -> List[QueueEntry]:
        """Entries strictly after the current one"""
        if self.current_index < 0:
            return list(self.entries)
        return list(self.entries[self.current_index + 1:])

    def to_dict(self) -> dict:
        return {
            'entries': [e.to_dict() for e in self.entries],
            'current_index': self.current_index,
            'previous_index': self.previous_index,
            'standard_order': list(self.standard_order),
            'shuffle_order': list(self.shuffle_order),
            'shuffle': self.mode.shuffle,
            'repeat': self.mode.repeat.value,
            'last_played': self.last_played.to_dict() if self.last_played else None,
            'manually_cleared': self.manually_cleared,
            'revision': self.revision,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'QueueSnapshot':
        last_played = data.get('last_played')
        try:
            repeat = RepeatMode(data.get('repeat', RepeatMode.OFF.value))
        except ValueError:
            repeat = RepeatMode.OFF
        return cls(
            entries=tuple(QueueEntry.from_dict(e) for e in data.get('entries') or []),
            current_index=int(data.get('current_index', -1)),
            previous_index=int(data.get('previous_index', -1)),
            standard_order=tuple(int(s) for s in data.get('standard_order') or []),
            shuffle_order=tuple(int(s) for s in data.get('shuffle_order') or []),
            mode=PlaybackMode(shuffle=bool(data.get('shuffle', False)), repeat=repeat),
            last_played=Track.from_dict(last_played) if last_played else None,
            manually_cleared=bool(data.get('manually_cleared', False)),
            revision=int(data.get('revision', 0)),
        )
