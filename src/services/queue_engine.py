"""
Queue Engine Module

The ordered playback queue: mutation, navigation, shuffle/repeat and capacity
enforcement. Knows nothing about audio or recommendations; it publishes
QUEUE_CHANGED after every mutation and TRACK_CHANGED whenever the current
entry moves, and the playback controller and recommendation scheduler react
to those events.
"""

from dataclasses import replace
from typing import Iterable, List, Optional, Sequence
import logging
import random
import threading

from core.event_bus import EventBus, EventType
from models.queue import (
    Origin,
    PlaybackMode,
    QueueEntry,
    QueueSnapshot,
    RepeatMode,
)
from models.track import Track

logger = logging.getLogger(__name__)


class QueueEngine:
    """
    Queue Engine

    Entries carry a sequence number assigned at insertion. The ordering that
    is currently active (standard or shuffle) is always the order of the
    user-origin entries in the queue itself; only the inactive ordering is
    stored, so the two can never drift apart.

    Invalid operations (bad indices, cross-origin reorder) are no-ops that
    return False rather than raising.

    Example:
        queue = QueueEngine(event_bus=bus)
        queue.play_album(tracks)
        queue.add_to_queue([track], play_next=True)
        queue.advance()
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        capacity: int = 1000,
        keep_previous: int = 5,
        rng: Optional[random.Random] = None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._event_bus = event_bus or EventBus()
        self._capacity = capacity
        self._keep_previous = max(0, keep_previous)
        self._rng = rng or random.Random()

        # Thread safety lock (protects every field below)
        self._lock = threading.RLock()

        self._entries: List[QueueEntry] = []
        self._current_index: int = -1
        self._previous_index: int = -1
        # Index the queue continues from after the current entry was removed
        self._resume_index: Optional[int] = None

        # Sequence numbers of user entries in the ordering that is NOT active
        self._inactive_order: List[int] = []
        self._next_seq: int = 0

        self._shuffle: bool = False
        self._repeat: RepeatMode = RepeatMode.OFF
        self._last_played: Optional[Track] = None
        self._manually_cleared: bool = False
        # Bumped under the lock for every published snapshot
        self._revision: int = 0

    # ===== Read access =====

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def entries(self) -> List[QueueEntry]:
        with self._lock:
            return list(self._entries)

    @property
    def tracks(self) -> List[Track]:
        with self._lock:
            return [e.track for e in self._entries]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def current_index(self) -> int:
        with self._lock:
            return self._current_index

    @property
    def previous_index(self) -> int:
        with self._lock:
            return self._previous_index

    @property
    def current_entry(self) -> Optional[QueueEntry]:
        with self._lock:
            if 0 <= self._current_index < len(self._entries):
                return self._entries[self._current_index]
            return None

    @property
    def current_track(self) -> Optional[Track]:
        entry = self.current_entry
        return entry.track if entry else None

    @property
    def last_played(self) -> Optional[Track]:
        """The most recently departed track, kept for display after removal or clear"""
        with self._lock:
            return self._last_played

    @property
    def mode(self) -> PlaybackMode:
        with self._lock:
            return PlaybackMode(shuffle=self._shuffle, repeat=self._repeat)

    @property
    def manually_cleared(self) -> bool:
        with self._lock:
            return self._manually_cleared

    @property
    def has_next(self) -> bool:
        with self._lock:
            if not self._entries:
                return False
            if self._repeat == RepeatMode.ALL:
                return True
            return self._next_index_locked() is not None

    @property
    def has_previous(self) -> bool:
        with self._lock:
            if not self._entries:
                return False
            return self._current_index > 0 or self._repeat == RepeatMode.ALL

    @property
    def standard_order(self) -> List[str]:
        """Track ids of user entries in standard order"""
        with self._lock:
            return self._ids_for(self._standard_seqs_locked())

    @property
    def shuffle_order(self) -> List[str]:
        """Track ids of user entries in shuffle order"""
        with self._lock:
            return self._ids_for(self._shuffle_seqs_locked())

    def upcoming_recommendation_count(self) -> int:
        """Recommendation entries strictly after the current entry"""
        with self._lock:
            start = self._upcoming_start_locked()
            return sum(1 for e in self._entries[start:] if e.is_recommendation)

    def snapshot(self) -> QueueSnapshot:
        with self._lock:
            return self._snapshot_locked()

    # ===== Playback initiation =====

    def play_track(self, track: Track, context_queue: Optional[Sequence[Track]] = None) -> None:
        """
        Replace the queue and start playing ``track``

        Args:
            track: Track to play
            context_queue: Ordered tracks to queue around it (e.g. the list the
                user clicked in); the track is prepended if it is not part of it
        """
        tracks = list(context_queue) if context_queue else [track]
        start_index = next((i for i, t in enumerate(tracks) if t.id == track.id), -1)
        if start_index < 0:
            tracks.insert(0, track)
            start_index = 0
        self._load(tracks, start_index)

    def play_album(self, tracks: Sequence[Track], start_index: int = 0) -> None:
        """Replace the queue with an album and start at ``start_index``"""
        self._load(list(tracks), start_index)

    def shuffle_play(self, tracks: Sequence[Track]) -> None:
        """Replace the queue with a shuffled copy of ``tracks``

        Shuffle mode stays off because the order is already random.
        """
        shuffled = list(tracks)
        self._rng.shuffle(shuffled)
        self._load(shuffled, 0)

    def _load(self, tracks: List[Track], start_index: int) -> None:
        if not tracks:
            self.clear()
            return

        with self._lock:
            start_index = min(max(0, start_index), len(tracks) - 1)
            self._depart_locked()

            entries = self._make_entries(tracks, Origin.USER)
            if len(entries) > self._capacity:
                # Same rule as the capacity trim, plus a hard cut at the tail
                first = max(0, start_index - self._keep_previous)
                entries = entries[first:first + self._capacity]
                start_index -= first
                logger.warning("Queue truncated to capacity %d on load", self._capacity)

            self._entries = entries
            self._current_index = start_index
            self._previous_index = -1
            self._resume_index = None
            self._inactive_order = [e.seq for e in entries]
            self._shuffle = False
            self._manually_cleared = False
            logger.info("Queue loaded: %d tracks, starting at %d", len(entries), start_index)

        self._notify(reason="play")

    # ===== Mutation =====

    def add_to_queue(
        self,
        tracks: Iterable[Track],
        play_next: bool = False,
        origin: Origin = Origin.USER,
    ) -> int:
        """
        Insert tracks into the queue

        Args:
            tracks: Tracks to insert
            play_next: Insert immediately after the current entry
            origin: USER for explicit adds, RECOMMENDATION for the scheduler

        Returns:
            int: Number of tracks actually inserted (capacity may cut the run short)
        """
        tracks = list(tracks)
        if not tracks:
            return 0

        with self._lock:
            room = self._insert_room_locked()
            if room < len(tracks):
                logger.warning(
                    "Queue full: inserting %d of %d tracks", max(0, room), len(tracks)
                )
                tracks = tracks[:max(0, room)]
            if not tracks:
                return 0

            new_entries = self._make_entries(tracks, origin)
            new_user_seqs = [e.seq for e in new_entries if e.is_user]

            if play_next:
                ordered = list(new_entries)
                if self._shuffle and len(ordered) > 1:
                    self._rng.shuffle(ordered)
                pos = self._upcoming_start_locked()
                # The inactive ordering gets the run in its given order, after the
                # user entry that anchors the insertion point
                self._insert_inactive_after_anchor(pos, new_user_seqs)
                self._insert_entries(pos, ordered)
            else:
                if origin == Origin.USER:
                    pos = self._user_append_position()
                else:
                    pos = len(self._entries)
                self._inactive_order.extend(new_user_seqs)
                self._insert_entries(pos, new_entries)

            if origin == Origin.USER:
                self._manually_cleared = False

            self._enforce_capacity_locked()
            logger.debug(
                "Added %d %s tracks (play_next=%s), queue length %d",
                len(new_entries), origin.value, play_next, len(self._entries),
            )

        self._notify()
        return len(new_entries)

    def play_next(self, tracks: Iterable[Track]) -> int:
        """Insert tracks right after the current entry"""
        return self.add_to_queue(tracks, play_next=True)

    def remove_at(self, index: int) -> bool:
        """
        Remove the entry at ``index``

        Returns:
            bool: False when the index is out of range (nothing changes)
        """
        current_removed = False
        with self._lock:
            if not 0 <= index < len(self._entries):
                return False

            entry = self._entries.pop(index)
            self._inactive_order = [s for s in self._inactive_order if s != entry.seq]

            if index < self._current_index:
                self._current_index -= 1
            elif index == self._current_index:
                self._last_played = entry.track
                self._current_index = -1
                self._resume_index = index
                current_removed = True

            if index < self._previous_index:
                self._previous_index -= 1
            elif index == self._previous_index:
                self._previous_index = -1

            if not current_removed and self._resume_index is not None and index < self._resume_index:
                self._resume_index -= 1

            logger.debug("Removed %s from queue at %d", entry.track.id, index)

        self._notify(reason="removed" if current_removed else None)
        return True

    def reorder(self, from_index: int, to_index: int) -> bool:
        """
        Move an entry within its own origin group

        Returns:
            bool: False for equal/invalid indices or a cross-origin move
        """
        with self._lock:
            size = len(self._entries)
            if from_index == to_index:
                return False
            if not (0 <= from_index < size and 0 <= to_index < size):
                return False
            if self._entries[from_index].origin != self._entries[to_index].origin:
                return False

            entry = self._entries.pop(from_index)
            self._entries.insert(to_index, entry)

            def remap(i: int) -> int:
                if i < 0:
                    return i
                if i == from_index:
                    return to_index
                if from_index < i <= to_index:
                    return i - 1
                if to_index <= i < from_index:
                    return i + 1
                return i

            self._current_index = remap(self._current_index)
            self._previous_index = remap(self._previous_index)
            if self._resume_index is not None:
                self._resume_index = remap(self._resume_index)

        self._notify()
        return True

    def clear(self) -> None:
        """
        Empty the queue

        The last played track is kept for display, and the queue is flagged as
        manually cleared so it is not immediately refilled with recommendations.
        """
        with self._lock:
            self._depart_locked()
            self._entries = []
            self._current_index = -1
            self._previous_index = -1
            self._resume_index = None
            self._inactive_order = []
            self._manually_cleared = True
            logger.info("Queue cleared")

        self._notify(reason="cleared")

    def replace_track(self, track: Track) -> bool:
        """Swap in fresh metadata for every entry holding ``track.id``"""
        with self._lock:
            changed = False
            for i, entry in enumerate(self._entries):
                if entry.track.id == track.id and entry.track != track:
                    self._entries[i] = replace(entry, track=track)
                    changed = True
        if changed:
            self._notify()
        return changed

    # ===== Modes =====

    def toggle_shuffle(self) -> bool:
        """
        Toggle shuffle for the upcoming user entries

        Only unplayed user entries move. Entries up to and including the
        current one, or before the resume slot once it was removed, keep their
        places, and recommendation entries keep their relative order behind
        the user entries.

        Returns:
            bool: The new shuffle state
        """
        with self._lock:
            cut = self._upcoming_start_locked()
            prefix = self._entries[:cut]
            upcoming = self._entries[cut:]
            upcoming_user = [e for e in upcoming if e.is_user]
            upcoming_recs = [e for e in upcoming if e.is_recommendation]
            active_order = self._active_seqs_locked()
            previous_seq = self._seq_at(self._previous_index)

            if not self._shuffle:
                reordered = list(upcoming_user)
                self._rng.shuffle(reordered)
            else:
                rank = {seq: i for i, seq in enumerate(self._inactive_order)}
                reordered = sorted(
                    upcoming_user, key=lambda e: rank.get(e.seq, len(rank) + e.seq)
                )

            self._entries = prefix + reordered + upcoming_recs
            self._inactive_order = active_order
            self._shuffle = not self._shuffle
            self._previous_index = self._index_of_seq(previous_seq)
            logger.info("Shuffle %s", "enabled" if self._shuffle else "disabled")
            shuffle = self._shuffle

        self._notify()
        return shuffle

    def toggle_repeat(self) -> RepeatMode:
        """Cycle repeat: off -> all -> one -> off"""
        with self._lock:
            self._repeat = self._repeat.next()
            repeat = self._repeat
        logger.info("Repeat mode: %s", repeat.value)
        self._notify()
        return repeat

    # ===== Navigation =====

    def advance(self) -> bool:
        """
        Move to the next entry

        Wraps to the first entry when repeat is ALL; otherwise a no-op at the end.
        """
        with self._lock:
            if not self._entries:
                return False
            target = self._next_index_locked()
            if target is None:
                if self._repeat != RepeatMode.ALL:
                    return False
                target = 0
            self._move_to_locked(target)

        self._notify(reason="advance")
        return True

    def retreat(self) -> bool:
        """
        Move to the previous entry

        Wraps to the last entry when repeat is ALL; otherwise a no-op at the start.
        """
        with self._lock:
            if not self._entries:
                return False
            if self._current_index > 0:
                target = self._current_index - 1
            elif self._repeat == RepeatMode.ALL:
                target = len(self._entries) - 1
            else:
                return False
            self._move_to_locked(target)

        self._notify(reason="retreat")
        return True

    def skip_to(self, index: int) -> bool:
        """Jump to ``index``; out of range is a no-op"""
        with self._lock:
            if not 0 <= index < len(self._entries):
                return False
            self._move_to_locked(index)

        self._notify(reason="skip")
        return True

    # ===== Persistence =====

    def restore(self, snapshot: QueueSnapshot) -> None:
        """
        Load a persisted snapshot

        Order arrays are repaired so they cover exactly the user entries, and
        indices are clamped. Does not publish TRACK_CHANGED: a restored queue
        starts paused.
        """
        with self._lock:
            entries = list(snapshot.entries)[-self._capacity:] if snapshot.entries else []
            dropped = len(snapshot.entries) - len(entries)
            seqs = [e.seq for e in entries]
            if len(set(seqs)) != len(seqs):
                # Duplicate sequence numbers: renumber in queue order
                entries = [replace(e, seq=i) for i, e in enumerate(entries)]
            user_seqs = [e.seq for e in entries if e.is_user]

            stored = snapshot.standard_order if snapshot.mode.shuffle else snapshot.shuffle_order
            user_set = set(user_seqs)
            inactive = []
            for seq in stored:
                if seq in user_set and seq not in inactive:
                    inactive.append(seq)
            inactive.extend(s for s in user_seqs if s not in inactive)

            def clamp(i: int) -> int:
                i -= dropped
                return i if 0 <= i < len(entries) else -1

            self._entries = entries
            self._current_index = clamp(snapshot.current_index)
            self._previous_index = clamp(snapshot.previous_index)
            self._resume_index = None
            self._inactive_order = inactive
            self._next_seq = max([e.seq for e in entries], default=-1) + 1
            self._shuffle = snapshot.mode.shuffle
            self._repeat = snapshot.mode.repeat
            self._last_played = snapshot.last_played
            self._manually_cleared = snapshot.manually_cleared
            self._revision = max(self._revision, snapshot.revision)
            logger.info("Queue restored: %d entries, current %d", len(entries), self._current_index)

        self._notify()

    # ===== Internals =====

    def _make_entries(self, tracks: Sequence[Track], origin: Origin) -> List[QueueEntry]:
        entries = []
        for track in tracks:
            entries.append(QueueEntry(track=track, origin=origin, seq=self._next_seq))
            self._next_seq += 1
        return entries

    def _insert_entries(self, pos: int, new_entries: List[QueueEntry]) -> None:
        count = len(new_entries)
        self._entries[pos:pos] = new_entries
        if self._current_index >= pos:
            self._current_index += count
        if self._previous_index >= pos:
            self._previous_index += count
        if self._resume_index is not None and self._resume_index > pos:
            self._resume_index += count

    def _user_append_position(self) -> int:
        """
        Where an appended user track goes

        After the last user entry that follows the current one, so new user
        tracks never end up behind the trailing run of recommendations. With no
        upcoming user entries, at the first unplayed slot.
        """
        start = self._upcoming_start_locked()
        for i in range(len(self._entries) - 1, start - 1, -1):
            if self._entries[i].is_user:
                return i + 1
        return start

    def _insert_inactive_after_anchor(self, pos: int, seqs: List[int]) -> None:
        if not seqs:
            return
        anchor = None
        for i in range(min(pos, len(self._entries)) - 1, -1, -1):
            if self._entries[i].is_user:
                anchor = self._entries[i].seq
                break
        if anchor is not None and anchor in self._inactive_order:
            at = self._inactive_order.index(anchor) + 1
        else:
            at = 0
        self._inactive_order[at:at] = seqs

    def _insert_room_locked(self) -> int:
        """How many entries can be inserted while staying within capacity"""
        if self._current_index < 0:
            return self._capacity - len(self._entries)
        before = self._current_index
        kept_before = min(before, self._keep_previous)
        after = len(self._entries) - before - 1
        return self._capacity - (kept_before + 1 + after)

    def _enforce_capacity_locked(self) -> None:
        """
        Trim the played part of the queue when it grows past capacity

        Keeps the newest ``keep_previous`` entries before the current one, the
        current entry and everything after it.
        """
        if len(self._entries) <= self._capacity or self._current_index < 0:
            return

        before = self._entries[:self._current_index]
        keep = before[len(before) - self._keep_previous:] if self._keep_previous else []
        dropped = before[:len(before) - len(keep)]
        if not dropped:
            return

        shift = len(dropped)
        dropped_seqs = {e.seq for e in dropped}
        self._entries = keep + self._entries[self._current_index:]
        self._current_index -= shift
        self._previous_index = self._previous_index - shift if self._previous_index >= shift else -1
        if self._resume_index is not None:
            self._resume_index = max(0, self._resume_index - shift)
        self._inactive_order = [s for s in self._inactive_order if s not in dropped_seqs]
        logger.info("Queue over capacity: dropped %d played entries", shift)

    def _next_index_locked(self) -> Optional[int]:
        if self._current_index < 0:
            target = self._resume_index if self._resume_index is not None else 0
        else:
            target = self._current_index + 1
        return target if target < len(self._entries) else None

    def _upcoming_start_locked(self) -> int:
        """First index that has not played yet"""
        if self._current_index >= 0:
            return self._current_index + 1
        if self._resume_index is not None:
            return min(self._resume_index, len(self._entries))
        return 0

    def _move_to_locked(self, index: int) -> None:
        self._depart_locked()
        self._previous_index = self._current_index
        self._current_index = index
        self._resume_index = None
        self._regroup_upcoming_locked()

    def _regroup_upcoming_locked(self) -> None:
        """
        Move upcoming user entries ahead of upcoming recommendations

        Moving back can turn a played recommendation into an upcoming one that
        sits in front of user entries queued after it. Relative order within
        each origin is kept, so both orderings stay valid.
        """
        start = self._upcoming_start_locked()
        upcoming = self._entries[start:]
        regrouped = [e for e in upcoming if e.is_user] + [e for e in upcoming if e.is_recommendation]
        if regrouped == upcoming:
            return
        previous_seq = self._seq_at(self._previous_index)
        self._entries[start:] = regrouped
        self._previous_index = self._index_of_seq(previous_seq)
        logger.debug("Moved %d upcoming user entries ahead of recommendations",
                     sum(1 for e in upcoming if e.is_user))

    def _depart_locked(self) -> None:
        if 0 <= self._current_index < len(self._entries):
            self._last_played = self._entries[self._current_index].track

    def _active_seqs_locked(self) -> List[int]:
        return [e.seq for e in self._entries if e.is_user]

    def _standard_seqs_locked(self) -> List[int]:
        return list(self._inactive_order) if self._shuffle else self._active_seqs_locked()

    def _shuffle_seqs_locked(self) -> List[int]:
        return self._active_seqs_locked() if self._shuffle else list(self._inactive_order)

    def _ids_for(self, seqs: List[int]) -> List[str]:
        by_seq = {e.seq: e.track.id for e in self._entries}
        return [by_seq[s] for s in seqs if s in by_seq]

    def _seq_at(self, index: int) -> Optional[int]:
        if 0 <= index < len(self._entries):
            return self._entries[index].seq
        return None

    def _index_of_seq(self, seq: Optional[int]) -> int:
        if seq is None:
            return -1
        for i, entry in enumerate(self._entries):
            if entry.seq == seq:
                return i
        return -1

    def _snapshot_locked(self) -> QueueSnapshot:
        return QueueSnapshot(
            entries=tuple(self._entries),
            current_index=self._current_index,
            previous_index=self._previous_index,
            standard_order=tuple(self._standard_seqs_locked()),
            shuffle_order=tuple(self._shuffle_seqs_locked()),
            mode=PlaybackMode(shuffle=self._shuffle, repeat=self._repeat),
            last_played=self._last_played,
            manually_cleared=self._manually_cleared,
            revision=self._revision,
        )

    def _notify(self, reason: Optional[str] = None) -> None:
        """Publish the new state; called after the lock is released"""
        with self._lock:
            self._revision += 1
            snapshot = self._snapshot_locked()
        self._event_bus.publish_sync(EventType.QUEUE_CHANGED, snapshot)
        if reason is not None:
            self._event_bus.publish_sync(EventType.TRACK_CHANGED, {
                "track": snapshot.current_entry.track if snapshot.current_entry else None,
                "index": snapshot.current_index,
                "reason": reason,
            })
