"""
Queue Engine Tests
"""

import random

import pytest


def _tracks(*ids):
    from models.track import Track

    return [Track(id=i, name=f"Song {i}") for i in ids]


def _ids(queue):
    return [e.track.id for e in queue.entries]


def _origins(queue):
    return [e.origin.value for e in queue.entries]


def _assert_orders_consistent(queue):
    """Both order arrays cover exactly the user entries"""
    user_ids = sorted(e.track.id for e in queue.entries if e.is_user)
    assert sorted(queue.standard_order) == user_ids
    assert sorted(queue.shuffle_order) == user_ids


def _assert_recommendations_trail(queue):
    """No recommendation entry sits ahead of an upcoming user entry"""
    upcoming = queue.entries[queue.current_index + 1:] if queue.current_index >= 0 else queue.entries
    seen_rec = False
    for entry in upcoming:
        if entry.is_recommendation:
            seen_rec = True
        else:
            assert not seen_rec, "user entry stranded behind recommendations"


class TestPlaybackInitiation:
    """play_track / play_album / shuffle_play"""

    def setup_method(self):
        from core.event_bus import EventBus, EventType
        from services.queue_engine import QueueEngine

        self.bus = EventBus()
        self.events = []
        self.bus.subscribe(EventType.TRACK_CHANGED, self.events.append)
        self.queue = QueueEngine(event_bus=self.bus, rng=random.Random(3))

    def test_play_album_starts_at_index(self):
        self.queue.play_album(_tracks("a", "b", "c"), start_index=1)

        assert _ids(self.queue) == ["a", "b", "c"]
        assert self.queue.current_index == 1
        assert self.queue.current_track.id == "b"
        assert set(_origins(self.queue)) == {"user"}
        assert self.events[-1]["reason"] == "play"
        assert self.events[-1]["track"].id == "b"

    def test_play_album_clamps_start_index(self):
        self.queue.play_album(_tracks("a", "b"), start_index=9)
        assert self.queue.current_index == 1

    def test_play_track_locates_track_in_context(self):
        context = _tracks("a", "b", "c")
        self.queue.play_track(context[2], context)

        assert _ids(self.queue) == ["a", "b", "c"]
        assert self.queue.current_index == 2

    def test_play_track_prepends_missing_track(self):
        from models.track import Track

        self.queue.play_track(Track(id="x"), _tracks("a", "b"))

        assert _ids(self.queue) == ["x", "a", "b"]
        assert self.queue.current_index == 0

    def test_play_track_without_context(self):
        from models.track import Track

        self.queue.play_track(Track(id="solo"))
        assert _ids(self.queue) == ["solo"]
        assert self.queue.current_index == 0

    def test_play_resets_shuffle_and_orders(self):
        self.queue.play_album(_tracks("a", "b", "c", "d"))
        self.queue.toggle_shuffle()
        self.queue.play_album(_tracks("e", "f"))

        assert self.queue.mode.shuffle is False
        assert self.queue.standard_order == ["e", "f"]
        assert self.queue.shuffle_order == ["e", "f"]

    def test_shuffle_play_keeps_every_track(self):
        self.queue.shuffle_play(_tracks("a", "b", "c", "d", "e"))

        assert sorted(_ids(self.queue)) == ["a", "b", "c", "d", "e"]
        assert self.queue.current_index == 0
        assert self.queue.mode.shuffle is False

    def test_play_album_over_capacity_is_truncated(self):
        from services.queue_engine import QueueEngine

        queue = QueueEngine(event_bus=self.bus, capacity=5, keep_previous=2)
        queue.play_album(_tracks(*[f"t{i}" for i in range(10)]), start_index=6)

        assert _ids(queue) == ["t4", "t5", "t6", "t7", "t8"]
        assert queue.current_track.id == "t6"


class TestNavigation:
    """advance / retreat / skip_to"""

    def setup_method(self):
        from core.event_bus import EventBus, EventType
        from services.queue_engine import QueueEngine

        self.bus = EventBus()
        self.events = []
        self.bus.subscribe(EventType.TRACK_CHANGED, self.events.append)
        self.queue = QueueEngine(event_bus=self.bus)

    def test_advance_stops_at_end_without_repeat(self):
        self.queue.play_album(_tracks("A", "B"))

        assert self.queue.advance() is True
        assert self.queue.current_index == 1
        assert self.queue.previous_index == 0

        assert self.queue.advance() is False
        assert self.queue.current_index == 1

    def test_advance_wraps_with_repeat_all(self):
        from models.queue import RepeatMode

        self.queue.play_album(_tracks("A", "B"), start_index=1)
        assert self.queue.toggle_repeat() == RepeatMode.ALL

        assert self.queue.advance() is True
        assert self.queue.current_index == 0

    def test_advance_records_last_played_and_publishes(self):
        self.queue.play_album(_tracks("A", "B"))
        self.queue.advance()

        assert self.queue.last_played.id == "A"
        assert self.events[-1] == {"track": self.queue.current_track, "index": 1, "reason": "advance"}

    def test_retreat(self):
        self.queue.play_album(_tracks("A", "B", "C"), start_index=1)

        assert self.queue.retreat() is True
        assert self.queue.current_index == 0
        assert self.queue.retreat() is False
        assert self.queue.current_index == 0

    def test_retreat_wraps_with_repeat_all(self):
        self.queue.play_album(_tracks("A", "B", "C"))
        self.queue.toggle_repeat()

        assert self.queue.retreat() is True
        assert self.queue.current_index == 2

    def test_skip_to(self):
        self.queue.play_album(_tracks("A", "B", "C"))

        assert self.queue.skip_to(2) is True
        assert self.queue.current_index == 2
        assert self.queue.previous_index == 0
        assert self.events[-1]["reason"] == "skip"

        assert self.queue.skip_to(3) is False
        assert self.queue.skip_to(-1) is False
        assert self.queue.current_index == 2

    def test_navigation_on_empty_queue(self):
        assert self.queue.advance() is False
        assert self.queue.retreat() is False
        assert self.queue.has_next is False
        assert self.queue.has_previous is False

    def test_capability_flags(self):
        self.queue.play_album(_tracks("A", "B"))
        assert self.queue.has_next is True
        assert self.queue.has_previous is False

        self.queue.advance()
        assert self.queue.has_next is False
        assert self.queue.has_previous is True

        self.queue.toggle_repeat()
        assert self.queue.has_next is True

    def test_toggle_repeat_cycles(self):
        from models.queue import RepeatMode

        assert self.queue.toggle_repeat() == RepeatMode.ALL
        assert self.queue.toggle_repeat() == RepeatMode.ONE
        assert self.queue.toggle_repeat() == RepeatMode.OFF

    def test_advance_ignores_repeat_one(self):
        self.queue.play_album(_tracks("A", "B"))
        self.queue.toggle_repeat()
        self.queue.toggle_repeat()

        assert self.queue.advance() is True
        assert self.queue.current_track.id == "B"


class TestInsertion:
    """add_to_queue / play_next placement"""

    def setup_method(self):
        from core.event_bus import EventBus
        from services.queue_engine import QueueEngine

        self.bus = EventBus()
        self.queue = QueueEngine(event_bus=self.bus, rng=random.Random(11))

    def test_play_next_places_run_after_current(self):
        self.queue.play_album(_tracks("a", "b", "c", "d"), start_index=1)

        inserted = self.queue.add_to_queue(_tracks("X", "Y", "Z"), play_next=True)

        assert inserted == 3
        assert len(self.queue) == 7
        assert _ids(self.queue)[2:5] == ["X", "Y", "Z"]
        assert self.queue.current_track.id == "b"
        _assert_orders_consistent(self.queue)

    def test_play_next_while_shuffled_keeps_run_together(self):
        self.queue.play_album(_tracks("a", "b", "c", "d"), start_index=1)
        self.queue.toggle_shuffle()

        self.queue.play_next(_tracks("X", "Y", "Z"))

        assert sorted(_ids(self.queue)[2:5]) == ["X", "Y", "Z"]
        _assert_orders_consistent(self.queue)

    def test_play_next_on_empty_queue(self):
        self.queue.play_next(_tracks("X"))
        assert _ids(self.queue) == ["X"]
        assert self.queue.current_index == -1

    def test_user_append_goes_ahead_of_recommendations(self):
        from models.queue import Origin

        self.queue.play_album(_tracks("a", "b"))
        self.queue.add_to_queue(_tracks("r1", "r2"), origin=Origin.RECOMMENDATION)
        self.queue.add_to_queue(_tracks("c"))

        assert _ids(self.queue) == ["a", "b", "c", "r1", "r2"]
        _assert_recommendations_trail(self.queue)
        _assert_orders_consistent(self.queue)

    def test_user_append_while_recommendation_is_current(self):
        from models.queue import Origin

        self.queue.play_album(_tracks("a"))
        self.queue.add_to_queue(_tracks("r1", "r2", "r3"), origin=Origin.RECOMMENDATION)
        self.queue.skip_to(1)

        self.queue.add_to_queue(_tracks("c"))

        assert _ids(self.queue) == ["a", "r1", "c", "r2", "r3"]
        assert self.queue.current_track.id == "r1"
        _assert_recommendations_trail(self.queue)

    def test_moving_back_keeps_recommendations_behind_user_entries(self):
        from models.queue import Origin

        self.queue.play_album(_tracks("u0", "u1"))
        self.queue.add_to_queue(_tracks("r2", "r3"), origin=Origin.RECOMMENDATION)
        self.queue.advance()
        self.queue.advance()
        self.queue.add_to_queue(_tracks("x"))

        assert self.queue.retreat() is True

        assert self.queue.current_track.id == "u1"
        assert _ids(self.queue) == ["u0", "u1", "x", "r2", "r3"]
        assert self.queue.previous_index == 3
        _assert_recommendations_trail(self.queue)
        _assert_orders_consistent(self.queue)

    def test_skip_back_regroups_upcoming_entries(self):
        from models.queue import Origin

        self.queue.play_album(_tracks("u0", "u1"))
        self.queue.add_to_queue(_tracks("r2"), origin=Origin.RECOMMENDATION)
        self.queue.skip_to(2)
        self.queue.add_to_queue(_tracks("x", "y"))

        self.queue.skip_to(0)

        assert _ids(self.queue) == ["u0", "u1", "x", "y", "r2"]
        _assert_recommendations_trail(self.queue)

    def test_play_next_after_removing_current(self):
        self.queue.play_album(_tracks("a", "b", "c", "d"), start_index=2)
        self.queue.remove_at(2)

        self.queue.play_next(_tracks("x"))

        assert _ids(self.queue) == ["a", "b", "x", "d"]
        assert self.queue.advance() is True
        assert self.queue.current_track.id == "x"
        self.queue.advance()
        assert self.queue.current_track.id == "d"

    def test_append_after_removing_last_upcoming_user_entry(self):
        from models.queue import Origin

        self.queue.play_album(_tracks("a", "b"), start_index=1)
        self.queue.add_to_queue(_tracks("r1"), origin=Origin.RECOMMENDATION)
        self.queue.remove_at(1)

        self.queue.add_to_queue(_tracks("x"))

        assert _ids(self.queue) == ["a", "x", "r1"]
        self.queue.advance()
        assert self.queue.current_track.id == "x"

    def test_recommendations_append_at_tail(self):
        from models.queue import Origin

        self.queue.play_album(_tracks("a", "b"))
        self.queue.add_to_queue(_tracks("r1"), origin=Origin.RECOMMENDATION)
        self.queue.add_to_queue(_tracks("r2"), origin=Origin.RECOMMENDATION)

        assert _ids(self.queue) == ["a", "b", "r1", "r2"]
        assert _origins(self.queue) == ["user", "user", "recommendation", "recommendation"]
        assert self.queue.upcoming_recommendation_count() == 2
        _assert_orders_consistent(self.queue)

    def test_add_empty_list_is_noop(self):
        self.queue.play_album(_tracks("a"))
        assert self.queue.add_to_queue([]) == 0
        assert _ids(self.queue) == ["a"]

    def test_duplicate_tracks_are_separate_entries(self):
        self.queue.play_album(_tracks("a", "b"))
        self.queue.add_to_queue(_tracks("a"))

        assert _ids(self.queue) == ["a", "b", "a"]
        assert len({e.seq for e in self.queue.entries}) == 3
        _assert_orders_consistent(self.queue)

    def test_replace_track_refreshes_metadata(self):
        from models.track import Track

        self.queue.play_album(_tracks("a", "b"))
        assert self.queue.replace_track(Track(id="b", name="Renamed")) is True
        assert self.queue.entries[1].track.name == "Renamed"
        assert self.queue.replace_track(Track(id="zz")) is False


class TestRemovalAndReorder:

    def setup_method(self):
        from core.event_bus import EventBus, EventType
        from services.queue_engine import QueueEngine

        self.bus = EventBus()
        self.events = []
        self.bus.subscribe(EventType.TRACK_CHANGED, self.events.append)
        self.queue = QueueEngine(event_bus=self.bus)

    def test_remove_before_current_shifts_index(self):
        self.queue.play_album(_tracks("a", "b", "c"), start_index=2)

        assert self.queue.remove_at(0) is True
        assert _ids(self.queue) == ["b", "c"]
        assert self.queue.current_index == 1
        assert self.queue.current_track.id == "c"
        _assert_orders_consistent(self.queue)

    def test_remove_current_keeps_it_as_last_played(self):
        self.queue.play_album(_tracks("a", "b", "c"), start_index=1)

        assert self.queue.remove_at(1) is True
        assert self.queue.current_index == -1
        assert self.queue.last_played.id == "b"
        assert self.events[-1] == {"track": None, "index": -1, "reason": "removed"}

    def test_advance_after_removing_current_continues_forward(self):
        self.queue.play_album(_tracks("a", "b", "c"), start_index=1)
        self.queue.remove_at(1)

        assert self.queue.advance() is True
        assert self.queue.current_track.id == "c"

    def test_remove_out_of_range_is_noop(self):
        self.queue.play_album(_tracks("a"))
        assert self.queue.remove_at(5) is False
        assert self.queue.remove_at(-1) is False
        assert _ids(self.queue) == ["a"]

    def test_reorder_same_origin(self):
        self.queue.play_album(_tracks("a", "b", "c", "d"))

        assert self.queue.reorder(1, 3) is True
        assert _ids(self.queue) == ["a", "c", "d", "b"]
        assert self.queue.standard_order == ["a", "c", "d", "b"]
        _assert_orders_consistent(self.queue)

    def test_reorder_keeps_current_track(self):
        self.queue.play_album(_tracks("a", "b", "c", "d"), start_index=2)

        self.queue.reorder(0, 3)
        assert _ids(self.queue) == ["b", "c", "d", "a"]
        assert self.queue.current_track.id == "c"

        self.queue.reorder(1, 0)
        assert self.queue.current_index == 0
        assert self.queue.current_track.id == "c"

    def test_reorder_across_origins_is_rejected(self):
        from models.queue import Origin

        self.queue.play_album(_tracks("a", "b"))
        self.queue.add_to_queue(_tracks("r1"), origin=Origin.RECOMMENDATION)

        assert self.queue.reorder(2, 1) is False
        assert _ids(self.queue) == ["a", "b", "r1"]

    @pytest.mark.parametrize("src,dst", [(0, 0), (0, 9), (-1, 1)])
    def test_reorder_invalid_indices(self, src, dst):
        self.queue.play_album(_tracks("a", "b"))
        assert self.queue.reorder(src, dst) is False

    def test_clear_sets_manually_cleared(self):
        self.queue.play_album(_tracks("a", "b"))
        self.queue.clear()

        assert len(self.queue) == 0
        assert self.queue.current_index == -1
        assert self.queue.manually_cleared is True
        assert self.queue.last_played.id == "a"
        assert self.events[-1]["reason"] == "cleared"

        self.queue.add_to_queue(_tracks("c"))
        assert self.queue.manually_cleared is False


class TestShuffle:

    def setup_method(self):
        from core.event_bus import EventBus
        from services.queue_engine import QueueEngine

        self.bus = EventBus()
        self.queue = QueueEngine(event_bus=self.bus, rng=random.Random(1234))
        self.album = _tracks(*[f"t{i}" for i in range(10)])

    def test_toggle_twice_restores_upcoming_order(self):
        self.queue.play_album(self.album, start_index=2)
        before = _ids(self.queue)

        assert self.queue.toggle_shuffle() is True
        shuffled = _ids(self.queue)
        assert shuffled[:3] == before[:3]
        assert sorted(shuffled[3:]) == sorted(before[3:])
        _assert_orders_consistent(self.queue)

        assert self.queue.toggle_shuffle() is False
        assert _ids(self.queue) == before
        assert self.queue.current_track.id == "t2"
        _assert_orders_consistent(self.queue)

    def test_shuffle_leaves_recommendations_in_place(self):
        from models.queue import Origin

        self.queue.play_album(self.album[:5])
        self.queue.add_to_queue(_tracks("r1", "r2", "r3"), origin=Origin.RECOMMENDATION)

        self.queue.toggle_shuffle()

        assert _ids(self.queue)[-3:] == ["r1", "r2", "r3"]
        _assert_recommendations_trail(self.queue)

    def test_unshuffle_keeps_tracks_added_while_shuffled(self):
        self.queue.play_album(self.album[:4])
        self.queue.toggle_shuffle()
        self.queue.add_to_queue(_tracks("late"))

        self.queue.toggle_shuffle()

        assert _ids(self.queue) == ["t0", "t1", "t2", "t3", "late"]
        _assert_orders_consistent(self.queue)

    def test_shuffle_order_tracks_removal(self):
        self.queue.play_album(self.album[:5])
        self.queue.toggle_shuffle()
        self.queue.remove_at(2)

        _assert_orders_consistent(self.queue)
        self.queue.toggle_shuffle()
        assert len(self.queue) == 4
        _assert_orders_consistent(self.queue)

    def test_shuffle_after_removing_current_keeps_played_entries(self):
        self.queue.play_album(self.album[:6], start_index=3)
        self.queue.remove_at(3)

        self.queue.toggle_shuffle()

        assert _ids(self.queue)[:3] == ["t0", "t1", "t2"]
        assert sorted(_ids(self.queue)[3:]) == ["t4", "t5"]
        _assert_orders_consistent(self.queue)

        self.queue.toggle_shuffle()
        assert _ids(self.queue) == ["t0", "t1", "t2", "t4", "t5"]
        assert self.queue.advance() is True
        assert self.queue.current_track.id == "t4"

    def test_standard_order_while_shuffled(self):
        self.queue.play_album(self.album[:5], start_index=1)
        self.queue.toggle_shuffle()

        assert self.queue.standard_order == [t.id for t in self.album[:5]]
        assert self.queue.shuffle_order == _ids(self.queue)


class TestCapacity:

    def test_trim_keeps_current_and_everything_after(self):
        from core.event_bus import EventBus
        from services.queue_engine import QueueEngine

        queue = QueueEngine(event_bus=EventBus(), capacity=10, keep_previous=2)
        queue.play_album(_tracks(*[f"t{i}" for i in range(10)]))
        queue.skip_to(6)

        inserted = queue.add_to_queue(_tracks("x1", "x2", "x3"))

        assert inserted == 3
        assert len(queue) <= 10
        assert _ids(queue) == ["t4", "t5", "t6", "t7", "t8", "t9", "x1", "x2", "x3"]
        assert queue.current_track.id == "t6"
        assert queue.previous_index == -1
        _assert_orders_consistent(queue)

    def test_full_queue_without_history_rejects_inserts(self):
        from core.event_bus import EventBus
        from services.queue_engine import QueueEngine

        queue = QueueEngine(event_bus=EventBus(), capacity=5, keep_previous=1)
        queue.play_album(_tracks("a", "b", "c", "d", "e"))

        assert queue.add_to_queue(_tracks("x")) == 0
        assert len(queue) == 5

    def test_insert_truncated_to_room(self):
        from core.event_bus import EventBus
        from services.queue_engine import QueueEngine

        queue = QueueEngine(event_bus=EventBus(), capacity=5, keep_previous=1)
        queue.play_album(_tracks("a", "b", "c", "d", "e"), start_index=4)

        assert queue.add_to_queue(_tracks("x", "y", "z", "w")) == 3
        assert _ids(queue) == ["d", "e", "x", "y", "z"]
        assert queue.current_track.id == "e"


class TestSnapshotRestore:

    def test_round_trip_through_dict(self):
        from core.event_bus import EventBus
        from models.queue import Origin, QueueSnapshot
        from services.queue_engine import QueueEngine

        queue = QueueEngine(event_bus=EventBus(), rng=random.Random(5))
        queue.play_album(_tracks("a", "b", "c", "d"), start_index=1)
        queue.toggle_shuffle()
        queue.toggle_repeat()
        queue.add_to_queue(_tracks("r1"), origin=Origin.RECOMMENDATION)

        data = queue.snapshot().to_dict()
        restored = QueueEngine(event_bus=EventBus())
        restored.restore(QueueSnapshot.from_dict(data))

        assert _ids(restored) == _ids(queue)
        assert _origins(restored) == _origins(queue)
        assert restored.current_index == 1
        assert restored.mode == queue.mode
        assert restored.standard_order == queue.standard_order
        assert restored.shuffle_order == queue.shuffle_order

        restored.toggle_shuffle()
        assert _ids(restored) == ["a", "b", "c", "d", "r1"]

    def test_restore_repairs_inconsistent_orders(self):
        from core.event_bus import EventBus
        from models.queue import QueueEntry, QueueSnapshot
        from services.queue_engine import QueueEngine

        entries = tuple(QueueEntry(track=t, seq=i) for i, t in enumerate(_tracks("a", "b", "c")))
        snapshot = QueueSnapshot(
            entries=entries,
            current_index=7,
            standard_order=(0, 0, 42),
            shuffle_order=(2,),
        )

        queue = QueueEngine(event_bus=EventBus())
        queue.restore(snapshot)

        assert queue.current_index == -1
        _assert_orders_consistent(queue)
        # New entries must not collide with restored sequence numbers
        queue.add_to_queue(_tracks("d"))
        assert len({e.seq for e in queue.entries}) == 4

    def test_restore_does_not_publish_track_changed(self):
        from core.event_bus import EventBus, EventType
        from models.queue import QueueEntry, QueueSnapshot
        from services.queue_engine import QueueEngine

        bus = EventBus()
        changes = []
        bus.subscribe(EventType.TRACK_CHANGED, changes.append)

        queue = QueueEngine(event_bus=bus)
        queue.restore(QueueSnapshot(
            entries=(QueueEntry(track=_tracks("a")[0], seq=0),),
            current_index=0,
        ))

        assert queue.current_track.id == "a"
        assert changes == []


def test_every_mutation_publishes_queue_changed():
    from core.event_bus import EventBus, EventType
    from models.queue import QueueSnapshot
    from services.queue_engine import QueueEngine

    bus = EventBus()
    snapshots = []
    bus.subscribe(EventType.QUEUE_CHANGED, snapshots.append)
    queue = QueueEngine(event_bus=bus)

    queue.play_album(_tracks("a", "b", "c"))
    queue.add_to_queue(_tracks("d"))
    queue.reorder(1, 2)
    queue.remove_at(3)
    queue.toggle_shuffle()
    queue.toggle_repeat()
    queue.advance()
    queue.clear()

    assert len(snapshots) == 8
    assert all(isinstance(s, QueueSnapshot) for s in snapshots)
    assert snapshots[-1].entries == ()
