"""
Queue persistence tests (restart restore and volume).
"""

from __future__ import annotations

import random

import pytest

from conftest import build_track


@pytest.fixture
def db():
    from core.database import DatabaseManager

    database = DatabaseManager(":memory:")
    yield database
    database.close()


@pytest.fixture
def persistence(db, config, event_bus):
    from services.queue_persistence_service import QueuePersistenceService

    service = QueuePersistenceService(db=db, config=config, event_bus=event_bus)
    service.attach()
    yield service
    service.shutdown()


def _tracks(n):
    return [build_track(f"t{i}", genres=("Rock",), year=2000 + i, groupings=("mood:calm",)) for i in range(n)]


def test_queue_changes_are_saved_and_restored(db, config, event_bus, persistence):
    from core.event_bus import EventBus
    from models.queue import Origin, RepeatMode
    from services.queue_engine import QueueEngine

    queue = QueueEngine(event_bus=event_bus, rng=random.Random(4))
    queue.play_album(_tracks(5), start_index=2)
    queue.toggle_shuffle()
    queue.toggle_repeat()
    queue.add_to_queue([build_track("rec")], origin=Origin.RECOMMENDATION)

    restored = QueueEngine(event_bus=EventBus())
    assert persistence.restore(restored) is True

    assert [e.track for e in restored.entries] == [e.track for e in queue.entries]
    assert [e.origin for e in restored.entries] == [e.origin for e in queue.entries]
    assert restored.current_index == 2
    assert restored.mode.shuffle is True
    assert restored.mode.repeat == RepeatMode.ALL
    assert restored.standard_order == ["t0", "t1", "t2", "t3", "t4"]
    assert restored.shuffle_order == queue.shuffle_order


def test_restore_does_not_resave_or_start_playback(db, config, event_bus, persistence, recorder):
    from core.event_bus import EventType
    from services.queue_engine import QueueEngine

    QueueEngine(event_bus=event_bus).play_album(_tracks(3))
    saved = persistence._get(persistence.LAST_QUEUE_KEY)
    recorder.clear()

    restored = QueueEngine(event_bus=event_bus)
    persistence.restore(restored)

    assert persistence._get(persistence.LAST_QUEUE_KEY) == saved
    assert not [et for et, _ in recorder if et == EventType.TRACK_CHANGED]


def test_late_older_snapshot_is_not_saved(persistence, event_bus, recorder):
    from core.event_bus import EventType
    from services.queue_engine import QueueEngine

    queue = QueueEngine(event_bus=event_bus)
    queue.play_album(_tracks(2))
    queue.add_to_queue([build_track("late")])
    snapshots = [data for et, data in recorder if et == EventType.QUEUE_CHANGED]
    assert snapshots[0].revision < snapshots[1].revision

    # An older snapshot delivered after a newer one, e.g. from another thread
    event_bus.publish_sync(EventType.QUEUE_CHANGED, snapshots[0])

    saved = persistence.load_snapshot()
    assert [e.track.id for e in saved.entries] == ["t0", "t1", "late"]
    assert saved.revision == snapshots[1].revision


def test_restored_queue_keeps_counting_revisions(persistence, event_bus):
    from core.event_bus import EventBus
    from services.queue_engine import QueueEngine

    queue = QueueEngine(event_bus=event_bus)
    queue.play_album(_tracks(3))
    queue.advance()
    saved_revision = persistence.load_snapshot().revision

    restored = QueueEngine(event_bus=EventBus())
    persistence.restore(restored)

    assert restored.snapshot().revision >= saved_revision


def test_restore_without_saved_queue(persistence, event_bus):
    from services.queue_engine import QueueEngine

    queue = QueueEngine(event_bus=event_bus)

    assert persistence.restore(queue) is False
    assert len(queue) == 0


def test_cleared_queue_is_remembered(persistence, event_bus):
    from core.event_bus import EventBus
    from services.queue_engine import QueueEngine

    queue = QueueEngine(event_bus=event_bus)
    queue.play_album(_tracks(2))
    queue.clear()

    snapshot = persistence.load_snapshot()
    assert snapshot.entries == ()
    assert snapshot.manually_cleared is True
    assert snapshot.last_played.id == "t0"

    assert persistence.restore(QueueEngine(event_bus=EventBus())) is False


def test_corrupt_snapshot_is_ignored(persistence):
    persistence._put(persistence.LAST_QUEUE_KEY, "{not json")
    assert persistence.load_snapshot() is None

    persistence._put(persistence.LAST_QUEUE_KEY, "[1, 2]")
    assert persistence.load_snapshot() is None


def test_volume_saved_and_applied(db, config, event_bus, persistence, timers, fake_audio, fake_catalog):
    from core.event_bus import EventBus
    from services.playback_controller import PlaybackController
    from services.queue_engine import QueueEngine

    queue = QueueEngine(event_bus=event_bus)
    controller = PlaybackController(queue, fake_audio, fake_catalog, event_bus, timers=timers)
    controller.set_volume(0.3)
    assert persistence.load_volume() == pytest.approx(0.3)

    other_bus = EventBus()
    other = PlaybackController(QueueEngine(event_bus=other_bus), fake_audio, fake_catalog, other_bus, timers=timers)
    persistence.restore(QueueEngine(event_bus=other_bus), other)

    assert other.volume == pytest.approx(0.3)


def test_stored_volume_is_clamped(persistence):
    persistence._put(persistence.VOLUME_KEY, "7.5")
    assert persistence.load_volume() == 1.0

    persistence._put(persistence.VOLUME_KEY, "\"loud\"")
    assert persistence.load_volume() is None


def test_disabled_persistence(db, config, event_bus):
    from services.queue_engine import QueueEngine
    from services.queue_persistence_service import QueuePersistenceService

    config.set("playback.persist_queue", False)
    service = QueuePersistenceService(db=db, config=config, event_bus=event_bus)
    service.attach()

    QueueEngine(event_bus=event_bus).play_album(_tracks(2))

    assert service.enabled is False
    assert service.load_snapshot() is None
    assert service.restore(QueueEngine(event_bus=event_bus)) is False


def test_persisted_snapshot_survives_reopen(tmp_path, config, event_bus):
    from core.database import DatabaseManager
    from core.event_bus import EventBus
    from services.queue_engine import QueueEngine
    from services.queue_persistence_service import QueuePersistenceService

    path = str(tmp_path / "player.db")
    db = DatabaseManager(path)
    service = QueuePersistenceService(db=db, config=config, event_bus=event_bus)
    service.attach()
    QueueEngine(event_bus=event_bus).play_album(_tracks(3), start_index=1)
    service.shutdown()
    db.close()

    db2 = DatabaseManager(path)
    bus2 = EventBus()
    queue = QueueEngine(event_bus=bus2)
    assert QueuePersistenceService(db=db2, config=config, event_bus=bus2).restore(queue) is True
    assert queue.current_track.id == "t1"
    db2.close()
