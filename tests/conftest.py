"""
Test Configuration File

Unified setup for Python path, avoiding sys.path.insert in each test file.
Provides fakes for the catalog and audio ports, a manually driven timer
factory and a synchronous executor so tests never wait on real time.
"""

import sys
from concurrent.futures import Executor, Future
from pathlib import Path

import pytest

# Add the src directory to the Python path
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))


def build_track(track_id, name=None, artist=None, genres=(), year=None,
                album_id=None, groupings=(), date_created="", duration_ms=180000):
    from models.track import ArtistRef, Track

    artist_id = artist if artist is not None else f"artist-{track_id}"
    return Track(
        id=track_id,
        name=name or f"Track {track_id}",
        duration_ms=duration_ms,
        artists=(ArtistRef(id=artist_id, name=artist_id.title()),) if artist_id else (),
        album_id=album_id,
        genres=tuple(genres),
        year=year,
        groupings=tuple(groupings),
        date_created=date_created,
    )


class _ManualTimer:
    def __init__(self, due, callback, name):
        self.due = due
        self.callback = callback
        self.name = name
        self.fired = False
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    @property
    def active(self):
        return not (self.fired or self.cancelled)


class ManualTimerFactory:
    """TimerFactory stand-in whose clock only moves on advance()"""

    def __init__(self):
        self._now = 1000.0
        self.timers = []

    def now(self):
        return self._now

    def schedule(self, delay, callback, name="timer"):
        timer = _ManualTimer(self._now + max(0.0, float(delay)), callback, name)
        self.timers.append(timer)
        return timer

    def pending(self, name=None):
        return [t for t in self.timers if t.active and (name is None or t.name == name)]

    def advance(self, seconds):
        target = self._now + seconds
        while True:
            due = sorted((t for t in self.timers if t.active and t.due <= target), key=lambda t: t.due)
            if not due:
                break
            timer = due[0]
            self._now = timer.due
            timer.fired = True
            timer.callback()
        self._now = target


class ImmediateExecutor(Executor):
    """Runs submitted work inline"""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class DeferredExecutor(Executor):
    """Queues work until run_all() is called"""

    def __init__(self):
        self.jobs = []

    def submit(self, fn, *args, **kwargs):
        future = Future()
        self.jobs.append((future, fn, args, kwargs))
        return future

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        for future, fn, args, kwargs in jobs:
            future.set_result(fn(*args, **kwargs))


class FakeCatalog:
    """In-memory ICatalog; RANDOM sort keeps insertion order so results are stable"""

    def __init__(self, tracks=(), genres=None):
        self.tracks = list(tracks)
        self.genres = dict(genres or {})   # genre id -> name
        self.queries = []
        self.played = []
        self.broken_streams = set()
        self.resyncing = False
        self.fail_searches = False

    def get_genres(self):
        from core.ports.catalog import CatalogResyncError, Genre

        if self.resyncing:
            raise CatalogResyncError("resync")
        return [Genre(id=gid, name=name) for gid, name in self.genres.items()]

    def search_tracks(self, query):
        from core.ports.catalog import CatalogError, CatalogResyncError, SortOrder

        self.queries.append(query)
        if self.resyncing:
            raise CatalogResyncError("resync")
        if self.fail_searches:
            raise CatalogError("catalog offline")

        results = list(self.tracks)
        if query.genre_ids:
            names = {self.genres[g].lower() for g in query.genre_ids if g in self.genres}
            results = [t for t in results if t.genre_keys & names]
        if query.genre_names:
            names = {n.lower() for n in query.genre_names}
            results = [t for t in results if t.genre_keys & names]
        if query.artist_id:
            results = [t for t in results if query.artist_id in t.artist_ids]
        if query.album_id:
            results = [t for t in results if t.album_id == query.album_id]
        if query.min_year is not None:
            results = [t for t in results if t.year is not None and t.year >= query.min_year]
        if query.max_year is not None:
            results = [t for t in results if t.year is not None and t.year <= query.max_year]
        if query.sort == SortOrder.DATE_CREATED_DESC:
            results.sort(key=lambda t: t.date_created, reverse=True)
        elif query.sort == SortOrder.NAME:
            results.sort(key=lambda t: t.name.lower())
        return results[:query.limit]

    def get_track(self, track_id):
        return next((t for t in self.tracks if t.id == track_id), None)

    def get_stream_url(self, track_id):
        from core.ports.catalog import CatalogError

        if track_id in self.broken_streams:
            raise CatalogError(f"no stream for {track_id}")
        return f"stream://{track_id}"

    def mark_played(self, track_id):
        self.played.append(track_id)


class FakeAudioResource:
    """Records transport calls; tests fire callbacks by hand"""

    def __init__(self):
        from core.ports.audio import PlayerState

        self.state = PlayerState.IDLE
        self.position = 0.0
        self.duration = 0.0
        self.volume = 1.0
        self.source = None
        self.loaded = []
        self.seeks = []
        self.load_error = None
        self._on_ended = None
        self._on_error = None
        self._on_position = None

    def load(self, url):
        from core.ports.audio import AudioResourceError, PlayerState

        if self.load_error:
            raise AudioResourceError(self.load_error)
        self.source = url
        self.loaded.append(url)
        self.position = 0.0
        self.state = PlayerState.STOPPED

    def play(self):
        from core.ports.audio import PlayerState

        self.state = PlayerState.PLAYING

    def pause(self):
        from core.ports.audio import PlayerState

        self.state = PlayerState.PAUSED

    def stop(self):
        from core.ports.audio import PlayerState

        self.state = PlayerState.STOPPED
        self.source = None

    def seek(self, position):
        self.position = position
        self.seeks.append(position)

    def set_volume(self, volume):
        self.volume = volume

    def set_on_ended(self, callback):
        self._on_ended = callback

    def set_on_error(self, callback):
        self._on_error = callback

    def set_on_position(self, callback):
        self._on_position = callback

    def fire_ended(self):
        self._on_ended()

    def fire_error(self, message):
        self._on_error(message)

    def fire_position(self, position, duration):
        self.position = position
        self._on_position(position, duration)


@pytest.fixture
def make_track():
    return build_track


@pytest.fixture
def event_bus():
    from core.event_bus import EventBus

    bus = EventBus()
    yield bus
    bus.shutdown()


@pytest.fixture
def timers():
    return ManualTimerFactory()


@pytest.fixture
def immediate_executor():
    return ImmediateExecutor()


@pytest.fixture
def deferred_executor():
    return DeferredExecutor()


@pytest.fixture
def fake_catalog():
    return FakeCatalog()


@pytest.fixture
def fake_audio():
    return FakeAudioResource()


@pytest.fixture
def config(tmp_path):
    from services.config_service import ConfigService

    return ConfigService(str(tmp_path / "config.yaml"))


@pytest.fixture
def recorder(event_bus):
    """Collects published events as (EventType, data) pairs"""
    from core.event_bus import EventType

    events = []
    for event_type in EventType:
        event_bus.subscribe(event_type, lambda data, et=event_type: events.append((et, data)))
    return events
