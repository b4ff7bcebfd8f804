"""
Recommendation Strategies

Candidate search strategies for the recommendation pipeline. Each strategy is
one stage of the cascade and returns ``(candidates, matched_genre)``:

1. RealGenreStrategy - catalog genre ids with a widening year window
2. NameOnlyGenreStrategy - unregistered genre tags, filtered client-side
3. Fallbacks when the seed carries no genre at all: same artist, same album,
   year proximity, recently added
"""

from __future__ import annotations

import logging
import random
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from core.ports.catalog import CatalogResyncError, ICatalog, SortOrder, TrackQuery
from models.track import Track

if TYPE_CHECKING:
    from services.config_service import ConfigService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineSettings:
    """Tuning knobs for one pipeline run"""

    result_limit: int = 10
    min_confirmed: int = 20      # Stop searching once this many matches are in hand
    min_fallback: int = 10       # Keep falling back while below this
    year_windows: Tuple[int, ...] = (3, 5, 7, 10)
    search_limit: int = 100
    artist_sample_limit: int = 50

    @classmethod
    def from_config(cls, config: "ConfigService") -> "PipelineSettings":
        windows = config.get("recommendations.year_windows", list(cls.year_windows))
        try:
            windows = tuple(sorted(int(w) for w in windows))
        except (TypeError, ValueError):
            logger.warning("Invalid recommendations.year_windows, using defaults")
            windows = cls.year_windows
        return cls(
            result_limit=config.get_int("recommendations.result_limit", cls.result_limit),
            min_confirmed=config.get_int("recommendations.min_confirmed", cls.min_confirmed),
            min_fallback=config.get_int("recommendations.min_fallback", cls.min_fallback),
            year_windows=windows,
            search_limit=config.get_int("recommendations.search_limit", cls.search_limit),
            artist_sample_limit=config.get_int(
                "recommendations.artist_sample_limit", cls.artist_sample_limit
            ),
        )


@dataclass(frozen=True)
class GenreResolution:
    """Seed genres split into catalog-backed ids and unregistered tags"""

    real_ids: Tuple[str, ...] = ()
    name_only: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.real_ids and not self.name_only


def resolve_genres(seed: Track, catalog: ICatalog) -> GenreResolution:
    """
    Map the seed's genre names to catalog genre ids

    Names the catalog does not know stay as name-only tags. If the genre list
    cannot be fetched every name is treated as name-only; a resync error is
    left to propagate.
    """
    names = [g.strip() for g in seed.genres if g and g.strip()]
    if not names:
        return GenreResolution()

    try:
        registered = {g.name.strip().lower(): g.id for g in catalog.get_genres()}
    except CatalogResyncError:
        raise
    except Exception as e:
        logger.warning("Genre lookup failed, treating %s as name-only: %s", names, e)
        registered = {}

    real_ids: List[str] = []
    name_only: List[str] = []
    for name in names:
        genre_id = registered.get(name.lower())
        if genre_id is not None:
            if genre_id not in real_ids:
                real_ids.append(genre_id)
        elif name not in name_only:
            name_only.append(name)
    return GenreResolution(real_ids=tuple(real_ids), name_only=tuple(name_only))


@dataclass
class StrategyContext:
    """Shared state handed to every strategy of one pipeline run"""

    catalog: ICatalog
    settings: PipelineSettings
    genres: GenreResolution
    rng: random.Random
    # Whether a candidate is already ruled out (seed, queued, recent ...)
    is_excluded: Callable[[Track], bool] = lambda track: False
    cancel_event: Optional[threading.Event] = None
    # Usable candidates gathered by earlier stages
    collected: int = 0
    raw_hits: int = field(default=0)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def search(self, query: TrackQuery) -> List[Track]:
        logger.debug("Catalog search: %s", query.describe())
        tracks = self.catalog.search_tracks(query)
        self.raw_hits += len(tracks)
        return tracks


class CandidateStrategy(ABC):
    """One stage of the candidate search cascade"""

    name: str = "base"
    # Genre stages are judged against min_confirmed, fallbacks against min_fallback
    uses_genres: bool = False

    def threshold(self, settings: PipelineSettings) -> int:
        return settings.min_confirmed if self.uses_genres else settings.min_fallback

    @abstractmethod
    def applies(self, seed: Track, genres: GenreResolution) -> bool:
        """Whether this stage is relevant for the seed at all"""

    @abstractmethod
    def run(self, seed: Track, ctx: StrategyContext) -> Tuple[List[Track], bool]:
        """Return ``(candidates, matched_genre)``"""

    def _collect(
        self,
        ctx: StrategyContext,
        query: TrackQuery,
        found: Dict[str, Track],
        accept: Optional[Callable[[Track], bool]] = None,
    ) -> None:
        for track in ctx.search(query):
            if track.id in found or ctx.is_excluded(track):
                continue
            if accept is not None and not accept(track):
                continue
            found[track.id] = track

    def _is_enough(self, ctx: StrategyContext, found: Dict[str, Track]) -> bool:
        return ctx.collected + len(found) >= self.threshold(ctx.settings)

    def _progressive(
        self,
        seed: Track,
        ctx: StrategyContext,
        base: TrackQuery,
        found: Dict[str, Track],
        accept: Optional[Callable[[Track], bool]] = None,
    ) -> None:
        """
        Search with a widening year window around the seed

        The unfiltered search only runs when the widest window is still short,
        or straight away when the seed has no year.
        """
        if seed.year:
            for window in ctx.settings.year_windows:
                if ctx.cancelled:
                    return
                query = replace(
                    base,
                    min_year=seed.year - window,
                    max_year=seed.year + window,
                    limit=ctx.settings.search_limit,
                )
                self._collect(ctx, query, found, accept)
                if self._is_enough(ctx, found):
                    logger.debug("%s: enough matches within +/-%d years", self.name, window)
                    return
        if ctx.cancelled:
            return
        self._collect(ctx, replace(base, limit=ctx.settings.search_limit), found, accept)


class RealGenreStrategy(CandidateStrategy):
    """Search by catalog genre id, one id at a time"""

    name = "genre"
    uses_genres = True

    def applies(self, seed, genres):
        return bool(genres.real_ids)

    def run(self, seed, ctx):
        found: Dict[str, Track] = {}
        for genre_id in ctx.genres.real_ids:
            if ctx.cancelled or self._is_enough(ctx, found):
                break
            self._progressive(seed, ctx, TrackQuery(genre_ids=(genre_id,)), found,
                              accept=seed.shares_genre_with)
        return list(found.values()), bool(found)


class NameOnlyGenreStrategy(CandidateStrategy):
    """Search by unregistered genre tag, keeping exact case-insensitive matches"""

    name = "genre-name"
    uses_genres = True

    def applies(self, seed, genres):
        return not genres.real_ids and bool(genres.name_only)

    def run(self, seed, ctx):
        found: Dict[str, Track] = {}
        for name in ctx.genres.name_only:
            if ctx.cancelled or self._is_enough(ctx, found):
                break
            key = name.lower()
            self._progressive(seed, ctx, TrackQuery(genre_names=(name,)), found,
                              accept=lambda t, key=key: key in t.genre_keys)
        return list(found.values()), bool(found)


class FallbackStrategy(CandidateStrategy):
    """Base for the stages used when the seed has no genre information"""

    def applies(self, seed, genres):
        return genres.is_empty


class SameArtistStrategy(FallbackStrategy):
    """A bounded, shuffled sample of the seed artists' tracks"""

    name = "artist"

    def applies(self, seed, genres):
        return super().applies(seed, genres) and bool(seed.artist_ids)

    def run(self, seed, ctx):
        found: Dict[str, Track] = {}
        for artist_id in seed.artist_ids:
            if ctx.cancelled:
                break
            query = TrackQuery(artist_id=artist_id, sort=SortOrder.RANDOM,
                               limit=ctx.settings.artist_sample_limit)
            self._collect(ctx, query, found)
        sample = list(found.values())
        ctx.rng.shuffle(sample)
        return sample, False


class SameAlbumStrategy(FallbackStrategy):

    name = "album"

    def applies(self, seed, genres):
        return super().applies(seed, genres) and bool(seed.album_id)

    def run(self, seed, ctx):
        found: Dict[str, Track] = {}
        query = TrackQuery(album_id=seed.album_id, sort=SortOrder.NAME,
                           limit=ctx.settings.search_limit)
        self._collect(ctx, query, found)
        return list(found.values()), False


class YearProximityStrategy(FallbackStrategy):
    """Tracks from around the seed's production year, nearest window first"""

    name = "year"

    def applies(self, seed, genres):
        return super().applies(seed, genres) and bool(seed.year)

    def run(self, seed, ctx):
        found: Dict[str, Track] = {}
        for window in ctx.settings.year_windows:
            if ctx.cancelled or self._is_enough(ctx, found):
                break
            query = TrackQuery(min_year=seed.year - window, max_year=seed.year + window,
                               sort=SortOrder.RANDOM, limit=ctx.settings.search_limit)
            self._collect(ctx, query, found)
        return list(found.values()), False


class RecentlyAddedStrategy(FallbackStrategy):
    """Newest catalog additions, the last resort"""

    name = "recent"

    def run(self, seed, ctx):
        found: Dict[str, Track] = {}
        query = TrackQuery(sort=SortOrder.DATE_CREATED_DESC, limit=ctx.settings.search_limit)
        self._collect(ctx, query, found)
        return list(found.values()), False


def default_strategies() -> List[CandidateStrategy]:
    """The cascade in the order it is tried"""
    return [
        RealGenreStrategy(),
        NameOnlyGenreStrategy(),
        SameArtistStrategy(),
        SameAlbumStrategy(),
        YearProximityStrategy(),
        RecentlyAddedStrategy(),
    ]
