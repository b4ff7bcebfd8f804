"""
Recommendation Pipeline

Runs the strategy cascade for one seed track and turns the raw search hits into
a short ranked list:

    search -> dedupe/exclude -> genre agreement -> rank -> anti-cluster -> truncate

Usage example:
    pipeline = RecommendationPipeline(catalog)
    result = pipeline.recommend(seed, ExclusionContext(queued_ids=frozenset(ids)))
    print(result.summary)
"""

from __future__ import annotations

import logging
import random
import threading
from collections import Counter
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from core.ports.catalog import CatalogError, CatalogResyncError, ICatalog
from models.recommendation import (
    ExclusionContext,
    RecommendationQuality,
    RecommendationResult,
)
from models.track import Track
from services.recommendation_strategies import (
    CandidateStrategy,
    GenreResolution,
    PipelineSettings,
    StrategyContext,
    default_strategies,
    resolve_genres,
)

if TYPE_CHECKING:
    from services.catalog_sync_monitor import CatalogSyncMonitor

logger = logging.getLogger(__name__)

# Output slots in which two tracks by the same artist are avoided
ANTI_CLUSTER_SLOTS = 3


def artist_key(track: Track) -> Optional[str]:
    """Primary artist identity, or None when the track has no artist"""
    if track.artist_ids:
        return track.artist_ids[0]
    name = track.artist_name.strip().lower()
    return name or None


def year_bucket(seed: Track, candidate: Track) -> int:
    """0 within 3 years of the seed, 1 within 5, 2 otherwise (or unknown)"""
    if not seed.year or not candidate.year:
        return 2
    distance = abs(seed.year - candidate.year)
    if distance <= 3:
        return 0
    if distance <= 5:
        return 1
    return 2


def rank_candidates(
    seed: Track,
    candidates: Sequence[Track],
    exclusions: ExclusionContext,
    rng: random.Random,
) -> List[Track]:
    """
    Order candidates by affinity with the user's queue, keeping every one

    Buckets are ordered by (artist already queued, grouping already queued,
    year proximity). Order inside a bucket is random; bucket order is fixed.
    """
    shuffled = list(candidates)
    rng.shuffle(shuffled)

    def bucket(track: Track):
        artist_hit = any(a in exclusions.user_artist_ids for a in track.artist_ids)
        grouping_hit = any(g in exclusions.user_groupings for g in track.groupings)
        return (
            0 if artist_hit else 1,
            0 if grouping_hit else 1,
            year_bucket(seed, track),
        )

    return sorted(shuffled, key=bucket)


def anti_cluster(tracks: Sequence[Track], target: int) -> List[Track]:
    """
    Keep the first output slots free of repeated artists

    If the leading slots cannot be filled with distinct artists the list is
    returned as ranked: the constraint is dropped entirely rather than bent.
    """
    tracks = list(tracks)
    slots = min(ANTI_CLUSTER_SLOTS, target, len(tracks))
    if slots < 2:
        return tracks

    remaining = list(tracks)
    head: List[Track] = []
    seen = set()
    while len(head) < slots:
        pick = None
        for track in remaining:
            key = artist_key(track)
            if key is None or key not in seen:
                pick = track
                break
        if pick is None:
            logger.debug("Anti-clustering dropped: not enough distinct artists")
            return tracks
        remaining.remove(pick)
        head.append(pick)
        key = artist_key(pick)
        if key is not None:
            seen.add(key)
    return head + remaining


def spread_artists(tracks: Sequence[Track]) -> List[Track]:
    """
    Reorder so the same artist does not play twice in a row where avoidable

    Greedy: among tracks whose artist differs from the one just placed, take
    the artist with the most tracks left, earliest first on ties.
    """
    remaining = list(tracks)
    counts = Counter(artist_key(t) for t in remaining)
    result: List[Track] = []
    last = None

    def weight(track: Track) -> int:
        key = artist_key(track)
        return counts[key] if key is not None else 0

    while remaining:
        index = None
        for i, track in enumerate(remaining):
            key = artist_key(track)
            if key is not None and key == last:
                continue
            if index is None or weight(track) > weight(remaining[index]):
                index = i
        track = remaining.pop(index if index is not None else 0)
        result.append(track)
        last = artist_key(track)
        if last is not None:
            counts[last] -= 1
    return result


class RecommendationPipeline:
    """
    Recommendation Pipeline

    Stateless apart from its collaborators; safe to call from the scheduler's
    worker thread.
    """

    def __init__(
        self,
        catalog: ICatalog,
        settings: Optional[PipelineSettings] = None,
        sync_monitor: Optional["CatalogSyncMonitor"] = None,
        strategies: Optional[List[CandidateStrategy]] = None,
        rng: Optional[random.Random] = None,
    ):
        self._catalog = catalog
        self._settings = settings or PipelineSettings()
        self._sync_monitor = sync_monitor
        self._strategies = strategies if strategies is not None else default_strategies()
        self._rng = rng or random.Random()

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    def recommend(
        self,
        seed: Track,
        exclusions: Optional[ExclusionContext] = None,
        limit: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RecommendationResult:
        """
        Produce up to ``limit`` ranked candidates for ``seed``

        Never raises for catalog problems: failing strategies are skipped and a
        resync shows up as ``needs_retry`` on the result.
        """
        exclusions = exclusions or ExclusionContext()
        limit = self._settings.result_limit if limit is None else max(0, limit)
        result = RecommendationResult(seed=seed)

        def is_excluded(track: Track) -> bool:
            return track.id == seed.id or exclusions.excludes(track.id)

        try:
            genres = resolve_genres(seed, self._catalog)
        except CatalogResyncError as e:
            logger.info("Catalog resync while resolving genres for %s: %s", seed.id, e)
            result.needs_retry = True
            return result

        ctx = StrategyContext(
            catalog=self._catalog,
            settings=self._settings,
            genres=genres,
            rng=self._rng,
            is_excluded=is_excluded,
            cancel_event=cancel_event,
        )

        pool: Dict[str, Track] = {}
        matched_genre = False
        for strategy in self._strategies:
            if ctx.cancelled:
                logger.debug("Recommendation for %s cancelled", seed.id)
                return result
            if not strategy.applies(seed, genres):
                continue
            if ctx.collected >= strategy.threshold(self._settings):
                continue

            try:
                candidates, matched = strategy.run(seed, ctx)
            except CatalogResyncError as e:
                logger.info("Catalog resync during %s search: %s", strategy.name, e)
                result.needs_retry = True
                return result
            except CatalogError as e:
                logger.warning("Strategy %s failed for %s: %s", strategy.name, seed.id, e)
                continue

            added = 0
            for track in candidates:
                if track.id not in pool and not is_excluded(track):
                    pool[track.id] = track
                    added += 1
            ctx.collected = len(pool)
            matched_genre = matched_genre or matched
            if added:
                result.strategies_used.append(strategy.name)
            logger.debug("Strategy %s: +%d candidates (%d total)", strategy.name, added, len(pool))

        if not genres.is_empty and ctx.raw_hits == 0 and self._resync_active():
            logger.info("Genre search empty during catalog resync, retry later")
            result.needs_retry = True
            return result

        candidates = self._genre_filter(seed, genres, list(pool.values()))
        ranked = rank_candidates(seed, candidates, exclusions, self._rng)
        ordered = anti_cluster(ranked, min(limit, len(ranked)))

        result.candidates = ordered[:limit]
        result.has_genre_matches = matched_genre and bool(result.candidates)
        result.quality = (
            RecommendationQuality.GOOD if result.has_genre_matches else RecommendationQuality.DEGRADED
        )
        logger.info("Recommendations for %s: %s", seed.display_name, result.summary)
        return result

    def _genre_filter(
        self, seed: Track, genres: GenreResolution, candidates: List[Track]
    ) -> List[Track]:
        """Drop candidates sharing no genre with the seed, unless the seed has none"""
        if genres.is_empty:
            return candidates
        kept = [t for t in candidates if seed.shares_genre_with(t)]
        if len(kept) < len(candidates):
            logger.debug("Genre agreement dropped %d candidates", len(candidates) - len(kept))
        return kept

    def _resync_active(self) -> bool:
        return self._sync_monitor is not None and self._sync_monitor.is_resyncing()
