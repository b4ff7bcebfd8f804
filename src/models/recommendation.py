"""
Recommendation result models
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .track import Track


class RecommendationQuality(Enum):
    """How the last recommendation cycle went"""
    GOOD = "good"            # Genre matching succeeded
    DEGRADED = "degraded"    # Fell back to artist/album/year/recent
    FAILED = "failed"        # Retries exhausted against a catalog resync


@dataclass
class RecommendationResult:
    """Outcome of running the pipeline for one seed"""

    seed: Track
    candidates: List[Track] = field(default_factory=list)
    quality: RecommendationQuality = RecommendationQuality.DEGRADED
    has_genre_matches: bool = False
    needs_retry: bool = False          # Catalog was mid-resync, try again later
    strategies_used: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.candidates)

    @property
    def summary(self) -> str:
        """Return a short human readable summary"""
        if self.needs_retry:
            return "Catalog resync in progress"
        if not self.candidates:
            return "No candidates"
        used = ", ".join(self.strategies_used) or "none"
        return f"{self.total} candidates ({self.quality.value}; via {used})"


@dataclass(frozen=True)
class ExclusionContext:
    """Tracks the pipeline must never return"""

    queued_ids: frozenset = frozenset()
    recent_ids: frozenset = frozenset()
    recommended_ids: frozenset = frozenset()
    last_played_id: Optional[str] = None
    # Artists / groupings already present among user-queued tracks, used for ranking
    user_artist_ids: frozenset = frozenset()
    user_groupings: frozenset = frozenset()

    def excludes(self, track_id: str) -> bool:
        return (
            track_id in self.queued_ids
            or track_id in self.recent_ids
            or track_id in self.recommended_ids
            or (self.last_played_id is not None and track_id == self.last_played_id)
        )
