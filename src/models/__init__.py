"""
Data Models Module
"""

from .track import Track, ArtistRef
from .queue import (
    Origin,
    RepeatMode,
    QueueEntry,
    PlaybackMode,
    PlaybackSession,
    QueueSnapshot,
)
from .recommendation import RecommendationQuality, RecommendationResult, ExclusionContext

__all__ = [
    'Track',
    'ArtistRef',
    'Origin',
    'RepeatMode',
    'QueueEntry',
    'PlaybackMode',
    'PlaybackSession',
    'QueueSnapshot',
    'RecommendationQuality',
    'RecommendationResult',
    'ExclusionContext',
]
