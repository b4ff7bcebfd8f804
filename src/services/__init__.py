"""
Service Layer Module
"""

from .config_service import ConfigService
from .queue_engine import QueueEngine
from .playback_controller import PlaybackController
from .recommendation_strategies import (
    CandidateStrategy,
    PipelineSettings,
    default_strategies,
)
from .recommendation_pipeline import RecommendationPipeline
from .recommendation_scheduler import (
    RecommendationScheduler,
    SchedulerSettings,
    SchedulerState,
)
from .catalog_sync_monitor import CatalogSyncMonitor
from .library_catalog import LibraryCatalog
from .queue_persistence_service import QueuePersistenceService

__all__ = [
    'ConfigService',
    'QueueEngine',
    'PlaybackController',
    'CandidateStrategy',
    'PipelineSettings',
    'default_strategies',
    'RecommendationPipeline',
    'RecommendationScheduler',
    'SchedulerSettings',
    'SchedulerState',
    'CatalogSyncMonitor',
    'LibraryCatalog',
    'QueuePersistenceService',
]
