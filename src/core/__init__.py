"""
Encore Player Core Module
"""

from .event_bus import EventBus, EventType
from .audio_engine import AudioResourceBase, SilentAudioResource
from .database import DatabaseManager
from .timers import TimerFactory, TimerHandle, cancel_timer

__all__ = [
    'EventBus',
    'EventType',
    'AudioResourceBase',
    'SilentAudioResource',
    'DatabaseManager',
    'TimerFactory',
    'TimerHandle',
    'cancel_timer',
]
