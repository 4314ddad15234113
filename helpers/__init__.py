"""
Shared helpers: unified logging, the event bus, grid event notification.
"""

from .unified_logger import get_logger, get_strategy_logger, get_service_logger, get_core_logger
from .event_bus import EventBus

__all__ = [
    'get_logger',
    'get_strategy_logger',
    'get_service_logger',
    'get_core_logger',
    'EventBus',
]
