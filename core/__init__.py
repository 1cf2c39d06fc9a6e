"""
Core Infrastructure for Sentinel

Provides the foundational services the controller components are built on:
configuration loading, event-driven communication, periodic scheduling and
persisted state.

Key Components:
- ConfigurationManager: Layered YAML/.env/environment configuration
- EventBus: Pub/sub channel carrying immutable snapshots between components
- PeriodicTask: Cancellable fixed-interval loop
- StateStore: Atomic JSON persistence for secrets and run history
"""

from .config_manager import (
    ConfigurationManager, ConfigurationError, SecurityConfiguration, get_config_manager
)
from .event_bus import EventBus, Event, EventPriority, get_event_bus
from .scheduler import PeriodicTask
from .state_store import StateStore

__all__ = [
    'ConfigurationManager',
    'ConfigurationError',
    'SecurityConfiguration',
    'get_config_manager',
    'EventBus',
    'Event',
    'EventPriority',
    'get_event_bus',
    'PeriodicTask',
    'StateStore'
]
