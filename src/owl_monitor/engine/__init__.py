"""Core receive engine - multicast listener, measurement cache and scheduling.

Contains:
- MulticastListener: socket owner, receive cycle and liveness state machine
- MeasurementCache: snapshot-swapped (measurement, liveness) pair
- PeriodicTask: fixed-delay single-thread scheduler
"""

from .measurement_cache import MeasurementCache
from .multicast_listener import (
    ConfigError,
    ListenerConfig,
    ListenerState,
    MulticastListener,
    NetworkError,
    open_multicast_socket,
)
from .periodic_task import PeriodicTask
from .listener_stats import ListenerStats

__all__ = [
    'MulticastListener',
    'ListenerConfig',
    'ListenerState',
    'ConfigError',
    'NetworkError',
    'open_multicast_socket',
    'MeasurementCache',
    'PeriodicTask',
    'ListenerStats',
]
