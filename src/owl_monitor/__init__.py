"""
owl-monitor: Network OWL Energy Monitor Listener

This package listens for the multicast broadcasts of a Network OWL gateway,
validates each electricity packet, and keeps the most recent measurement
available to any number of consumers without blocking them on the network.

Architecture:
    OWL gateway (UDP multicast) → MulticastListener → MeasurementCache → consumers

Liveness is inferred purely from the broadcast cadence: a valid packet
within the receive timeout means ONLINE, anything else means OFFLINE.

Version: 1.0.0
"""

__version__ = "1.0.0"

from .interfaces.measurement import (
    CacheSnapshot,
    LivenessState,
    Measurement,
    OfflineReason,
    OutcomeKind,
    ParseOutcome,
    PhaseReading,
)
from .packets.energy_packet import parse_packet
from .engine.measurement_cache import MeasurementCache
from .engine.multicast_listener import (
    ConfigError,
    ListenerConfig,
    ListenerState,
    MulticastListener,
    NetworkError,
)

__all__ = [
    "CacheSnapshot",
    "LivenessState",
    "Measurement",
    "OfflineReason",
    "OutcomeKind",
    "ParseOutcome",
    "PhaseReading",
    "parse_packet",
    "MeasurementCache",
    "ConfigError",
    "ListenerConfig",
    "ListenerState",
    "MulticastListener",
    "NetworkError",
    "__version__",
]
