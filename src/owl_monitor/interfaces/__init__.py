"""Data contracts shared between the listener and its consumers."""

from .measurement import (
    CacheSnapshot,
    LivenessState,
    Measurement,
    OfflineReason,
    OutcomeKind,
    ParseOutcome,
    PhaseReading,
)

__all__ = [
    'CacheSnapshot',
    'LivenessState',
    'Measurement',
    'OfflineReason',
    'OutcomeKind',
    'ParseOutcome',
    'PhaseReading',
]
