"""
Measurement Data Models

These dataclasses define the contract between owl-monitor and its consumers.
A Measurement is only ever built from a fully validated electricity packet;
consumers either get all three phases or nothing.

Contract Version: 1.0.0
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple
import json
import time


PHASE_COUNT = 3


class LivenessState(str, Enum):
    """Inferred status of the broadcasting device."""
    UNKNOWN = "UNKNOWN"   # No receive attempt has completed yet
    ONLINE = "ONLINE"     # Valid telemetry arrived within the timeout window
    OFFLINE = "OFFLINE"   # Last cycle produced no trustworthy reading


class OfflineReason(str, Enum):
    """Why the last cycle left the device OFFLINE."""
    NO_TRAFFIC = "NO_TRAFFIC"
    UNRECOGNIZED_TRAFFIC = "UNRECOGNIZED_TRAFFIC"
    MALFORMED_TRAFFIC = "MALFORMED_TRAFFIC"
    SOCKET_ERROR = "SOCKET_ERROR"


class OutcomeKind(str, Enum):
    """Discriminant of a ParseOutcome."""
    RECOGNIZED = "RECOGNIZED"
    UNRECOGNIZED = "UNRECOGNIZED"
    MALFORMED = "MALFORMED"


@dataclass(frozen=True)
class PhaseReading:
    """One phase of an electricity packet."""
    power_w: float      # Instantaneous power (curr)
    energy_wh: float    # Energy accumulated today (day)

    def to_dict(self) -> dict:
        return {'power_w': self.power_w, 'energy_wh': self.energy_wh}


@dataclass(frozen=True)
class Measurement:
    """
    Validated reading from one electricity broadcast.

    Phase order is significant: phases[0] is chan id 0 on the wire.
    The radio and battery extras are informational only and may be None.
    """
    source_id: str
    phases: Tuple[PhaseReading, PhaseReading, PhaseReading]

    signal_rssi: Optional[float] = None
    signal_lqi: Optional[float] = None
    battery_level: Optional[float] = None   # Percent

    received_at: float = field(default_factory=time.time, compare=False)

    def __post_init__(self):
        if len(self.phases) != PHASE_COUNT:
            raise ValueError(
                f"Measurement requires {PHASE_COUNT} phases, got {len(self.phases)}"
            )

    def phase(self, number: int) -> PhaseReading:
        """Phase by its 1-based number (1..3)."""
        if not 1 <= number <= PHASE_COUNT:
            raise IndexError(f"phase number must be 1-{PHASE_COUNT}, got {number}")
        return self.phases[number - 1]

    @property
    def total_power_w(self) -> float:
        return sum(p.power_w for p in self.phases)

    def channel_values(self) -> Dict[str, float]:
        """Flatten phases into the named data channels a host presents."""
        values = {}
        for i, reading in enumerate(self.phases, start=1):
            values[f"power_phase{i}"] = reading.power_w
            values[f"energy_phase{i}"] = reading.energy_wh
        return values

    def to_dict(self) -> dict:
        result = {
            'source_id': self.source_id,
            'phases': [p.to_dict() for p in self.phases],
            'total_power_w': self.total_power_w,
            'received_at': self.received_at,
        }
        extras = {
            'signal_rssi': self.signal_rssi,
            'signal_lqi': self.signal_lqi,
            'battery_level': self.battery_level,
        }
        result.update({k: v for k, v in extras.items() if v is not None})
        return result

    def to_json(self) -> str:
        """Serialize for the status endpoint."""
        return json.dumps(self.to_dict(), indent=2)


@dataclass(frozen=True)
class ParseOutcome:
    """
    Result of parsing one payload.

    Exactly one variant is populated, selected by ``kind``:
        RECOGNIZED   -> measurement is set
        UNRECOGNIZED -> reason says why the root marker was not found
        MALFORMED    -> reason names the missing or invalid field
    """
    kind: OutcomeKind
    measurement: Optional[Measurement] = None
    reason: str = ""

    @classmethod
    def recognized(cls, measurement: Measurement) -> "ParseOutcome":
        return cls(OutcomeKind.RECOGNIZED, measurement=measurement)

    @classmethod
    def unrecognized(cls, reason: str) -> "ParseOutcome":
        return cls(OutcomeKind.UNRECOGNIZED, reason=reason)

    @classmethod
    def malformed(cls, reason: str) -> "ParseOutcome":
        return cls(OutcomeKind.MALFORMED, reason=reason)

    @property
    def is_recognized(self) -> bool:
        return self.kind is OutcomeKind.RECOGNIZED


@dataclass(frozen=True)
class CacheSnapshot:
    """
    Immutable (measurement, liveness) pair published by the listener.

    Readers always see one whole snapshot, never a mix of two.
    """
    measurement: Optional[Measurement] = None
    liveness: LivenessState = LivenessState.UNKNOWN
    reason: Optional[OfflineReason] = None
    detail: str = ""
    updated_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            'liveness': self.liveness.value,
            'reason': self.reason.value if self.reason else None,
            'detail': self.detail,
            'updated_at': self.updated_at,
            'measurement': self.measurement.to_dict() if self.measurement else None,
        }
