"""
Measurement Cache - latest known-good reading plus device liveness.

Single writer (the listener's receive task), any number of readers. The
state is one immutable CacheSnapshot; every mutator builds a new snapshot and
swaps the reference, so readers never lock and never see a half update.
"""

import time
from typing import Optional

from ..interfaces.measurement import (
    CacheSnapshot,
    LivenessState,
    Measurement,
    OfflineReason,
)


class MeasurementCache:
    """Holds the (measurement, liveness) pair published by one listener."""

    def __init__(self):
        self._snapshot = CacheSnapshot()

    # Readers

    def snapshot(self) -> CacheSnapshot:
        """Current pair, consistent as a whole."""
        return self._snapshot

    def get_latest(self) -> Optional[Measurement]:
        return self._snapshot.measurement

    def get_liveness(self) -> LivenessState:
        return self._snapshot.liveness

    # Writers (receive task only)

    def reset(self) -> None:
        """Back to the initial UNKNOWN state with no measurement."""
        self._snapshot = CacheSnapshot(updated_at=time.time())

    def publish(self, measurement: Measurement) -> None:
        """Replace the measurement and mark the device ONLINE in one swap."""
        self._snapshot = CacheSnapshot(
            measurement=measurement,
            liveness=LivenessState.ONLINE,
            updated_at=time.time(),
        )

    def invalidate(self, reason: OfflineReason, detail: str = "") -> None:
        """Drop the measurement and mark the device OFFLINE in one swap."""
        self._snapshot = CacheSnapshot(
            measurement=None,
            liveness=LivenessState.OFFLINE,
            reason=reason,
            detail=detail,
            updated_at=time.time(),
        )

    def set(self, measurement: Measurement) -> None:
        """Replace the measurement, keeping the current liveness."""
        current = self._snapshot
        self._snapshot = CacheSnapshot(
            measurement=measurement,
            liveness=current.liveness,
            reason=current.reason,
            detail=current.detail,
            updated_at=time.time(),
        )

    def clear(self) -> None:
        """Drop the measurement, keeping the current liveness."""
        current = self._snapshot
        self._snapshot = CacheSnapshot(
            measurement=None,
            liveness=current.liveness,
            reason=current.reason,
            detail=current.detail,
            updated_at=time.time(),
        )

    def set_liveness(
        self,
        liveness: LivenessState,
        reason: Optional[OfflineReason] = None,
        detail: str = "",
    ) -> None:
        """Change liveness, keeping the current measurement."""
        if liveness is not LivenessState.OFFLINE:
            reason, detail = None, ""
        self._snapshot = CacheSnapshot(
            measurement=self._snapshot.measurement,
            liveness=liveness,
            reason=reason,
            detail=detail,
            updated_at=time.time(),
        )
