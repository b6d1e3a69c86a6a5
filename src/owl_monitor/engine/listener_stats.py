"""
Listener statistics - cycle outcome counters and broadcast cadence.

The OWL gateway broadcasts roughly every 12 seconds. Interval mean and jitter
over the recent arrivals show whether the configured receive timeout leaves
enough margin above the real cadence.
"""

from collections import deque
from typing import Any, Dict, Optional
import time

import numpy as np

from ..interfaces.measurement import OutcomeKind


class ListenerStats:
    """
    Counters owned by the receive task.

    Only the receive task writes; readers get approximate values, which is
    fine for status reporting.
    """

    def __init__(self, history_size: int = 100):
        self.cycles = 0
        self.recognized = 0
        self.unrecognized = 0
        self.malformed = 0
        self.timeouts = 0
        self.socket_errors = 0
        self.start_time = 0.0
        self.last_packet_time: Optional[float] = None
        self.arrivals: deque = deque(maxlen=history_size)

    def reset(self, now: Optional[float] = None):
        """Zero all counters at listener start."""
        self.cycles = 0
        self.recognized = 0
        self.unrecognized = 0
        self.malformed = 0
        self.timeouts = 0
        self.socket_errors = 0
        self.last_packet_time = None
        self.arrivals.clear()
        self.start_time = time.time() if now is None else now

    def record_outcome(self, kind: OutcomeKind, now: Optional[float] = None):
        self.cycles += 1
        if kind is OutcomeKind.RECOGNIZED:
            self.recognized += 1
            now = time.time() if now is None else now
            self.last_packet_time = now
            self.arrivals.append(now)
        elif kind is OutcomeKind.UNRECOGNIZED:
            self.unrecognized += 1
        else:
            self.malformed += 1

    def record_timeout(self):
        self.cycles += 1
        self.timeouts += 1

    def record_socket_error(self):
        self.cycles += 1
        self.socket_errors += 1

    def _intervals(self) -> Optional[np.ndarray]:
        if len(self.arrivals) < 2:
            return None
        # copy first; the receive task may append concurrently
        return np.diff(np.asarray(list(self.arrivals), dtype=float))

    @property
    def interval_mean_s(self) -> Optional[float]:
        """Mean time between recognized broadcasts."""
        intervals = self._intervals()
        return float(np.mean(intervals)) if intervals is not None else None

    @property
    def interval_jitter_s(self) -> Optional[float]:
        """Standard deviation of the time between recognized broadcasts."""
        intervals = self._intervals()
        return float(np.std(intervals)) if intervals is not None else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cycles': self.cycles,
            'recognized': self.recognized,
            'unrecognized': self.unrecognized,
            'malformed': self.malformed,
            'timeouts': self.timeouts,
            'socket_errors': self.socket_errors,
            'start_time': self.start_time,
            'last_packet_time': self.last_packet_time,
            'interval_mean_s': self.interval_mean_s,
            'interval_jitter_s': self.interval_jitter_s,
        }
