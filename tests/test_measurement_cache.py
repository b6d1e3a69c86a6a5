"""
Unit tests for MeasurementCache.

Includes the torn-read check: a reader polling while the writer alternates
between valid and malformed cycles must always see a consistent pair.
"""

import threading

from conftest import INCOMPLETE_PAYLOAD, make_payload


def _measurement(source_id="AA37190017BB"):
    from owl_monitor.packets import parse_packet
    return parse_packet(make_payload(source_id)).measurement


class TestMeasurementCache:
    """Tests for the cache mutators and readers."""

    def test_initial_state(self):
        """Test a new cache is UNKNOWN with no measurement."""
        from owl_monitor.engine import MeasurementCache
        from owl_monitor.interfaces import LivenessState

        cache = MeasurementCache()
        assert cache.get_latest() is None
        assert cache.get_liveness() is LivenessState.UNKNOWN
        assert cache.snapshot().reason is None

    def test_publish_and_invalidate(self):
        """Test the combined mutators swap both fields together."""
        from owl_monitor.engine import MeasurementCache
        from owl_monitor.interfaces import LivenessState, OfflineReason

        cache = MeasurementCache()
        m = _measurement()

        cache.publish(m)
        assert cache.get_latest() is m
        assert cache.get_liveness() is LivenessState.ONLINE

        cache.invalidate(OfflineReason.NO_TRAFFIC, "silence")
        snap = cache.snapshot()
        assert snap.measurement is None
        assert snap.liveness is LivenessState.OFFLINE
        assert snap.reason is OfflineReason.NO_TRAFFIC
        assert snap.detail == "silence"

    def test_individual_mutators(self):
        """Test set/clear/set_liveness change only their own field."""
        from owl_monitor.engine import MeasurementCache
        from owl_monitor.interfaces import LivenessState, OfflineReason

        cache = MeasurementCache()
        m = _measurement()

        cache.set(m)
        assert cache.get_latest() is m
        assert cache.get_liveness() is LivenessState.UNKNOWN

        cache.set_liveness(LivenessState.ONLINE)
        assert cache.get_latest() is m
        assert cache.get_liveness() is LivenessState.ONLINE

        cache.clear()
        assert cache.get_latest() is None
        assert cache.get_liveness() is LivenessState.ONLINE

        cache.set_liveness(LivenessState.OFFLINE, OfflineReason.SOCKET_ERROR, "boom")
        assert cache.snapshot().reason is OfflineReason.SOCKET_ERROR

        cache.set_liveness(LivenessState.ONLINE, OfflineReason.SOCKET_ERROR)
        assert cache.snapshot().reason is None

    def test_reset(self):
        from owl_monitor.engine import MeasurementCache
        from owl_monitor.interfaces import LivenessState

        cache = MeasurementCache()
        cache.publish(_measurement())
        cache.reset()
        assert cache.get_latest() is None
        assert cache.get_liveness() is LivenessState.UNKNOWN

    def test_snapshot_is_stable(self):
        """Test a snapshot taken earlier is not changed by later writes."""
        from owl_monitor.engine import MeasurementCache
        from owl_monitor.interfaces import LivenessState, OfflineReason

        cache = MeasurementCache()
        cache.publish(_measurement())
        snap = cache.snapshot()
        cache.invalidate(OfflineReason.MALFORMED_TRAFFIC)
        assert snap.liveness is LivenessState.ONLINE
        assert snap.measurement is not None


class TestConcurrentReaders:
    """Reader threads never observe a torn (measurement, liveness) pair."""

    def test_no_torn_pairs(self):
        from owl_monitor.engine import MulticastListener
        from owl_monitor.interfaces import LivenessState, OfflineReason

        listener = MulticastListener()
        payloads = [
            make_payload(f"CYCLE{i:03d}") if i % 2 == 0 else INCOMPLETE_PAYLOAD
            for i in range(100)
        ]
        torn = []
        reads = []
        writer_done = threading.Event()

        def reader():
            count = 0
            for _ in range(10000):
                snap = listener.snapshot()
                count += 1
                if snap.liveness is LivenessState.ONLINE:
                    if snap.measurement is None or snap.reason is not None:
                        torn.append(snap)
                elif snap.liveness is LivenessState.OFFLINE:
                    if snap.measurement is not None or snap.reason is not OfflineReason.MALFORMED_TRAFFIC:
                        torn.append(snap)
                elif snap.measurement is not None:
                    torn.append(snap)
            reads.append(count)

        def writer():
            for payload in payloads:
                listener.handle_payload(payload)
            writer_done.set()

        threads = [threading.Thread(target=reader) for _ in range(2)]
        threads.append(threading.Thread(target=writer))
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert writer_done.is_set()
        assert reads == [10000, 10000]
        assert torn == []
        assert listener.stats.recognized == 50
        assert listener.stats.malformed == 50
