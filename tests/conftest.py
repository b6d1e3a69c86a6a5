"""
Pytest configuration and fixtures for owl-monitor tests.
"""

import pytest
import queue
import socket
import sys
import time
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))


VALID_PAYLOAD = (
    '<electricity id="AA37190017BB">'
    '<chan id="0"><curr units="w">32.00</curr><day units="wh">1157.67</day></chan>'
    '<chan id="1"><curr units="w">370.00</curr><day units="wh">2852.27</day></chan>'
    '<chan id="2"><curr units="w">80.00</curr><day units="wh">2318.14</day></chan>'
    '</electricity>'
)

GATEWAY_PAYLOAD = """<electricity id='AA37190017BB'>
    <signal rssi='-43' lqi='6'/>
    <battery level='100%'/>
    <chan id='0'>
       <curr units='w'>32.00</curr>
       <day units='wh'>1157.67</day>
    </chan>
    <chan id='1'>
       <curr units='w'>370.00</curr>
       <day units='wh'>2852.27</day>
    </chan>
    <chan id='2'>
       <curr units='w'>80.00</curr>
       <day units='wh'>2318.14</day>
    </chan>
</electricity>"""

INCOMPLETE_PAYLOAD = "<electricity id='AABB'></electricity>"
OTHER_PAYLOAD = "<other id='23'></other>"


def make_payload(source_id="AA37190017BB", readings=((32.0, 1157.67), (370.0, 2852.27), (80.0, 2318.14))):
    """Build an electricity payload from (power, energy) pairs."""
    chans = ''.join(
        f'<chan id="{i}"><curr units="w">{p:.2f}</curr><day units="wh">{e:.2f}</day></chan>'
        for i, (p, e) in enumerate(readings)
    )
    return f'<electricity id="{source_id}">{chans}</electricity>'


class SteppingSocket:
    """
    Socket double fed one cycle at a time.

    recvfrom() blocks until the test feeds a datagram (str/bytes) or an
    exception instance, so each receive cycle is driven explicitly.
    """

    _WAKE = object()

    def __init__(self):
        self._items = queue.Queue()
        self.timeout = None
        self.closed = False
        self.shutdown_called = False
        self.options = []

    def feed(self, item):
        self._items.put(item)

    def settimeout(self, timeout):
        self.timeout = timeout

    def setsockopt(self, *args):
        self.options.append(args)

    def recvfrom(self, bufsize):
        if self.closed:
            raise OSError(9, "Bad file descriptor")
        try:
            item = self._items.get(timeout=5.0)
        except queue.Empty:
            raise socket.timeout("timed out")
        if item is self._WAKE:
            raise OSError(9, "Bad file descriptor")
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, str):
            item = item.encode()
        return item[:bufsize], ('192.168.1.50', 22600)

    def shutdown(self, how):
        self.shutdown_called = True
        self._items.put(self._WAKE)

    def close(self):
        self.closed = True


def wait_for(predicate, timeout=2.0):
    """Poll predicate until true or timeout; returns the last result."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def valid_payload():
    return VALID_PAYLOAD


@pytest.fixture
def gateway_payload():
    """Payload as broadcast by a real gateway, with signal and battery."""
    return GATEWAY_PAYLOAD


@pytest.fixture
def stepping_socket():
    return SteppingSocket()
