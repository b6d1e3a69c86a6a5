#!/usr/bin/env python3
"""
Multicast Listener - receive loop and liveness state machine.

Owns the UDP multicast socket. Every receive_interval seconds one cycle runs:

    recvfrom (bounded by receive_timeout)
        │
        ├── timeout ─────────────► OFFLINE (NO_TRAFFIC), cache cleared
        ├── socket error ────────► OFFLINE (SOCKET_ERROR), cache cleared
        └── datagram ─► parse_packet
                          ├── RECOGNIZED ─► cache replaced, ONLINE
                          ├── UNRECOGNIZED ► OFFLINE (UNRECOGNIZED_TRAFFIC)
                          └── MALFORMED ──► OFFLINE (MALFORMED_TRAFFIC)

The device is a one-way broadcaster, so silence for one receive timeout is
the only failure signal: the receive timeout IS the liveness timeout.

Listener lifecycle:
    STOPPED ─start()─► STARTING ─► RUNNING ─stop()─► STOPPING ─► STOPPED
                          │
                          └── bind/join failure ─► STOPPED + NetworkError

Usage:
    from owl_monitor.engine import MulticastListener, ListenerConfig

    listener = MulticastListener()
    listener.start(ListenerConfig(group='224.192.32.19', port=22600))
    ...
    measurement = listener.get_latest()
    listener.stop()
"""

import ipaddress
import logging
import math
import socket
import threading
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from ..interfaces.measurement import (
    CacheSnapshot,
    LivenessState,
    Measurement,
    OfflineReason,
    OutcomeKind,
    ParseOutcome,
)
from ..packets.energy_packet import parse_packet
from .listener_stats import ListenerStats
from .measurement_cache import MeasurementCache
from .periodic_task import PeriodicTask

logger = logging.getLogger('owl-monitor.engine')

# Network OWL gateway defaults
DEFAULT_GROUP = '224.192.32.19'
DEFAULT_PORT = 22600
DEFAULT_RECEIVE_TIMEOUT = 60.0
DEFAULT_RECEIVE_INTERVAL = 1.0
DEFAULT_MAX_PAYLOAD_SIZE = 2048
MAX_UDP_PAYLOAD = 65535


class ConfigError(ValueError):
    """Listener configuration is invalid. Fatal to starting."""


class NetworkError(OSError):
    """Socket could not be opened, bound, or joined to the group."""


class ListenerState(Enum):
    """Listener lifecycle state."""
    STOPPED = "STOPPED"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class ListenerConfig:
    """
    Listener configuration, validated on construction.

    Raises:
        ConfigError: If any value is out of range
    """
    group: str = DEFAULT_GROUP
    port: int = DEFAULT_PORT
    receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT     # seconds
    receive_interval: float = DEFAULT_RECEIVE_INTERVAL   # seconds between cycles
    max_payload_size: int = DEFAULT_MAX_PAYLOAD_SIZE     # receive buffer, bytes
    interface: str = '0.0.0.0'                           # local interface to join on

    def __post_init__(self):
        try:
            group = ipaddress.ip_address(self.group)
        except (TypeError, ValueError):
            raise ConfigError(f"group must be an IP address, got {self.group!r}")
        if group.version != 4:
            raise ConfigError(f"group must be an IPv4 address, got {self.group}")
        if not group.is_multicast:
            raise ConfigError(f"group must be a multicast address, got {self.group}")

        try:
            interface = ipaddress.ip_address(self.interface)
        except (TypeError, ValueError):
            raise ConfigError(f"interface must be an IP address, got {self.interface!r}")
        if interface.version != 4:
            raise ConfigError(f"interface must be an IPv4 address, got {self.interface}")

        if not _is_int(self.port) or not 1 <= self.port <= 65535:
            raise ConfigError(f"port must be 1-65535, got {self.port!r}")

        for name in ('receive_timeout', 'receive_interval'):
            value = getattr(self, name)
            if not _is_number(value) or not math.isfinite(value) or value <= 0:
                raise ConfigError(f"{name} must be a positive number of seconds, got {value!r}")
            object.__setattr__(self, name, float(value))

        if not _is_int(self.max_payload_size) or not 1 <= self.max_payload_size <= MAX_UDP_PAYLOAD:
            raise ConfigError(
                f"max_payload_size must be 1-{MAX_UDP_PAYLOAD}, got {self.max_payload_size!r}"
            )

    @classmethod
    def from_dict(cls, section: Dict[str, Any]) -> "ListenerConfig":
        """
        Build a config from a [listener] TOML table.

        Missing keys take their defaults; unknown keys are rejected.
        """
        if not isinstance(section, dict):
            raise ConfigError(f"[listener] must be a table, got {type(section).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(section) - known)
        if unknown:
            raise ConfigError(f"unknown listener key(s): {', '.join(unknown)}")
        return cls(**section)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def open_multicast_socket(config: ListenerConfig) -> socket.socket:
    """
    Open a UDP socket bound to config.port and joined to config.group.

    Raises:
        OSError: On bind or membership failure (the socket is closed first)
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(('', config.port))
        mreq = socket.inet_aton(config.group) + socket.inet_aton(config.interface)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
    except OSError:
        sock.close()
        raise
    return sock


class MulticastListener:
    """
    Receives OWL broadcasts and keeps the latest valid measurement.

    One receive task (a PeriodicTask thread) is the only writer of the cache.
    Readers call get_latest() / get_liveness() / snapshot() from any thread.
    """

    def __init__(
        self,
        cache: Optional[MeasurementCache] = None,
        parser: Callable[[Union[str, bytes]], ParseOutcome] = parse_packet,
        socket_factory: Callable[[ListenerConfig], socket.socket] = open_multicast_socket,
        join_timeout: float = 2.0,
    ):
        """
        Initialize the listener (no socket is opened until start()).

        Args:
            cache: Cache to publish into; a new one is created if None
            parser: Payload parser, parse_packet by default
            socket_factory: Opens the bound, joined socket for a config
            join_timeout: Seconds stop() waits for the receive thread
        """
        self.cache = cache if cache is not None else MeasurementCache()
        self.stats = ListenerStats()
        self.state = ListenerState.STOPPED
        self.config: Optional[ListenerConfig] = None

        self._parser = parser
        self._socket_factory = socket_factory
        self._join_timeout = join_timeout

        self._sock: Optional[socket.socket] = None
        self._task: Optional[PeriodicTask] = None
        self._stopping = threading.Event()
        self._lifecycle_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Host-facing interface
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.state is ListenerState.RUNNING

    def start(self, config: ListenerConfig):
        """
        Join the multicast group and schedule the receive task.

        Raises:
            ConfigError: If config is not a ListenerConfig
            NetworkError: If the socket cannot be bound or joined
        """
        if not isinstance(config, ListenerConfig):
            raise ConfigError(f"expected ListenerConfig, got {type(config).__name__}")

        with self._lifecycle_lock:
            if self.state is not ListenerState.STOPPED:
                logger.warning(f"Listener already {self.state.value}")
                return

            self.state = ListenerState.STARTING
            sock = None
            try:
                sock = self._socket_factory(config)
                sock.settimeout(config.receive_timeout)
            except OSError as e:
                if sock is not None:
                    sock.close()
                self.state = ListenerState.STOPPED
                logger.error(f"Failed to join multicast {config.group}:{config.port}: {e}")
                raise NetworkError(
                    f"{e.strerror or e} on multicast connection '{config.group}:{config.port}'"
                ) from e

            self.config = config
            self._sock = sock
            self._stopping.clear()
            self.cache.reset()
            self.stats.reset()
            self._task = PeriodicTask(
                self.run_cycle,
                config.receive_interval,
                name="OwlReceive",
            )
            self.state = ListenerState.RUNNING
            self._task.start()

        logger.info(
            f"Multicast socket opened on '{config.group}:{config.port}' "
            f"(timeout {config.receive_timeout:g}s, interval {config.receive_interval:g}s)"
        )

    def stop(self):
        """
        Cancel the receive task, leave the group and close the socket.

        Idempotent and safe from any thread. A receive blocked in recvfrom is
        woken by shutting the socket down under it.
        """
        with self._lifecycle_lock:
            if self.state in (ListenerState.STOPPED, ListenerState.STOPPING):
                return
            self.state = ListenerState.STOPPING
            self._stopping.set()
            task, sock = self._task, self._sock
            self._task = None
            self._sock = None

        if task is not None:
            task.cancel()
        if sock is not None:
            self._close_socket(sock)
        if task is not None and not task.join(timeout=self._join_timeout):
            logger.warning(f"Receive thread did not exit within {self._join_timeout}s")

        self.cache.reset()
        with self._lifecycle_lock:
            self.state = ListenerState.STOPPED
        logger.info("Multicast listener stopped")

    def get_latest(self) -> Optional[Measurement]:
        return self.cache.get_latest()

    def get_liveness(self) -> LivenessState:
        return self.cache.get_liveness()

    def snapshot(self) -> CacheSnapshot:
        return self.cache.snapshot()

    def __enter__(self) -> "MulticastListener":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Receive cycle
    # ------------------------------------------------------------------

    def run_cycle(self):
        """
        One receive -> parse -> update pass.

        Every failure is absorbed here and turned into a liveness
        transition. Failures caused by stop() closing the socket are dropped.
        """
        sock = self._sock
        config = self.config
        if sock is None or config is None or self._stopping.is_set():
            return

        try:
            data, sender = sock.recvfrom(config.max_payload_size)
        except socket.timeout:
            if self._stopping.is_set():
                return
            self._go_offline(
                OfflineReason.NO_TRAFFIC,
                f"no broadcast within {config.receive_timeout:g}s",
            )
            self.stats.record_timeout()
            return
        except OSError as e:
            if self._stopping.is_set():
                return
            self._go_offline(OfflineReason.SOCKET_ERROR, str(e))
            self.stats.record_socket_error()
            return

        if self._stopping.is_set():
            return

        self.handle_payload(data, sender)

    def handle_payload(self, data: Union[str, bytes], sender: Any = None):
        """Parse one datagram and publish the outcome to the cache."""
        try:
            outcome = self._parser(data)
        except Exception as e:
            logger.exception(f"Parser failed on datagram from {sender}: {e}")
            outcome = ParseOutcome.malformed(f"parser error: {e}")

        if outcome.kind is OutcomeKind.RECOGNIZED:
            self._go_online(outcome.measurement, sender)
        elif outcome.kind is OutcomeKind.UNRECOGNIZED:
            self._go_offline(OfflineReason.UNRECOGNIZED_TRAFFIC, outcome.reason)
        elif outcome.kind is OutcomeKind.MALFORMED:
            self._go_offline(OfflineReason.MALFORMED_TRAFFIC, outcome.reason)
        else:
            raise ValueError(f"Unhandled outcome kind: {outcome.kind}")
        self.stats.record_outcome(outcome.kind)

    def _go_online(self, measurement: Measurement, sender: Any):
        previous = self.cache.get_liveness()
        self.cache.publish(measurement)
        if previous is not LivenessState.ONLINE:
            logger.info(f"ONLINE: energy packet from '{measurement.source_id}' ({sender})")
        else:
            logger.debug(
                f"Energy packet from '{measurement.source_id}': "
                f"{measurement.total_power_w:.1f} W total"
            )

    def _go_offline(self, reason: OfflineReason, detail: str):
        previous = self.cache.snapshot()
        self.cache.invalidate(reason, detail)
        if previous.liveness is not LivenessState.OFFLINE or previous.reason is not reason:
            logger.warning(f"OFFLINE ({reason.value}): {detail}")
        else:
            logger.debug(f"Still OFFLINE ({reason.value}): {detail}")

    def _close_socket(self, sock: socket.socket):
        # shutdown wakes a recvfrom blocked in another thread; ENOTCONN is
        # expected for an unconnected UDP socket
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        config = self.config
        if config is not None:
            try:
                mreq = socket.inet_aton(config.group) + socket.inet_aton(config.interface)
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, mreq)
            except OSError as e:
                logger.debug(f"Leaving multicast group failed: {e}")
        sock.close()
