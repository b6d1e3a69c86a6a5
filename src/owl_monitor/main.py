#!/usr/bin/env python3
"""
owl-monitor: Network OWL Energy Monitor Listener

Main entry point for the owl-monitor daemon. This service:
1. Joins the OWL gateway's multicast group
2. Parses each electricity broadcast (three phases of power and energy)
3. Tracks device liveness from the broadcast cadence
4. Serves the latest measurement over HTTP (/health, /status, /metrics)

Usage:
    # Start daemon
    owl-monitor --config /etc/owl-monitor/config.toml

    # Override the group and port without a config file
    owl-monitor --group 224.192.32.19 --port 22600 --debug

Config file (all keys optional):
    [listener]
    group = "224.192.32.19"
    port = 22600
    receive_timeout = 60.0
    receive_interval = 1.0
    max_payload_size = 2048
    interface = "0.0.0.0"

    [status]
    port = 8080            # 0 disables the HTTP server
    bind_address = "0.0.0.0"
"""

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import toml

# Set up logging before imports that use it
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('owl-monitor')

from .engine.multicast_listener import (
    ConfigError,
    ListenerConfig,
    MulticastListener,
    NetworkError,
)
from .output.status_server import StatusServer

EXIT_CONFIG_ERROR = 1
EXIT_NETWORK_ERROR = 2

DEFAULT_STATUS_PORT = 8080


def default_config() -> Dict[str, Any]:
    """Built-in configuration used when no file is given."""
    return {
        'listener': ListenerConfig().to_dict(),
        'status': {
            'port': DEFAULT_STATUS_PORT,
            'bind_address': '0.0.0.0',
        },
    }


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a TOML file, on top of the defaults.

    Raises:
        ConfigError: If the file cannot be parsed or a section is not a table
    """
    config = default_config()
    if not config_path:
        return config

    path = Path(config_path)
    if not path.exists():
        logger.warning(f"Config file {config_path} not found, using defaults")
        return config

    try:
        with open(path, 'r') as f:
            raw = toml.load(f)
    except toml.TomlDecodeError as e:
        raise ConfigError(f"{config_path}: {e}") from e

    for section in ('listener', 'status'):
        if section not in raw:
            continue
        if not isinstance(raw[section], dict):
            raise ConfigError(f"[{section}] must be a table")
        config[section].update(raw[section])

    return config


class OwlMonitorDaemon:
    """
    Main owl-monitor daemon.

    Hosts one MulticastListener and, optionally, the status HTTP server.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize the daemon.

        Args:
            config: Configuration dictionary with [listener] and [status]

        Raises:
            ConfigError: If the listener section is invalid
        """
        self.config = config
        self.listener_config = ListenerConfig.from_dict(config.get('listener', {}))
        self.listener = MulticastListener()

        status = config.get('status', {})
        self.status_port = status.get('port', DEFAULT_STATUS_PORT)
        self.status_bind = status.get('bind_address', '0.0.0.0')
        self.status_server: Optional[StatusServer] = None

        self._shutdown = threading.Event()

    def start(self):
        """
        Start the listener and the status server.

        Raises:
            NetworkError: If the multicast group cannot be joined
        """
        self.listener.start(self.listener_config)

        if self.status_port:
            self.status_server = StatusServer(port=self.status_port, bind_address=self.status_bind)
            self.status_server.set_listener(self.listener)
            try:
                self.status_server.start()
            except OSError as e:
                logger.error(f"Failed to start status server: {e}")
                self.status_server = None

    def stop(self):
        """Stop the status server and the listener."""
        self._shutdown.set()
        if self.status_server:
            self.status_server.stop()
            self.status_server = None
        self.listener.stop()

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}")
        self._shutdown.set()

    def run(self):
        """Run the daemon (blocking) until SIGINT/SIGTERM."""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        self.start()
        try:
            while not self._shutdown.wait(1.0):
                pass
        finally:
            self.stop()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='owl-monitor: Network OWL energy monitor listener',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start with config file
    owl-monitor --config /etc/owl-monitor/config.toml

    # Short liveness timeout for testing
    owl-monitor --timeout 15 --interval 0.5 --debug
        """
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to TOML configuration file'
    )
    parser.add_argument(
        '--group',
        help='Multicast group address (default: 224.192.32.19)'
    )
    parser.add_argument(
        '--port',
        type=int,
        help='Multicast port (default: 22600)'
    )
    parser.add_argument(
        '--timeout',
        type=float,
        help='Receive timeout in seconds; also the liveness timeout (default: 60)'
    )
    parser.add_argument(
        '--interval',
        type=float,
        help='Seconds between receive cycles (default: 1)'
    )
    parser.add_argument(
        '--status-port',
        type=int,
        help='HTTP port for status endpoint (default: 8080, 0 to disable)'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)

        # Apply command-line overrides
        overrides = {
            'group': args.group,
            'port': args.port,
            'receive_timeout': args.timeout,
            'receive_interval': args.interval,
        }
        config['listener'].update({k: v for k, v in overrides.items() if v is not None})
        if args.status_port is not None:
            config['status']['port'] = args.status_port

        daemon = OwlMonitorDaemon(config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    try:
        daemon.run()
    except NetworkError as e:
        logger.error(f"Network error: {e}")
        sys.exit(EXIT_NETWORK_ERROR)


if __name__ == '__main__':
    main()
