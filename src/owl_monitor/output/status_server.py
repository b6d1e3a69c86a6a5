"""
Status HTTP Server for owl-monitor.

Provides a simple HTTP endpoint for the device liveness and the latest
measurement, for monitoring systems like Prometheus, Grafana, or simple
health checks.

Endpoints:
    GET /health     - 200 while the device is ONLINE, 503 otherwise
    GET /status     - JSON liveness, latest measurement and listener stats
    GET /metrics    - Prometheus-compatible metrics

Usage:
    from owl_monitor.output.status_server import StatusServer

    server = StatusServer(port=8080)
    server.set_listener(multicast_listener)
    server.start()
"""

import json
import logging
import threading
import time
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger('owl-monitor.status')


def _escape_label(value: str) -> str:
    """Escape a Prometheus label value (backslash, double quote, newline)."""
    return value.replace('\\', '\\\\').replace('"', '\\"').replace('\n', '\\n')


class StatusRequestHandler(BaseHTTPRequestHandler):
    """HTTP request handler for status endpoints."""

    # Class-level reference to status callback
    get_status: Optional[Callable[[], Dict[str, Any]]] = None

    def log_message(self, format, *args):
        """Route access logging to debug."""
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self):
        """Handle GET requests."""
        if self.path == '/health':
            self._handle_health()
        elif self.path == '/status':
            self._handle_status()
        elif self.path == '/metrics':
            self._handle_metrics()
        else:
            self.send_error(404, "Not Found")

    def _send(self, code: int, content_type: str, body: bytes):
        self.send_response(code)
        self.send_header('Content-Type', content_type)
        self.send_header('Content-Length', str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _handle_health(self):
        """200 while ONLINE, 503 with liveness and reason otherwise."""
        if not self.get_status:
            self._send(503, 'text/plain', b'No listener connected\n')
            return
        try:
            status = self.get_status()
        except Exception as e:
            logger.exception(f"Health request failed: {e}")
            self._send(500, 'text/plain', f'ERROR {e}\n'.encode())
            return
        liveness = status.get('liveness', 'UNKNOWN')
        if liveness == 'ONLINE':
            self._send(200, 'text/plain', b'ONLINE\n')
        else:
            reason = status.get('reason') or ''
            detail = status.get('detail') or ''
            text = f"{liveness} {reason} {detail}".strip()
            self._send(503, 'text/plain', f"{text}\n".encode())

    def _handle_status(self):
        """Return JSON status."""
        if self.get_status:
            try:
                status = self.get_status()
                self._send(200, 'application/json', json.dumps(status, indent=2).encode())
            except Exception as e:
                logger.exception(f"Status request failed: {e}")
                self._send(500, 'application/json', json.dumps({'error': str(e)}).encode())
        else:
            self._send(503, 'application/json',
                       json.dumps({'error': 'No listener connected'}).encode())

    def _handle_metrics(self):
        """Return Prometheus-compatible metrics."""
        if self.get_status:
            try:
                status = self.get_status()
                metrics = self._format_prometheus_metrics(status)
                self._send(200, 'text/plain; version=0.0.4', metrics.encode())
            except Exception as e:
                logger.exception(f"Metrics request failed: {e}")
                self._send(500, 'text/plain', f'# Error: {e}\n'.encode())
        else:
            self._send(503, 'text/plain', b'# No listener connected\n')

    def _format_prometheus_metrics(self, status: Dict[str, Any]) -> str:
        """Format status as Prometheus metrics."""
        stats = status.get('stats', {})
        lines = [
            '# HELP owl_monitor_online 1 while valid telemetry is arriving, else 0',
            '# TYPE owl_monitor_online gauge',
            f'owl_monitor_online {1 if status.get("liveness") == "ONLINE" else 0}',
            '',
            '# HELP owl_monitor_cycles_total Receive cycles by outcome',
            '# TYPE owl_monitor_cycles_total counter',
        ]
        for outcome in ('recognized', 'unrecognized', 'malformed', 'timeouts', 'socket_errors'):
            lines.append(
                f'owl_monitor_cycles_total{{outcome="{outcome}"}} {stats.get(outcome, 0)}'
            )

        interval = stats.get('interval_mean_s')
        if interval is not None:
            lines.extend([
                '',
                '# HELP owl_monitor_broadcast_interval_seconds Mean time between valid broadcasts',
                '# TYPE owl_monitor_broadcast_interval_seconds gauge',
                f'owl_monitor_broadcast_interval_seconds {interval:.3f}',
            ])

        # Per-phase metrics only while a measurement is cached
        measurement = status.get('measurement')
        if measurement:
            source = _escape_label(str(measurement.get('source_id', '')))
            lines.extend([
                '',
                '# HELP owl_monitor_power_watts Instantaneous power per phase',
                '# TYPE owl_monitor_power_watts gauge',
            ])
            for i, phase in enumerate(measurement.get('phases', []), start=1):
                lines.append(
                    f'owl_monitor_power_watts{{source="{source}",phase="{i}"}} '
                    f'{phase["power_w"]:.2f}'
                )
            lines.extend([
                '',
                '# HELP owl_monitor_energy_watt_hours Energy accumulated today per phase',
                '# TYPE owl_monitor_energy_watt_hours gauge',
            ])
            for i, phase in enumerate(measurement.get('phases', []), start=1):
                lines.append(
                    f'owl_monitor_energy_watt_hours{{source="{source}",phase="{i}"}} '
                    f'{phase["energy_wh"]:.2f}'
                )

        lines.append('')
        return '\n'.join(lines)


class StatusServer:
    """
    HTTP server for status monitoring.

    Runs in a background thread and only reads the listener's cache.
    """

    def __init__(self, port: int = 8080, bind_address: str = '0.0.0.0'):
        """
        Initialize the status server.

        Args:
            port: HTTP port to listen on
            bind_address: Address to bind to (default: all interfaces)
        """
        self.port = port
        self.bind_address = bind_address
        self.server: Optional[HTTPServer] = None
        self.thread: Optional[threading.Thread] = None
        self.listener = None
        self._running = False

    def set_listener(self, listener):
        """
        Connect to a MulticastListener for status reporting.

        Args:
            listener: MulticastListener instance
        """
        self.listener = listener
        StatusRequestHandler.get_status = self._get_status

    def _get_status(self) -> Dict[str, Any]:
        """Get current status from the listener."""
        if not self.listener:
            return {'error': 'No listener connected'}

        status = {'timestamp': time.time()}
        status.update(self.listener.snapshot().to_dict())
        status['listener_state'] = self.listener.state.value
        if self.listener.config is not None:
            status['config'] = self.listener.config.to_dict()
        status['stats'] = self.listener.stats.to_dict()
        return status

    def start(self):
        """
        Start the status server in a background thread.

        Raises:
            OSError: If the HTTP port cannot be bound
        """
        if self._running:
            logger.warning("Status server already running")
            return

        self.server = HTTPServer(
            (self.bind_address, self.port),
            StatusRequestHandler
        )
        # Set timeout so handle_request doesn't block forever
        self.server.timeout = 0.5
        self._running = True

        self.thread = threading.Thread(
            target=self._serve,
            name="StatusServer",
            daemon=True
        )
        self.thread.start()

        logger.info(f"Status server started on http://{self.bind_address}:{self.port}")
        logger.info("  GET /health  - Liveness check")
        logger.info("  GET /status  - JSON status")
        logger.info("  GET /metrics - Prometheus metrics")

    def _serve(self):
        """Server loop (runs in background thread)."""
        while self._running:
            try:
                self.server.handle_request()
            except OSError as e:
                if self._running:
                    logger.debug(f"Status server request error: {e}")

    def stop(self):
        """Stop the status server."""
        if not self._running:
            return
        self._running = False
        if self.thread:
            self.thread.join(timeout=2.0)
            self.thread = None
        if self.server:
            self.server.server_close()
            self.server = None
        logger.info("Status server stopped")
