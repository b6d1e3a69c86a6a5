"""Output adapters - HTTP status and Prometheus metrics."""

from .status_server import StatusServer

__all__ = ['StatusServer']
