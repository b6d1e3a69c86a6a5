"""
Wire payload parsing for owl-monitor.

Only the Network OWL electricity packet is supported.
"""

from .energy_packet import parse_packet, parse_decimal, ROOT_TAG

__all__ = ['parse_packet', 'parse_decimal', 'ROOT_TAG']
