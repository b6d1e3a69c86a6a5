"""
Electricity Packet Parser

Turns one Network OWL multicast payload into a ParseOutcome. The function is
total: every failure path is an outcome variant, nothing is raised.

================================================================================
WIRE FORMAT
================================================================================
    <electricity id="AA37190017BB">
      <signal rssi="-43" lqi="6"/>              (optional)
      <battery level="100%"/>                   (optional)
      <chan id="0"><curr units="w">32.00</curr><day units="wh">1157.67</day></chan>
      <chan id="1">...</chan>
      <chan id="2">...</chan>
    </electricity>

    root tag "electricity"   recognition marker
    @id                      source id
    chan[@id=N]/curr         instantaneous power, watts
    chan[@id=N]/day          energy accumulated today, watt-hours

================================================================================
CLASSIFICATION
================================================================================
    UNRECOGNIZED  first element is not <electricity> (this includes empty and
                  non-XML input)
    MALFORMED     first element is <electricity> but the document is not
                  well-formed, @id is empty, or a curr/day leaf is missing or
                  not a plain decimal number
    RECOGNIZED    everything present and numeric

Decimal values always use '.' as the separator. Locale is never consulted.
"""

import logging
import re
import xml.etree.ElementTree as ET
from typing import Optional, Union

from ..interfaces.measurement import Measurement, ParseOutcome, PhaseReading

logger = logging.getLogger('owl-monitor.packets')

ROOT_TAG = 'electricity'
CHANNEL_IDS = ('0', '1', '2')
POWER_TAG = 'curr'
ENERGY_TAG = 'day'

# Plain decimal: optional sign, digits, optional fraction. No exponent, no
# grouping, no nan/inf.
_DECIMAL_RE = re.compile(r'^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$')

# First element name, skipping an XML declaration and leading comments.
_FIRST_ELEMENT_RE = re.compile(
    r'^\s*(?:<\?xml[^>]*\?>\s*)?(?:<!--.*?-->\s*)*<\s*([A-Za-z_][\w.:-]*)',
    re.DOTALL,
)


def parse_decimal(text: Optional[str]) -> Optional[float]:
    """
    Parse a wire decimal ('.' separator), or None if it is not one.

    Examples:
        "1157.67" -> 1157.67
        " 32 "    -> 32.0
        "1,5"     -> None
        "1e3"     -> None
    """
    if text is None:
        return None
    text = text.strip()
    if not _DECIMAL_RE.match(text):
        return None
    return float(text)


def _first_element_name(payload: Union[str, bytes]) -> Optional[str]:
    if isinstance(payload, bytes):
        payload = payload.decode('utf-8', errors='replace')
    match = _FIRST_ELEMENT_RE.match(payload)
    return match.group(1) if match else None


def _optional_decimal(element: Optional[ET.Element], attribute: str) -> Optional[float]:
    if element is None:
        return None
    raw = element.get(attribute)
    if raw is None:
        return None
    value = parse_decimal(raw.rstrip('%'))
    if value is None:
        logger.debug(f"Ignoring unparsable {element.tag}/@{attribute}: {raw!r}")
    return value


def parse_packet(payload: Union[str, bytes]) -> ParseOutcome:
    """
    Parse one payload.

    Args:
        payload: Raw datagram contents, text or bytes

    Returns:
        ParseOutcome with kind RECOGNIZED, UNRECOGNIZED or MALFORMED
    """
    if not payload:
        return ParseOutcome.unrecognized("empty payload")

    try:
        root = ET.fromstring(payload)
    except (ET.ParseError, ValueError, LookupError) as e:
        # Decide on the marker without a parse tree (LookupError: unknown
        # encoding in the XML declaration)
        name = _first_element_name(payload)
        if name == ROOT_TAG:
            return ParseOutcome.malformed(f"not well-formed: {e}")
        return ParseOutcome.unrecognized(f"not an {ROOT_TAG} document: {e}")

    if root.tag != ROOT_TAG:
        return ParseOutcome.unrecognized(f"unexpected root element <{root.tag}>")

    source_id = (root.get('id') or '').strip()
    if not source_id:
        return ParseOutcome.malformed(f"{ROOT_TAG}/@id missing")

    phases = []
    for chan_id in CHANNEL_IDS:
        values = []
        for tag in (POWER_TAG, ENERGY_TAG):
            path = f"chan[@id='{chan_id}']/{tag}"
            leaf = root.find(path)
            if leaf is None:
                return ParseOutcome.malformed(f"{path} missing")
            value = parse_decimal(leaf.text)
            if value is None:
                return ParseOutcome.malformed(f"{path} not numeric: {leaf.text!r}")
            values.append(value)
        phases.append(PhaseReading(power_w=values[0], energy_wh=values[1]))

    signal = root.find('signal')
    battery = root.find('battery')

    measurement = Measurement(
        source_id=source_id,
        phases=tuple(phases),
        signal_rssi=_optional_decimal(signal, 'rssi'),
        signal_lqi=_optional_decimal(signal, 'lqi'),
        battery_level=_optional_decimal(battery, 'level'),
    )
    return ParseOutcome.recognized(measurement)
