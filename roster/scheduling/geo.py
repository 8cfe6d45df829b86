from __future__ import annotations
from typing import Tuple

LatLon = Tuple[float, float]

EARTH_RADIUS_MILES = 3959.0

# Reference point for the offline pseudo-geocoder (Sheffield)
PSEUDO_REFERENCE: LatLon = (53.38, -1.47)

def pseudo_geocode(address: str) -> LatLon:
    """
    Deterministic stand-in coordinates for an address string.

    Sum of character codes modulo 100, offset from PSEUDO_REFERENCE in
    thousandths of a degree. Same string -> same point, in every process.
    These are NOT real coordinates; they only keep offline results stable.
    """
    h = sum(ord(ch) for ch in str(address or ""))
    offset = (h % 100) / 1000
    return (PSEUDO_REFERENCE[0] + offset, PSEUDO_REFERENCE[1] + offset)
