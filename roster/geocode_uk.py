# roster/geocode_uk.py
import re
from typing import Optional

_POSTCODE_RE = re.compile(r"[A-Za-z]{1,2}\d(?:\d|[A-Za-z])?\s*\d[A-Za-z]{2}")

def normalize_postcode(pc: str) -> Optional[str]:
    if not isinstance(pc, str):
        return None
    s = pc.upper().replace(" ", "")
    m = _POSTCODE_RE.search(s)
    if not m:
        return None
    s = m.group(0)
    return s[:-3].strip() + " " + s[-3:]

def outward_code(pc: Optional[str]) -> Optional[str]:
    """Area+district part of a UK postcode ("S11" for "S11 8AB")."""
    if not pc or not isinstance(pc, str) or not pc.strip():
        return None
    norm = normalize_postcode(pc)
    if norm:
        return norm.split(" ")[0]
    # partial postcodes ("S11") are kept as typed
    return pc.strip().upper().split(" ")[0]

def same_outward_code(pc1: Optional[str], pc2: Optional[str]) -> bool:
    a, b = outward_code(pc1), outward_code(pc2)
    return bool(a) and a == b
