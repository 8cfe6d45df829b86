# roster/timeparse.py
from __future__ import annotations
import re
from datetime import date, datetime, time
from typing import Tuple
from dateutil import parser as du

_HHMM = re.compile(r"^(\d{1,2}):?(\d{2})(?::(\d{2}))?$")

def parse_date(d) -> date:
    if isinstance(d, datetime):
        return d.date()
    if isinstance(d, date):
        return d
    s = str(d).strip()
    # ISO dates from the API/CSV first; dayfirst only for UK-style input
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return du.parse(s, dayfirst=True).date()

def parse_time(t) -> Tuple[int, int]:
    if t is None:
        return (0, 0)
    if isinstance(t, (time, datetime)):
        return (t.hour, t.minute)
    s = str(t).strip()
    if s.isdigit():
        if len(s) <= 2:
            return (int(s), 0)
        return (int(s[:-2]), int(s[-2:]))
    m = _HHMM.match(s)
    if m:
        return (int(m.group(1)), int(m.group(2)))
    dt = du.parse(s)
    return (dt.hour, dt.minute)

def to_time(t) -> time:
    hh, mm = parse_time(t)
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise ValueError(f"Invalid time of day: {t!r}")
    return time(hh, mm)

def minutes_since_midnight(t) -> int:
    hh, mm = parse_time(t)
    return hh * 60 + mm

def format_hhmm(minutes: int) -> str:
    """Render minutes-since-midnight as HH:MM, wrapping past midnight."""
    minutes = int(minutes) % (24 * 60)
    return f"{minutes // 60:02d}:{minutes % 60:02d}"
