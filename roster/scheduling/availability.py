"""
availability.py

Can driver D take a trip on day X at time T for N minutes?

Checks run in a fixed order and each produces typed conflicts:
  1. approved leave covering the day          -> unavailable / critical
  2. overlapping non-cancelled trips that day  -> time_overlap / critical (one per trip)
  3. day total above 9h (missing duration=60)  -> max_hours / warning
  4. short rest after previous day (optional)  -> no_rest_period / warning

A driver is available when no critical conflict was produced. All interval
maths is within one calendar day; nothing wraps past midnight.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Optional, Sequence

from ..timeparse import format_hhmm, minutes_since_midnight
from . import config
from .models import AvailabilityResult, Conflict, Trip
from .store import TripStore

logger = logging.getLogger(__name__)


def _is_critical(c: Conflict) -> bool:
    return c.severity == "critical"


class AvailabilityChecker:
    def __init__(self, store: TripStore, min_rest_minutes: Optional[int] = None):
        self.store = store
        self.min_rest_minutes = config.min_rest_minutes() if min_rest_minutes is None else int(min_rest_minutes)

    def check(
        self,
        tenant_id: int,
        driver_id: int,
        day: dt.date,
        start_time: Any,
        duration_minutes: Optional[int] = None,
        exclude_trip_id: Optional[int] = None,
        extra_trips: Sequence[Trip] = (),
    ) -> AvailabilityResult:
        """
        ``exclude_trip_id`` drops that trip from the overlap scan and the daily
        total (re-checking an already assigned trip against itself).
        ``extra_trips`` are treated as already assigned to the driver that day
        (proposals of a plan that has not been committed yet).
        """
        duration = config.DEFAULT_TRIP_MINUTES if duration_minutes is None else int(duration_minutes)
        cand_start = minutes_since_midnight(start_time)
        cand_end = cand_start + duration
        conflicts: List[Conflict] = []

        # 1. leave
        for record in self.store.list_approved_leave(tenant_id, driver_id, day):
            conflicts.append(Conflict(
                conflict_type="unavailable",
                severity="critical",
                driver_id=driver_id,
                trip_id=exclude_trip_id,
                details=f"Driver is on {record.holiday_type} leave",
            ))

        day_trips = [
            t for t in list(self.store.list_trips_for_driver_date(tenant_id, driver_id, day)) + list(extra_trips)
            if not t.is_cancelled and t.trip_id != exclude_trip_id and t.trip_date == day
        ]

        # 2. overlaps: [start, start+duration) intersects [cand_start, cand_end)
        for trip in day_trips:
            if trip.start_minute < cand_end and cand_start < trip.end_minute:
                conflicts.append(Conflict(
                    conflict_type="time_overlap",
                    severity="critical",
                    driver_id=driver_id,
                    trip_id=exclude_trip_id if exclude_trip_id is not None else trip.trip_id,
                    related_trip_id=trip.trip_id,
                    details=f"Overlaps with existing trip at {format_hhmm(trip.start_minute)}",
                ))

        # 3. daily driving cap
        current_minutes = sum(t.effective_duration for t in day_trips)
        if current_minutes + duration > config.DAILY_LIMIT_MINUTES:
            conflicts.append(Conflict(
                conflict_type="max_hours",
                severity="warning",
                driver_id=driver_id,
                trip_id=exclude_trip_id,
                details=f"Would exceed 9-hour daily limit (currently at {current_minutes / 60:.1f}h)",
            ))

        # 4. rest since previous day
        if self.min_rest_minutes > 0:
            rest = self._rest_before(tenant_id, driver_id, day, cand_start, exclude_trip_id)
            if rest is not None and rest < self.min_rest_minutes:
                conflicts.append(Conflict(
                    conflict_type="no_rest_period",
                    severity="warning",
                    driver_id=driver_id,
                    trip_id=exclude_trip_id,
                    details=(
                        f"Only {rest / 60:.1f}h rest since previous day "
                        f"(minimum {self.min_rest_minutes / 60:.1f}h)"
                    ),
                ))

        return AvailabilityResult(
            available=not any(_is_critical(c) for c in conflicts),
            conflicts=conflicts,
        )

    def _rest_before(
        self,
        tenant_id: int,
        driver_id: int,
        day: dt.date,
        cand_start: int,
        exclude_trip_id: Optional[int],
    ) -> Optional[int]:
        previous = [
            t for t in self.store.list_trips_for_driver_date(tenant_id, driver_id, day - dt.timedelta(days=1))
            if not t.is_cancelled and t.trip_id != exclude_trip_id
        ]
        if not previous:
            return None
        last_end = max(t.end_minute for t in previous)
        return (24 * 60 - last_end) + cand_start


class ConflictDetector:
    def __init__(self, store: TripStore, checker: Optional[AvailabilityChecker] = None):
        self.store = store
        self.checker = checker or AvailabilityChecker(store)

    def detect(self, tenant_id: int, start: dt.date, end: dt.date) -> List[Conflict]:
        """
        Re-check every assigned, non-cancelled trip in [start, end] as if it
        were being assigned now. The trip under test is excluded from its own
        overlap scan; otherwise every trip would overlap itself.
        """
        trips = [
            t for t in self.store.list_trips_in_range(tenant_id, start, end)
            if not t.is_cancelled and t.driver_id is not None
        ]
        names: Dict[int, str] = {}
        conflicts: List[Conflict] = []
        for trip in trips:
            if trip.driver_id not in names:
                driver = self.store.get_driver(tenant_id, trip.driver_id)
                names[trip.driver_id] = driver.name if driver else ""
            result = self.checker.check(
                tenant_id,
                trip.driver_id,
                trip.trip_date,
                trip.pickup_time,
                trip.effective_duration,
                exclude_trip_id=trip.trip_id,
            )
            for c in result.conflicts:
                conflicts.append(c.model_copy(update={"driver_name": names[trip.driver_id], "trip_id": trip.trip_id}))

        logger.info(
            "Conflict scan tenant=%s %s..%s: %d trips, %d conflicts",
            tenant_id, start, end, len(trips), len(conflicts),
        )
        return conflicts


def summarize_conflicts(conflicts: Sequence[Conflict]) -> Dict[str, int]:
    return {
        "total": len(conflicts),
        "critical": sum(1 for c in conflicts if c.severity == "critical"),
        "warnings": sum(1 for c in conflicts if c.severity == "warning"),
        "info": sum(1 for c in conflicts if c.severity == "info"),
    }
