"""
assignment.py

Driver scoring and greedy auto-assignment of a day's unassigned trips.

Scoring a (driver, trip) pair:
  - unavailable (any critical conflict)           -> 0, stop
  - base 100
  - trailing-7-day minutes below pool mean         -> +20
  - trailing-7-day minutes above 1.5 x pool mean   -> -20
  - driver/pickup postcode outward codes match     -> +15 (opt-in)
  - each non-critical conflict                     -> -5

Scores are only clamped (min(100, score)) when written into a ShiftAssignment.

Auto-assignment walks trips in pickup order and gives each to the best
positive-scoring driver right away, with no backtracking. Early trips can
take the least-loaded drivers away from later ones; that is accepted.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Mapping, Optional, Sequence

from ..geocode_uk import same_outward_code
from . import config
from .availability import AvailabilityChecker
from .models import (
    AutoAssignResult,
    CommitResult,
    Driver,
    DriverScore,
    ShiftAssignment,
    Trip,
)
from .store import TripStore

logger = logging.getLogger(__name__)

WORKLOAD_BONUS = 20
WORKLOAD_PENALTY = 20
OVERLOAD_FACTOR = 1.5
PROXIMITY_BONUS = 15
CONFLICT_PENALTY = 5

# Commits from concurrently computed plans must not interleave.
_COMMIT_LOCK = threading.Lock()


def trailing_minutes(store: TripStore, tenant_id: int, drivers: Sequence[Driver], day: dt.date) -> Dict[int, int]:
    """Assigned minutes per driver on [day-7, day-1] (missing duration = 60)."""
    window_start = day - dt.timedelta(days=config.TRAILING_WORKLOAD_DAYS)
    window_end = day - dt.timedelta(days=1)
    minutes = {d.driver_id: 0 for d in drivers}
    for trip in store.list_trips_in_range(tenant_id, window_start, window_end):
        if trip.driver_id in minutes:
            minutes[trip.driver_id] += trip.effective_duration
    return minutes


class AssignmentScorer:
    def __init__(self, checker: AvailabilityChecker):
        self.checker = checker

    def score(
        self,
        tenant_id: int,
        driver: Driver,
        trip: Trip,
        pool: Mapping[int, float],
        balance_workload: bool = True,
        consider_proximity: bool = False,
        extra_trips: Sequence[Trip] = (),
    ) -> DriverScore:
        """``pool`` maps every candidate driver id to its trailing-7-day minutes."""
        availability = self.checker.check(
            tenant_id,
            driver.driver_id,
            trip.trip_date,
            trip.pickup_time,
            trip.effective_duration,
            exclude_trip_id=trip.trip_id,
            extra_trips=extra_trips,
        )
        if not availability.available:
            return DriverScore(driver_id=driver.driver_id, score=0, reasoning=["Driver not available"])

        score = 100
        reasoning: List[str] = []

        if balance_workload and pool:
            recent_hours = pool.get(driver.driver_id, 0) / 60
            avg_hours = sum(pool.values()) / 60 / len(pool)
            if recent_hours < avg_hours:
                score += WORKLOAD_BONUS
                reasoning.append("Below average workload this week")
            elif recent_hours > avg_hours * OVERLOAD_FACTOR:
                score -= WORKLOAD_PENALTY
                reasoning.append("Above average workload this week")

        if consider_proximity and same_outward_code(driver.home_postcode, trip.pickup_postcode):
            score += PROXIMITY_BONUS
            reasoning.append("Lives near pickup location")

        if availability.conflicts:
            score -= CONFLICT_PENALTY * len(availability.conflicts)
            reasoning.extend(c.details for c in availability.conflicts)

        return DriverScore(driver_id=driver.driver_id, score=score, reasoning=reasoning)


def pick_best(scores: Sequence[DriverScore]) -> Optional[DriverScore]:
    """Highest positive score; ties go to the lowest driver id."""
    positive = [s for s in scores if s.score > 0]
    if not positive:
        return None
    return min(positive, key=lambda s: (-s.score, s.driver_id))


class AutoAssigner:
    def __init__(
        self,
        store: TripStore,
        checker: Optional[AvailabilityChecker] = None,
        max_workers: Optional[int] = None,
    ):
        self.store = store
        self.checker = checker or AvailabilityChecker(store)
        self.scorer = AssignmentScorer(self.checker)
        self.max_workers = max_workers or config.worker_pool_size()

    def assign(
        self,
        tenant_id: int,
        day: dt.date,
        balance_workload: bool = True,
        consider_proximity: bool = False,
        max_assignments: int = 100,
    ) -> AutoAssignResult:
        """
        Propose drivers for the day's unassigned, non-cancelled trips.

        Nothing is written; proposals made earlier in the plan are taken into
        account by later availability checks so one plan never double-books.
        """
        trips = [
            t for t in self.store.list_trips_in_range(tenant_id, day, day)
            if t.driver_id is None and not t.is_cancelled
        ]
        trips.sort(key=lambda t: (t.pickup_time, t.trip_id))
        drivers = self.store.list_active_drivers(tenant_id)
        pool = trailing_minutes(self.store, tenant_id, drivers, day)

        result = AutoAssignResult()
        planned: Dict[int, List[Trip]] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            for trip in trips:
                if len(result.assignments) >= max_assignments:
                    result.unassigned.append(trip.trip_id)
                    continue

                scores = list(executor.map(
                    lambda d: self.scorer.score(
                        tenant_id, d, trip, pool,
                        balance_workload=balance_workload,
                        consider_proximity=consider_proximity,
                        extra_trips=planned.get(d.driver_id, ()),
                    ),
                    drivers,
                ))
                best = pick_best(scores)
                if best is None:
                    result.unassigned.append(trip.trip_id)
                    continue

                result.assignments.append(ShiftAssignment(
                    trip_id=trip.trip_id,
                    driver_id=best.driver_id,
                    confidence_score=min(100, best.score),
                    reasoning=best.reasoning,
                ))
                planned.setdefault(best.driver_id, []).append(
                    trip.model_copy(update={"driver_id": best.driver_id})
                )

        logger.info(
            "Auto-assignment tenant=%s date=%s: assigned=%d unassigned=%d",
            tenant_id, day, len(result.assignments), len(result.unassigned),
        )
        return result

    def commit(self, tenant_id: int, assignments: Sequence[ShiftAssignment]) -> CommitResult:
        """
        Write accepted proposals through the store, one plan at a time.

        Each proposal is re-checked first; anything that picked up a critical
        conflict since the plan was computed is skipped and reported.
        """
        out = CommitResult()
        with _COMMIT_LOCK:
            for a in assignments:
                trip = self.store.get_trip(tenant_id, a.trip_id)
                if trip is None:
                    out.skipped.append({"trip_id": a.trip_id, "driver_id": a.driver_id, "reason": "Trip not found"})
                    continue
                if trip.driver_id is not None and trip.driver_id != a.driver_id:
                    out.skipped.append({
                        "trip_id": a.trip_id,
                        "driver_id": a.driver_id,
                        "reason": f"Trip already assigned to driver {trip.driver_id}",
                    })
                    continue
                check = self.checker.check(
                    tenant_id, a.driver_id, trip.trip_date, trip.pickup_time,
                    trip.effective_duration, exclude_trip_id=trip.trip_id,
                )
                if not check.available:
                    out.skipped.append({
                        "trip_id": a.trip_id,
                        "driver_id": a.driver_id,
                        "reason": "Critical conflict",
                        "conflicts": [c.model_dump() for c in check.conflicts if c.severity == "critical"],
                    })
                    continue
                self.store.commit_driver_assignment(tenant_id, a.trip_id, a.driver_id)
                out.applied.append(a)

        if out.skipped:
            logger.warning("Auto-assignment commit skipped %d of %d proposals", len(out.skipped), len(assignments))
        return out
