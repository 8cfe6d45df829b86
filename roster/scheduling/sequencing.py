"""
sequencing.py

Route sequencing for one driver-day and the batch optimisation scores.

The cost of visiting trip j right after trip i is matrix[i][j]: the distance
from trip i's destination to trip j's pickup. Order is found with the
nearest-neighbour heuristic from the first trip (ties to the lowest index).
The heuristic can be worse than the input order on some matrices; the input
order is kept in that case so a sequence never costs more than the original.
"""

from __future__ import annotations

import datetime as dt
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from . import config
from .distance import DistanceProvider
from .models import DistanceMatrix, OptimizationScore, SequenceResult, Trip, round_half_up
from .store import TripStore

logger = logging.getLogger(__name__)

NEEDS_OPTIMIZATION_BELOW = 70
GOOD_BELOW = 90
SCORE_ERROR_MESSAGE = "Failed to calculate score"


def _as_array(matrix) -> np.ndarray:
    if isinstance(matrix, DistanceMatrix):
        return matrix.matrix
    return np.asarray(matrix, dtype=float)


def route_distance(matrix, order: Sequence[int]) -> float:
    """Sum of matrix[order[k]][order[k+1]] along the visiting order."""
    m = _as_array(matrix)
    return float(sum(m[a, b] for a, b in zip(order, order[1:])))


def nearest_neighbour_order(matrix) -> List[int]:
    m = _as_array(matrix)
    n = m.shape[0]
    if n == 0:
        return []
    order = [0]
    visited = {0}
    current = 0
    while len(order) < n:
        nearest = None
        nearest_dist = float("inf")
        # strict < keeps the lowest index on ties
        for j in range(n):
            if j not in visited and m[current, j] < nearest_dist:
                nearest = j
                nearest_dist = m[current, j]
        if nearest is None:
            # all remaining cells are inf/NaN; take them in input order
            nearest = min(j for j in range(n) if j not in visited)
        order.append(nearest)
        visited.add(nearest)
        current = nearest
    return order


class RouteSequencer:
    def order(self, trips: Sequence[Trip], matrix) -> SequenceResult:
        trips = list(trips)
        n = len(trips)
        m = _as_array(matrix)
        if n > 1 and m.shape != (n, n):
            raise ValueError(f"Distance matrix shape {m.shape} does not match {n} trips")

        identity = list(range(n))
        if n <= 1:
            return SequenceResult(trips=trips, order=identity, distance_before=0.0, distance_after=0.0)

        before = route_distance(m, identity)
        order = nearest_neighbour_order(m)
        after = route_distance(m, order)
        if after > before:
            logger.debug("Nearest-neighbour order (%.2f mi) is longer than input order (%.2f mi); keeping input", after, before)
            order, after = identity, before

        return SequenceResult(
            trips=[trips[i] for i in order],
            order=order,
            distance_before=before,
            distance_after=after,
        )


def score_status(score: int) -> str:
    if score < NEEDS_OPTIMIZATION_BELOW:
        return "needs-optimization"
    if score < GOOD_BELOW:
        return "good"
    return "optimal"


class OptimizationScorer:
    def __init__(
        self,
        store: TripStore,
        provider: Optional[DistanceProvider] = None,
        sequencer: Optional[RouteSequencer] = None,
        max_workers: Optional[int] = None,
    ):
        self.store = store
        self.provider = provider or DistanceProvider()
        self.sequencer = sequencer or RouteSequencer()
        self.max_workers = max_workers or config.worker_pool_size()

    def score(self, tenant_id: int, driver_id: int, day: dt.date, trips: Sequence[Trip]) -> OptimizationScore:
        """How close a driver-day's current (pickup-time) order is to the sequenced one."""
        trips = sorted(trips, key=lambda t: (t.pickup_time, t.trip_id))
        if len(trips) < 2:
            return OptimizationScore(
                driver_id=driver_id, date=day, score=100, status="optimal", trip_count=len(trips),
            )

        dm = self.provider.matrix_for_trips(trips)
        result = self.sequencer.order(trips, dm)
        current = result.distance_before
        optimal = result.distance_after
        score = round_half_up(optimal / current * 100) if current > 0 else 100

        return OptimizationScore(
            driver_id=driver_id,
            date=day,
            score=score,
            status=score_status(score),
            trip_count=len(trips),
            current_distance=round(current, 2),
            optimal_distance=round(optimal, 2),
            savings_potential=round(max(0.0, current - optimal), 2),
            provider=dm.provider,
            reliable=dm.reliable,
            warning=dm.warning,
        )

    def driver_day_groups(self, tenant_id: int, start: dt.date, end: dt.date) -> Dict[Tuple[int, dt.date], List[Trip]]:
        groups: Dict[Tuple[int, dt.date], List[Trip]] = {}
        for t in self.store.list_trips_in_range(tenant_id, start, end):
            if t.driver_id is None or t.is_cancelled:
                continue
            groups.setdefault((t.driver_id, t.trip_date), []).append(t)
        return {k: v for k, v in groups.items() if len(v) >= 2}

    def _score_group(self, tenant_id: int, key: Tuple[int, dt.date], trips: List[Trip]) -> OptimizationScore:
        driver_id, day = key
        try:
            return self.score(tenant_id, driver_id, day, trips)
        except Exception:
            logger.exception("Error calculating score for driver %s on %s", driver_id, day)
            return OptimizationScore(
                driver_id=driver_id,
                date=day,
                score=0,
                status="error",
                trip_count=len(trips),
                error=SCORE_ERROR_MESSAGE,
            )

    def scores_for_range(self, tenant_id: int, start: dt.date, end: dt.date) -> List[OptimizationScore]:
        """One score per (driver, date) group with at least two trips; a failing group never fails the batch."""
        groups = self.driver_day_groups(tenant_id, start, end)
        keys = sorted(groups)
        if not keys:
            return []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            scores = list(executor.map(lambda k: self._score_group(tenant_id, k, groups[k]), keys))
        errors = sum(1 for s in scores if s.status == "error")
        logger.info(
            "Optimization scores tenant=%s %s..%s: %d groups, %d errors", tenant_id, start, end, len(scores), errors,
        )
        return scores
