"""
workload.py

Per-driver workload over a date range, from non-cancelled assigned trips.

Every active driver gets a row, including drivers with no trips in range.
Utilisation is measured against max_hours_per_week scaled by the number of
weeks in the range (never less than one week) and is capped at 100.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Sequence

import pandas as pd

from .models import WorkloadMetrics
from .store import TripStore

logger = logging.getLogger(__name__)

UNDERUTILIZED_BELOW = 50.0
OVERUTILIZED_ABOVE = 90.0

_TRIP_COLUMNS = ["driver_id", "trip_date", "minutes", "miles"]


def range_weeks(start: dt.date, end: dt.date) -> float:
    return max(1.0, (end - start).days / 7)


class WorkloadAggregator:
    def __init__(self, store: TripStore):
        self.store = store

    def trip_frame(self, tenant_id: int, start: dt.date, end: dt.date) -> pd.DataFrame:
        rows = [
            {
                "driver_id": t.driver_id,
                "trip_date": t.trip_date,
                "minutes": t.effective_duration,
                "miles": float(t.distance_miles or 0.0),
            }
            for t in self.store.list_trips_in_range(tenant_id, start, end)
            if t.driver_id is not None and not t.is_cancelled
        ]
        return pd.DataFrame(rows, columns=_TRIP_COLUMNS)

    def metrics(self, tenant_id: int, start: dt.date, end: dt.date) -> List[WorkloadMetrics]:
        drivers = self.store.list_active_drivers(tenant_id)
        df = self.trip_frame(tenant_id, start, end)

        if df.empty:
            grouped = pd.DataFrame(columns=["minutes", "trips", "miles", "days"])
        else:
            grouped = df.groupby("driver_id").agg(
                minutes=("minutes", "sum"),
                trips=("trip_date", "size"),
                miles=("miles", "sum"),
                days=("trip_date", "nunique"),
            )

        weeks = range_weeks(start, end)
        out: List[WorkloadMetrics] = []
        for d in drivers:
            if d.driver_id in grouped.index:
                row = grouped.loc[d.driver_id]
                minutes, trips, miles, days = float(row["minutes"]), int(row["trips"]), float(row["miles"]), int(row["days"])
            else:
                minutes, trips, miles, days = 0.0, 0, 0.0, 0

            hours = minutes / 60
            utilization = hours / (d.max_hours_per_week * weeks) * 100
            out.append(WorkloadMetrics(
                driver_id=d.driver_id,
                driver_name=d.name,
                total_hours=round(hours, 2),
                total_trips=trips,
                total_distance=round(miles, 2),
                days_worked=days,
                average_hours_per_day=round(hours / days, 2) if days > 0 else 0.0,
                utilization_percentage=round(min(100.0, utilization), 1),
            ))

        out.sort(key=lambda m: (-m.total_hours, m.driver_id))
        logger.info("Workload tenant=%s %s..%s: %d drivers, %d trips", tenant_id, start, end, len(out), len(df))
        return out


def summarize_workload(metrics: Sequence[WorkloadMetrics]) -> Dict[str, Any]:
    n = len(metrics)
    under = sum(1 for m in metrics if m.utilization_percentage < UNDERUTILIZED_BELOW)
    over = sum(1 for m in metrics if m.utilization_percentage > OVERUTILIZED_ABOVE)
    return {
        "totalDrivers": n,
        "totalHours": round(sum(m.total_hours for m in metrics), 2),
        # an empty pool averages to 0 rather than NaN
        "averageUtilization": round(sum(m.utilization_percentage for m in metrics) / n, 1) if n else 0.0,
        "underutilized": under,
        "overutilized": over,
        "balanced": n - under - over,
    }


PEAK_HOURS_LIMIT = 5

_ANALYTICS_COLUMNS = ["trip_id", "driver_id", "trip_date", "hour", "minutes", "miles", "passengers"]


class RouteAnalytics:
    """
    Fleet-level route KPIs over non-cancelled trips in a date range,
    assigned or not: an overview, per-driver utilisation, and the busiest
    pickup hours. Missing duration counts as 60 minutes, missing distance
    as 0 miles, missing passenger count as 1.
    """

    def __init__(self, store: TripStore):
        self.store = store

    def trip_frame(self, tenant_id: int, start: dt.date, end: dt.date) -> pd.DataFrame:
        rows = [
            {
                "trip_id": t.trip_id,
                "driver_id": t.driver_id,
                "trip_date": t.trip_date,
                "hour": t.pickup_time.hour,
                "minutes": t.effective_duration,
                "miles": float(t.distance_miles or 0.0),
                "passengers": 1 if t.passenger_count is None else t.passenger_count,
            }
            for t in self.store.list_trips_in_range(tenant_id, start, end)
            if not t.is_cancelled
        ]
        return pd.DataFrame(rows, columns=_ANALYTICS_COLUMNS)

    def summary(self, tenant_id: int, start: dt.date, end: dt.date) -> Dict[str, Any]:
        df = self.trip_frame(tenant_id, start, end)
        out = {
            "overview": self._overview(df),
            "driverUtilization": self._driver_utilization(df),
            "peakHours": self._peak_hours(df),
        }
        logger.info("Route analytics tenant=%s %s..%s: %d trips", tenant_id, start, end, len(df))
        return out

    @staticmethod
    def _overview(df: pd.DataFrame) -> Dict[str, Any]:
        total_trips = len(df)
        drivers_used = int(df["driver_id"].nunique()) if total_trips else 0
        return {
            "totalTrips": total_trips,
            "driversUsed": drivers_used,
            "daysActive": int(df["trip_date"].nunique()) if total_trips else 0,
            "avgPassengersPerTrip": round(float(df["passengers"].mean()), 2) if total_trips else 0.0,
            "totalMiles": round(float(df["miles"].sum()), 2),
            "totalHours": round(float(df["minutes"].sum()) / 60, 2),
            "tripsPerDriver": round(total_trips / drivers_used, 2) if drivers_used else 0.0,
        }

    @staticmethod
    def _driver_utilization(df: pd.DataFrame) -> List[Dict[str, Any]]:
        assigned = df.dropna(subset=["driver_id"])
        if assigned.empty:
            return []
        grouped = assigned.groupby("driver_id").agg(
            trips=("trip_id", "size"),
            miles=("miles", "sum"),
            first=("trip_date", "min"),
            last=("trip_date", "max"),
        )
        rows = [
            {
                "driverId": int(driver_id),
                "tripCount": int(row["trips"]),
                "totalDistance": round(float(row["miles"]), 2),
                "activeDays": (row["last"] - row["first"]).days + 1,
            }
            for driver_id, row in grouped.iterrows()
        ]
        rows.sort(key=lambda r: (-r["tripCount"], r["driverId"]))
        return rows

    @staticmethod
    def _peak_hours(df: pd.DataFrame) -> List[Dict[str, int]]:
        if df.empty:
            return []
        counts = (
            df.groupby("hour").size().reset_index(name="trips")
            .sort_values(["trips", "hour"], ascending=[False, True])
            .head(PEAK_HOURS_LIMIT)
        )
        return [{"hour": int(r.hour), "tripCount": int(r.trips)} for r in counts.itertuples(index=False)]
