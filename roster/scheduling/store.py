"""
store.py

Read/write contract the scheduling core needs from the data layer, plus the
thread-safe in-memory implementation used by the service, the report script
and the tests.

The core never owns storage: it only calls the ``TripStore`` methods below and
receives fresh ``Trip``/``Driver``/``LeaveRecord`` copies on every call.
"""

from __future__ import annotations

import datetime as dt
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

import pandas as pd

from .errors import NotFoundError
from .models import Driver, LeaveRecord, Trip


class TripStore(Protocol):
    def list_active_drivers(self, tenant_id: int) -> List[Driver]: ...

    def get_driver(self, tenant_id: int, driver_id: int) -> Optional[Driver]: ...

    def get_trip(self, tenant_id: int, trip_id: int) -> Optional[Trip]: ...

    def list_trips_for_driver_date(self, tenant_id: int, driver_id: int, day: dt.date) -> List[Trip]: ...

    def list_trips_in_range(self, tenant_id: int, start: dt.date, end: dt.date) -> List[Trip]: ...

    def list_approved_leave(self, tenant_id: int, driver_id: int, day: dt.date) -> List[LeaveRecord]: ...

    def commit_driver_assignment(self, tenant_id: int, trip_id: int, driver_id: int) -> Trip: ...


def _by_pickup(trips: Iterable[Trip]) -> List[Trip]:
    return sorted(trips, key=lambda t: (t.trip_date, t.pickup_time, t.trip_id))


class InMemoryTripStore:
    """Tenant-keyed store; every read returns copies taken under one lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._drivers: Dict[int, Dict[int, Driver]] = {}
        self._trips: Dict[int, Dict[int, Trip]] = {}
        self._leave: Dict[int, List[LeaveRecord]] = {}

    # ------------------- loading -------------------

    def add_driver(self, tenant_id: int, driver: Driver) -> None:
        with self._lock:
            self._drivers.setdefault(int(tenant_id), {})[driver.driver_id] = driver

    def add_trip(self, trip: Trip) -> None:
        with self._lock:
            self._trips.setdefault(trip.tenant_id, {})[trip.trip_id] = trip

    def add_leave(self, tenant_id: int, record: LeaveRecord) -> None:
        with self._lock:
            self._leave.setdefault(int(tenant_id), []).append(record)

    @classmethod
    def from_records(
        cls,
        drivers: Iterable[Dict[str, Any]] = (),
        trips: Iterable[Dict[str, Any]] = (),
        leave: Iterable[Dict[str, Any]] = (),
    ) -> "InMemoryTripStore":
        store = cls()
        for row in drivers:
            row = dict(row)
            tenant_id = int(row.pop("tenant_id", 1))
            store.add_driver(tenant_id, Driver(**row))
        for row in trips:
            store.add_trip(Trip(**row))
        for row in leave:
            row = dict(row)
            tenant_id = int(row.pop("tenant_id", 1))
            store.add_leave(tenant_id, LeaveRecord(**row))
        return store

    @classmethod
    def from_dataset_dir(cls, path: Path) -> "InMemoryTripStore":
        """Load drivers.csv, trips.csv and (optional) leave.csv."""
        path = Path(path)
        drivers_csv = path / "drivers.csv"
        trips_csv = path / "trips.csv"
        if not drivers_csv.exists() or not trips_csv.exists():
            raise FileNotFoundError(f"Dataset at {path} needs drivers.csv and trips.csv")
        leave_csv = path / "leave.csv"
        return cls.from_records(
            drivers=_csv_records(drivers_csv),
            trips=_csv_records(trips_csv),
            leave=_csv_records(leave_csv) if leave_csv.exists() else [],
        )

    def counts(self) -> Dict[str, int]:
        with self._lock:
            return {
                "tenants": len(set(self._drivers) | set(self._trips)),
                "drivers": sum(len(v) for v in self._drivers.values()),
                "trips": sum(len(v) for v in self._trips.values()),
                "leave_records": sum(len(v) for v in self._leave.values()),
            }

    # ------------------- contract -------------------

    def list_active_drivers(self, tenant_id: int) -> List[Driver]:
        with self._lock:
            drivers = self._drivers.get(int(tenant_id), {}).values()
            return [d.model_copy() for d in sorted(drivers, key=lambda d: d.driver_id) if d.is_active]

    def get_driver(self, tenant_id: int, driver_id: int) -> Optional[Driver]:
        with self._lock:
            d = self._drivers.get(int(tenant_id), {}).get(int(driver_id))
            return d.model_copy() if d else None

    def get_trip(self, tenant_id: int, trip_id: int) -> Optional[Trip]:
        with self._lock:
            t = self._trips.get(int(tenant_id), {}).get(int(trip_id))
            return t.model_copy() if t else None

    def list_trips_for_driver_date(self, tenant_id: int, driver_id: int, day: dt.date) -> List[Trip]:
        with self._lock:
            trips = self._trips.get(int(tenant_id), {}).values()
            return _by_pickup(
                t.model_copy() for t in trips if t.driver_id == int(driver_id) and t.trip_date == day
            )

    def list_trips_in_range(self, tenant_id: int, start: dt.date, end: dt.date) -> List[Trip]:
        with self._lock:
            trips = self._trips.get(int(tenant_id), {}).values()
            return _by_pickup(t.model_copy() for t in trips if start <= t.trip_date <= end)

    def list_approved_leave(self, tenant_id: int, driver_id: int, day: dt.date) -> List[LeaveRecord]:
        with self._lock:
            return [
                r.model_copy()
                for r in self._leave.get(int(tenant_id), [])
                if r.driver_id == int(driver_id) and r.status == "approved" and r.covers(day)
            ]

    def commit_driver_assignment(self, tenant_id: int, trip_id: int, driver_id: int) -> Trip:
        with self._lock:
            trips = self._trips.get(int(tenant_id), {})
            trip = trips.get(int(trip_id))
            if trip is None:
                raise NotFoundError(f"Trip {trip_id} not found")
            updated = trip.model_copy(update={"driver_id": int(driver_id)})
            trips[updated.trip_id] = updated
            return updated.model_copy()


def _csv_records(path: Path) -> List[Dict[str, Any]]:
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip().lower() for c in df.columns]
    records = []
    for row in df.to_dict(orient="records"):
        # blank cells mean "absent", not empty strings
        records.append({k: v for k, v in row.items() if str(v).strip() not in ("", "nan", "None", "NULL")})
    return records
