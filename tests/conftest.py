# tests/conftest.py
import datetime as dt
from importlib import reload
from pathlib import Path

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from roster.scheduling.store import InMemoryTripStore

DAY = dt.date(2025, 3, 10)

DRIVERS = [
    {"driver_id": 1, "name": "Alice Able", "is_active": "true", "home_postcode": "S11 8AB", "max_hours_per_week": 40},
    {"driver_id": 2, "name": "Bob Baker", "is_active": "true", "home_postcode": "S1 2CD", "max_hours_per_week": 40},
    {"driver_id": 3, "name": "Cara Cole", "is_active": "true", "home_postcode": "LS1 4EF", "max_hours_per_week": 20},
    {"driver_id": 4, "name": "Dan Dormant", "is_active": "false", "home_postcode": "S11 9ZZ", "max_hours_per_week": 40},
]

TRIP_COLUMNS = [
    "trip_id", "tenant_id", "trip_date", "pickup_time", "duration_minutes",
    "pickup_location", "pickup_postcode", "destination", "status", "driver_id", "distance_miles",
]

TRIPS = [
    # 2025-03-10, driver 1 double-booked 09:00 / 09:30
    (1, 1, "2025-03-10", "09:00", 60, "Sheffield Station", "S1 2BP", "Northern General Hospital", "scheduled", 1, 5.0),
    (2, 1, "2025-03-10", "09:30", 60, "Hillsborough", "S6 2LW", "Meadowhall", "scheduled", 1, 4.0),
    (3, 1, "2025-03-10", "13:00", 48, "Ecclesall Road", "S11 8HW", "Royal Hallamshire", "scheduled", 2, 2.5),
    # unassigned that day
    (4, 1, "2025-03-10", "10:00", 60, "Nether Edge", "S11 7XX", "Weston Park", "scheduled", "", ""),
    (5, 1, "2025-03-10", "11:00", "", "Crookes", "S10 1UA", "City Hall", "scheduled", "", ""),
    (6, 1, "2025-03-10", "14:00", 30, "Totley", "S17 3AA", "Dore", "cancelled", 1, 3.0),
    # driver 1 history inside the trailing week
    (7, 1, "2025-03-05", "08:00", 120, "Broomhill", "S10 2TN", "Heeley", "completed", 1, 6.0),
    (8, 1, "2025-03-06", "08:00", 300, "Walkley", "S6 5BE", "Darnall", "completed", 1, 10.0),
    # another tenant on the same day
    (9, 2, "2025-03-10", "09:00", 60, "Leeds Station", "LS1 4DY", "St James", "scheduled", 1, 2.0),
]

LEAVE = [
    {"driver_id": 3, "start_date": "2025-03-10", "end_date": "2025-03-12", "status": "approved", "holiday_type": "annual"},
    {"driver_id": 2, "start_date": "2025-03-10", "end_date": "2025-03-10", "status": "pending", "holiday_type": "annual"},
]


def write_dataset(root: Path) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(DRIVERS).to_csv(root / "drivers.csv", index=False)
    pd.DataFrame(TRIPS, columns=TRIP_COLUMNS).to_csv(root / "trips.csv", index=False)
    pd.DataFrame(LEAVE).to_csv(root / "leave.csv", index=False)
    return root


@pytest.fixture(autouse=True)
def _env_test_data(monkeypatch, tmp_path: Path):
    """
    Tiny three-driver dataset under a temp PRIVATE_DATA_DIR so tests never
    touch a real bundle or the real maps API.
    """
    data_root = write_dataset(tmp_path / "data")

    monkeypatch.setenv("PRIVATE_DATA_DIR", str(data_root))
    monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
    monkeypatch.delenv("ROSTER_MIN_REST_MINUTES", raising=False)
    monkeypatch.delenv("ROSTER_WORKER_POOL_SIZE", raising=False)

    yield data_root


@pytest.fixture
def store(_env_test_data) -> InMemoryTripStore:
    return InMemoryTripStore.from_dataset_dir(_env_test_data)


@pytest.fixture
def app(_env_test_data):
    # Import AFTER env vars/files so startup readers find our toy data
    import backend.main as main
    main = reload(main)
    return main.app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        r = c.post("/admin/reload")
        assert r.status_code == 200, f"/admin/reload failed: {r.status_code} {r.text}"
        yield c
