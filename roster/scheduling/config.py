from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Dict, Optional

PLACEHOLDER_API_KEY = "your_google_maps_api_key_here"

DAILY_LIMIT_MINUTES = 9 * 60
DEFAULT_TRIP_MINUTES = 60
MINUTES_PER_MILE = 2.0
METERS_TO_MILES = 0.000621371
TRAILING_WORKLOAD_DAYS = 7
DEFAULT_MAX_HOURS_PER_WEEK = 40.0

def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return float(default)

def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return int(default)

# Read on every call so a fixed credential takes effect without a restart.
def maps_api_key() -> Optional[str]:
    key = os.getenv("GOOGLE_MAPS_API_KEY")
    if key is None or key.strip() == "" or key.strip() == PLACEHOLDER_API_KEY:
        return None
    return key.strip()

def distance_matrix_url() -> str:
    return os.getenv("DISTANCE_MATRIX_URL", "https://maps.googleapis.com/maps/api/distancematrix/json")

def geocode_url() -> str:
    return os.getenv("GEOCODE_URL", "https://maps.googleapis.com/maps/api/geocode/json")

def provider_timeout_sec() -> float:
    return max(0.1, _env_float("ROUTE_PROVIDER_TIMEOUT_SEC", 10.0))

def worker_pool_size() -> int:
    return max(1, _env_int("ROSTER_WORKER_POOL_SIZE", 5))

def min_rest_minutes() -> int:
    return max(0, _env_int("ROSTER_MIN_REST_MINUTES", 0))

def geocode_cache_size() -> int:
    return max(1, _env_int("ROSTER_GEOCODE_CACHE_SIZE", 5000))

def dataset_dir() -> Path:
    base = Path(os.getenv("PRIVATE_DATA_DIR", "./data/private")).resolve()
    d = base / "active"
    return d if d.exists() else base

def public_settings() -> Dict[str, Any]:
    """Effective settings for /config (never the credential itself)."""
    return {
        "maps_api_configured": maps_api_key() is not None,
        "provider_timeout_sec": provider_timeout_sec(),
        "worker_pool_size": worker_pool_size(),
        "min_rest_minutes": min_rest_minutes(),
        "geocode_cache_size": geocode_cache_size(),
        "daily_limit_minutes": DAILY_LIMIT_MINUTES,
        "default_trip_minutes": DEFAULT_TRIP_MINUTES,
        "minutes_per_mile": MINUTES_PER_MILE,
        "dataset_dir": str(dataset_dir()),
    }
