"""
distance.py

Distance matrices between trips for route sequencing.

Two interchangeable backends:
  * remote    - one batched Google Distance Matrix request (imperial units)
  * geometric - haversine over geocoded points; addresses that cannot be
                geocoded (or every address, when no credential is set) get
                deterministic pseudo-coordinates

The remote backend is only tried when a real credential is configured. Any
remote failure aborts that call as a whole and falls through to geometric.
Nothing is retried.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import MutableMapping as MutableMappingBase
from typing import Callable, Dict, Iterator, List, MutableMapping, Optional, Sequence

import numpy as np
import requests

from ..matrix_builder import build_haversine_matrix
from .config import (
    METERS_TO_MILES,
    distance_matrix_url,
    geocode_cache_size,
    geocode_url,
    maps_api_key,
    provider_timeout_sec,
)
from .errors import ProviderError
from .geo import LatLon, pseudo_geocode
from .models import DistanceMatrix, Trip

logger = logging.getLogger(__name__)

WARNING_REMOTE_UNAVAILABLE = (
    "Using estimated distances (Google Maps unavailable). Results may be less accurate."
)
WARNING_NOT_CONFIGURED = "Using estimated distances (Google Maps API not configured)."


def fetch_remote_matrix(
    origins: Sequence[str],
    destinations: Sequence[str],
    api_key: str,
    session: Optional[requests.Session] = None,
    timeout_sec: Optional[float] = None,
) -> np.ndarray:
    """
    Single batched Distance Matrix request; returns miles[len(origins), len(destinations)].

    Raises ProviderError on transport errors, a non-OK top-level status or a
    malformed payload. A non-OK *element* in an OK response becomes 0.0.
    """
    http = session or requests
    params = {
        "origins": "|".join(origins),
        "destinations": "|".join(destinations),
        "units": "imperial",
        "key": api_key,
    }
    try:
        response = http.get(distance_matrix_url(), params=params, timeout=timeout_sec or provider_timeout_sec())
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as e:
        raise ProviderError(f"Distance Matrix request failed: {e}") from e

    if not isinstance(payload, dict):
        raise ProviderError("Distance Matrix response is not an object")
    status = payload.get("status")
    if status != "OK":
        raise ProviderError(f"Distance Matrix API returned status: {status}")

    rows = payload.get("rows")
    if not isinstance(rows, list) or len(rows) != len(origins):
        raise ProviderError("Distance Matrix response has the wrong number of rows")

    out = np.zeros((len(origins), len(destinations)), float)
    for i, row in enumerate(rows):
        elements = row.get("elements") if isinstance(row, dict) else None
        if not isinstance(elements, list) or len(elements) != len(destinations):
            raise ProviderError(f"Distance Matrix row {i} is malformed")
        for j, element in enumerate(elements):
            if not isinstance(element, dict):
                raise ProviderError(f"Distance Matrix element ({i},{j}) is malformed")
            if element.get("status") != "OK":
                # known imprecision: unreachable cell counts as zero distance
                continue
            try:
                meters = float(element["distance"]["value"])
            except (KeyError, TypeError, ValueError) as e:
                raise ProviderError(f"Distance Matrix element ({i},{j}) has no distance") from e
            out[i, j] = meters * METERS_TO_MILES
    return out


def geocode_address(
    address: str,
    api_key: str,
    session: Optional[requests.Session] = None,
    timeout_sec: Optional[float] = None,
) -> Optional[LatLon]:
    """Remote geocode of a UK address. None when the API finds nothing; ProviderError on transport failure."""
    http = session or requests
    try:
        response = http.get(
            geocode_url(),
            params={"address": f"{address}, UK", "key": api_key},
            timeout=timeout_sec or provider_timeout_sec(),
        )
        response.raise_for_status()
        payload = response.json()
    except (requests.RequestException, ValueError) as e:
        raise ProviderError(f"Geocoding request failed: {e}") from e

    if not isinstance(payload, dict):
        return None
    results = payload.get("results")
    if payload.get("status") != "OK" or not results:
        logger.warning("Geocoding failed for %r (status=%s)", address, payload.get("status"))
        return None
    try:
        location = results[0]["geometry"]["location"]
        return float(location["lat"]), float(location["lng"])
    except (KeyError, TypeError, ValueError, IndexError):
        logger.warning("Geocoding response for %r has no location", address)
        return None


class GeocodeCache(MutableMappingBase):
    """Size-capped LRU of real geocoder results, safe to share across request threads."""

    def __init__(self, max_size: Optional[int] = None):
        self.max_size = max_size or geocode_cache_size()
        self._data: "OrderedDict[str, LatLon]" = OrderedDict()
        self._lock = threading.RLock()

    def __getitem__(self, address: str) -> LatLon:
        with self._lock:
            value = self._data.pop(address)
            self._data[address] = value
            return value

    def __setitem__(self, address: str, coords: LatLon) -> None:
        with self._lock:
            self._data.pop(address, None)
            self._data[address] = coords
            while len(self._data) > self.max_size:
                self._data.popitem(last=False)

    def __delitem__(self, address: str) -> None:
        with self._lock:
            del self._data[address]

    def __contains__(self, address: object) -> bool:
        with self._lock:
            return address in self._data

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(list(self._data))

    def __len__(self) -> int:
        return len(self._data)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class DistanceProvider:
    """
    Builds a DistanceMatrix, preferring the remote backend.

    ``geocode_cache`` is an optional injected key->(lat, lng) mapping; only
    coordinates returned by the real geocoder are stored in it.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        geocode_cache: Optional[MutableMapping[str, LatLon]] = None,
        api_key_source: Callable[[], Optional[str]] = maps_api_key,
    ):
        self.session = session
        self.geocode_cache = geocode_cache
        self.api_key_source = api_key_source

    def matrix(self, origins: Sequence[str], destinations: Sequence[str]) -> DistanceMatrix:
        origins = [str(o or "") for o in origins]
        destinations = [str(d or "") for d in destinations]
        if not origins or not destinations:
            return DistanceMatrix(np.zeros((len(origins), len(destinations)), float), "geometric", False)

        api_key = self.api_key_source()
        if not api_key:
            return self._geometric(origins, destinations, None, WARNING_NOT_CONFIGURED)

        try:
            miles = fetch_remote_matrix(origins, destinations, api_key, session=self.session)
            return DistanceMatrix(miles, "remote", True)
        except ProviderError as e:
            logger.warning("Remote distance matrix unavailable, using haversine fallback: %s", e)
            return self._geometric(origins, destinations, api_key, WARNING_REMOTE_UNAVAILABLE)

    def matrix_for_trips(self, trips: Sequence[Trip]) -> DistanceMatrix:
        """cell[i][j] = trip i's destination -> trip j's pickup."""
        return self.matrix([t.end_address for t in trips], [t.start_address for t in trips])

    # ------------------- geometric backend -------------------

    def _geometric(
        self,
        origins: List[str],
        destinations: List[str],
        api_key: Optional[str],
        warning: str,
    ) -> DistanceMatrix:
        points: Dict[str, LatLon] = {}
        for address in dict.fromkeys(origins + destinations):
            points[address] = self.locate(address, api_key)
        miles = build_haversine_matrix([points[a] for a in origins], [points[a] for a in destinations])
        return DistanceMatrix(miles, "geometric", False, warning)

    def locate(self, address: str, api_key: Optional[str]) -> LatLon:
        if api_key:
            if self.geocode_cache is not None and address in self.geocode_cache:
                return self.geocode_cache[address]
            try:
                coords = geocode_address(address, api_key, session=self.session)
            except ProviderError as e:
                logger.warning("Geocoder unavailable, using pseudo-coordinates: %s", e)
                coords = None
            if coords is not None:
                if self.geocode_cache is not None:
                    self.geocode_cache[address] = coords
                return coords
        return pseudo_geocode(address)
