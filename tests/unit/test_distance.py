import datetime as dt

import numpy as np
import pytest
import requests
import responses
from responses import matchers

from roster.scheduling.distance import (
    WARNING_NOT_CONFIGURED,
    WARNING_REMOTE_UNAVAILABLE,
    DistanceProvider,
    GeocodeCache,
    fetch_remote_matrix,
    geocode_address,
)
from roster.scheduling.errors import ProviderError
from roster.scheduling.geo import pseudo_geocode
from roster.scheduling.models import Trip

DM_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
GEO_URL = "https://maps.googleapis.com/maps/api/geocode/json"

DAY = dt.date(2025, 3, 10)


def _trips():
    return [
        Trip(trip_id=1, trip_date=DAY, pickup_time="09:00", pickup_location="P0", destination="D0"),
        Trip(trip_id=2, trip_date=DAY, pickup_time="10:00", pickup_location="P1", destination="D1"),
    ]


def _element(meters, status="OK"):
    if status != "OK":
        return {"status": status}
    return {"status": "OK", "distance": {"value": meters, "text": "x"}, "duration": {"value": 60, "text": "1 min"}}


def _dm_payload(rows, status="OK"):
    return {"status": status, "rows": [{"elements": row} for row in rows]}


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "test-key")
    return "test-key"


@responses.activate
def test_remote_matrix_converts_meters_to_miles(api_key):
    responses.add(
        responses.GET, DM_URL,
        json=_dm_payload([[_element(0), _element(1609.344)], [_element(3218.688), _element(0)]]),
        status=200,
    )
    dm = DistanceProvider().matrix_for_trips(_trips())

    assert (dm.provider, dm.reliable, dm.warning) == ("remote", True, None)
    assert dm.matrix.shape == (2, 2)
    assert dm.cell(0, 1) == pytest.approx(1.0, rel=1e-4)
    assert dm.cell(1, 0) == pytest.approx(2.0, rel=1e-4)

    assert len(responses.calls) == 1
    sent = responses.calls[0].request
    assert sent.params["origins"] == "D0|D1"
    assert sent.params["destinations"] == "P0|P1"
    assert sent.params["units"] == "imperial"
    assert sent.params["key"] == "test-key"


@responses.activate
def test_non_ok_element_maps_to_zero(api_key):
    responses.add(
        responses.GET, DM_URL,
        json=_dm_payload([[_element(0), _element(0, "ZERO_RESULTS")], [_element(1000), _element(0)]]),
    )
    dm = DistanceProvider().matrix_for_trips(_trips())
    assert dm.provider == "remote"
    assert dm.cell(0, 1) == 0.0
    assert dm.cell(1, 0) > 0


@pytest.mark.parametrize(
    "payload",
    [
        {"status": "REQUEST_DENIED", "rows": []},
        _dm_payload([[_element(0), _element(1)]]),           # one row for two origins
        _dm_payload([[_element(0)], [_element(0)]]),          # short rows
        {"status": "OK"},
        ["not", "an", "object"],
    ],
)
@responses.activate
def test_bad_remote_payload_falls_back_to_geometric(api_key, payload):
    responses.add(responses.GET, DM_URL, json=payload)
    responses.add(responses.GET, GEO_URL, json={"status": "ZERO_RESULTS", "results": []})

    dm = DistanceProvider().matrix_for_trips(_trips())
    assert dm.provider == "geometric"
    assert dm.reliable is False
    assert dm.warning == WARNING_REMOTE_UNAVAILABLE
    assert dm.matrix.shape == (2, 2)


@responses.activate
def test_transport_errors_fall_back_without_retry(api_key):
    responses.add(responses.GET, DM_URL, body=requests.exceptions.Timeout("slow"))
    responses.add(responses.GET, GEO_URL, body=requests.exceptions.ConnectionError("down"))

    dm = DistanceProvider().matrix_for_trips(_trips())
    assert dm.provider == "geometric"
    assert dm.warning == WARNING_REMOTE_UNAVAILABLE
    dm_calls = [c for c in responses.calls if c.request.url.startswith(DM_URL)]
    assert len(dm_calls) == 1


@responses.activate
def test_http_error_status_falls_back(api_key):
    responses.add(responses.GET, DM_URL, json={"error": "nope"}, status=500)
    responses.add(responses.GET, GEO_URL, json={"status": "ZERO_RESULTS", "results": []})
    assert DistanceProvider().matrix_for_trips(_trips()).provider == "geometric"


@pytest.mark.parametrize("key", [None, "", "   ", "your_google_maps_api_key_here"])
@responses.activate
def test_missing_or_placeholder_key_never_calls_remote(monkeypatch, key):
    if key is None:
        monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
    else:
        monkeypatch.setenv("GOOGLE_MAPS_API_KEY", key)

    dm = DistanceProvider().matrix_for_trips(_trips())
    assert len(responses.calls) == 0
    assert dm.provider == "geometric"
    assert dm.reliable is False
    assert dm.warning == WARNING_NOT_CONFIGURED


def test_geometric_matrix_uses_pseudo_coordinates():
    dm = DistanceProvider(api_key_source=lambda: None).matrix(["D0", "D1"], ["P0", "P1"])
    # "D0" -> +0.016 deg, "P1" -> +0.029 deg on both axes
    assert pseudo_geocode("D0") == pytest.approx((53.396, -1.454))
    assert dm.cell(0, 1) == pytest.approx(1.046, abs=0.01)

    again = DistanceProvider(api_key_source=lambda: None).matrix(["D0", "D1"], ["P0", "P1"])
    assert np.array_equal(dm.matrix, again.matrix)


def test_empty_input_is_an_empty_geometric_matrix():
    dm = DistanceProvider().matrix([], [])
    assert dm.matrix.shape == (0, 0)
    assert dm.provider == "geometric"
    assert dm.reliable is False


@responses.activate
def test_real_geocodes_are_cached_pseudo_ones_are_not(api_key):
    responses.add(responses.GET, DM_URL, json={"status": "OVER_QUERY_LIMIT", "rows": []})
    for address, lat in (("D0", 53.40), ("P1", 53.41)):
        responses.add(
            responses.GET, GEO_URL,
            json={"status": "OK", "results": [{"geometry": {"location": {"lat": lat, "lng": -1.5}}}]},
            match=[matchers.query_param_matcher({"address": f"{address}, UK", "key": "test-key"})],
        )
    responses.add(responses.GET, GEO_URL, json={"status": "ZERO_RESULTS", "results": []})

    cache = {}
    provider = DistanceProvider(geocode_cache=cache)
    dm = provider.matrix(["D0", "D1"], ["P0", "P1"])
    assert dm.provider == "geometric"
    assert cache == {"D0": (53.40, -1.5), "P1": (53.41, -1.5)}
    assert dm.cell(0, 1) == pytest.approx(0.691, abs=0.005)

    geo_calls = sum(1 for c in responses.calls if c.request.url.startswith(GEO_URL))
    provider.matrix(["D0", "D1"], ["P0", "P1"])
    geo_calls_after = sum(1 for c in responses.calls if c.request.url.startswith(GEO_URL))
    # D0 and P1 come from the cache; D1 and P0 are asked again
    assert geo_calls_after - geo_calls == 2


@responses.activate
def test_fetch_remote_matrix_raises_provider_error():
    responses.add(responses.GET, DM_URL, json={"status": "INVALID_REQUEST"})
    with pytest.raises(ProviderError):
        fetch_remote_matrix(["a"], ["b"], "k")


@responses.activate
def test_geocode_address_returns_none_when_nothing_found():
    responses.add(responses.GET, GEO_URL, json={"status": "ZERO_RESULTS", "results": []})
    assert geocode_address("Nowhere", "k") is None
    assert responses.calls[0].request.params["address"] == "Nowhere, UK"


def test_geocode_cache_evicts_least_recently_used():
    cache = GeocodeCache(max_size=2)
    cache["A"] = (53.0, -1.0)
    cache["B"] = (53.1, -1.1)
    assert cache["A"] == (53.0, -1.0)  # A is now most recent
    cache["C"] = (53.2, -1.2)
    assert "B" not in cache
    assert list(cache) == ["A", "C"]
    assert len(cache) == 2


def test_geocode_cache_size_comes_from_env(monkeypatch):
    monkeypatch.setenv("ROSTER_GEOCODE_CACHE_SIZE", "3")
    cache = GeocodeCache()
    for i in range(10):
        cache[f"addr {i}"] = (53.0, -1.0 - i / 100)
    assert len(cache) == 3
    assert "addr 9" in cache and "addr 6" not in cache
