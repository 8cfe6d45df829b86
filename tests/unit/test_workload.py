import datetime as dt

from roster.scheduling.store import InMemoryTripStore
from roster.scheduling.workload import RouteAnalytics, WorkloadAggregator, range_weeks, summarize_workload

START = dt.date(2025, 3, 3)
END = dt.date(2025, 3, 10)


def test_metrics_for_toy_week(store):
    metrics = WorkloadAggregator(store).metrics(1, START, END)
    assert [m.driver_id for m in metrics] == [1, 2, 3]

    alice = metrics[0]
    # trips 1, 2, 7, 8; the cancelled trip 6 and tenant 2 trip 9 are excluded
    assert alice.total_hours == 9.0
    assert alice.total_trips == 4
    assert alice.total_distance == 25.0
    assert alice.days_worked == 3
    assert alice.average_hours_per_day == 3.0
    assert alice.utilization_percentage == 22.5

    bob = metrics[1]
    assert bob.total_hours == 0.8
    assert bob.total_trips == 1
    assert bob.utilization_percentage == 2.0

    cara = metrics[2]
    assert (cara.total_hours, cara.total_trips, cara.days_worked) == (0.0, 0, 0)
    assert cara.average_hours_per_day == 0.0
    assert cara.utilization_percentage == 0.0


def test_inactive_drivers_are_left_out(store):
    ids = [m.driver_id for m in WorkloadAggregator(store).metrics(1, START, END)]
    assert 4 not in ids


def test_short_ranges_count_as_one_week():
    assert range_weeks(END, END) == 1.0
    assert range_weeks(START, START + dt.timedelta(days=14)) == 2.0


def test_utilization_is_capped_and_missing_durations_default():
    store = InMemoryTripStore.from_records(
        drivers=[{"driver_id": 1, "name": "Part Time", "max_hours_per_week": 1}],
        trips=[
            {"trip_id": 1, "trip_date": "2025-03-10", "pickup_time": "09:00", "driver_id": 1},
            {"trip_id": 2, "trip_date": "2025-03-10", "pickup_time": "11:00", "driver_id": 1},
        ],
    )
    (m,) = WorkloadAggregator(store).metrics(1, END, END)
    assert m.total_hours == 2.0
    assert m.utilization_percentage == 100.0


def test_summary(store):
    summary = summarize_workload(WorkloadAggregator(store).metrics(1, START, END))
    assert summary == {
        "totalDrivers": 3,
        "totalHours": 9.8,
        "averageUtilization": 8.2,
        "underutilized": 3,
        "overutilized": 0,
        "balanced": 0,
    }


def test_summary_of_empty_pool():
    assert summarize_workload([])["averageUtilization"] == 0.0


def test_route_analytics_for_toy_week(store):
    report = RouteAnalytics(store).summary(1, START, END)

    # trips 1-5, 7, 8; cancelled 6 and tenant 2 trip 9 are left out
    assert report["overview"] == {
        "totalTrips": 7,
        "driversUsed": 2,
        "daysActive": 3,
        "avgPassengersPerTrip": 1.0,
        "totalMiles": 27.5,
        "totalHours": 11.8,
        "tripsPerDriver": 3.5,
    }
    assert report["driverUtilization"] == [
        {"driverId": 1, "tripCount": 4, "totalDistance": 25.0, "activeDays": 6},
        {"driverId": 2, "tripCount": 1, "totalDistance": 2.5, "activeDays": 1},
    ]
    # ties on trip count go to the earlier hour
    assert report["peakHours"] == [
        {"hour": 8, "tripCount": 2},
        {"hour": 9, "tripCount": 2},
        {"hour": 10, "tripCount": 1},
        {"hour": 11, "tripCount": 1},
        {"hour": 13, "tripCount": 1},
    ]


def test_route_analytics_keeps_five_busiest_hours():
    trips = [
        {"trip_id": i, "trip_date": "2025-03-10", "pickup_time": f"{6 + i % 8:02d}:00",
         "driver_id": 1 if i % 2 else None, "passenger_count": 2}
        for i in range(16)
    ] + [{"trip_id": 99, "trip_date": "2025-03-10", "pickup_time": "07:30"}]
    report = RouteAnalytics(InMemoryTripStore.from_records(trips=trips)).summary(1, END, END)

    assert len(report["peakHours"]) == 5
    assert report["peakHours"][0] == {"hour": 7, "tripCount": 3}
    overview = report["overview"]
    assert overview["totalTrips"] == 17
    assert overview["driversUsed"] == 1
    assert overview["tripsPerDriver"] == 17.0
    assert overview["avgPassengersPerTrip"] == round(33 / 17, 2)


def test_route_analytics_empty_range(store):
    report = RouteAnalytics(store).summary(1, dt.date(2024, 1, 1), dt.date(2024, 1, 7))
    assert report["overview"]["totalTrips"] == 0
    assert report["overview"]["tripsPerDriver"] == 0.0
    assert report["driverUtilization"] == []
    assert report["peakHours"] == []
