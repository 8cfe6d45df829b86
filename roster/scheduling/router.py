from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Body, HTTPException, Query

from ..timeparse import parse_date, to_time
from .assignment import AutoAssigner
from .availability import AvailabilityChecker, ConflictDetector, summarize_conflicts
from .distance import DistanceProvider
from .errors import ConflictError, NotFoundError, ValidationError
from .models import AssignDriverRequest, AutoAssignRequest, OptimizeRouteRequest, Trip
from .sequencing import OptimizationScorer, RouteSequencer
from .store import TripStore
from .workload import RouteAnalytics, WorkloadAggregator, summarize_workload

logger = logging.getLogger(__name__)

DEFAULT_SLOT_MINUTES = 90


def _date_param(value: Any, name: str) -> dt.date:
    try:
        return parse_date(value)
    except (ValueError, OverflowError):
        raise ValidationError(f"Invalid {name}: {value!r}")


def _time_param(value: Any, name: str) -> dt.time:
    try:
        return to_time(value)
    except (ValueError, OverflowError):
        raise ValidationError(f"Invalid {name}: {value!r}")


def _range_params(start: str, end: str):
    start_d = _date_param(start, "startDate")
    end_d = _date_param(end, "endDate")
    if end_d < start_d:
        raise ValidationError("endDate must not be before startDate")
    return start_d, end_d


def _trip_out(trip: Trip) -> Dict[str, Any]:
    return trip.model_dump(mode="json")


def create_router(
    get_store: Callable[[], Optional[TripStore]],
    get_provider: Optional[Callable[[], DistanceProvider]] = None,
) -> APIRouter:
    """
    Factory for the rostering and route-sequencing endpoints. Uses callables
    so the backend can swap the loaded store (POST /admin/reload) without
    rebuilding the app.
    """
    router = APIRouter(prefix="/tenants/{tenant_id}", tags=["Roster"])
    provider_source = get_provider or DistanceProvider

    def ensure_ready() -> TripStore:
        store = get_store()
        if store is None:
            raise HTTPException(
                status_code=503,
                detail="Dataset not loaded. Check PRIVATE_DATA_DIR and POST /admin/reload.",
            )
        return store

    # ------------------- Roster -------------------

    @router.get("/roster/availability/{driver_id}")
    def driver_availability(
        tenant_id: int,
        driver_id: int,
        date: str = Query(...),
        start_time: str = Query(..., alias="startTime"),
        duration_minutes: int = Query(60, ge=0, alias="durationMinutes"),
    ):
        store = ensure_ready()
        if store.get_driver(tenant_id, driver_id) is None:
            raise NotFoundError(f"Driver {driver_id} not found")
        result = AvailabilityChecker(store).check(
            tenant_id,
            driver_id,
            _date_param(date, "date"),
            _time_param(start_time, "startTime"),
            duration_minutes,
        )
        return result.model_dump()

    @router.get("/roster/conflicts")
    def roster_conflicts(
        tenant_id: int,
        start_date: str = Query(..., alias="startDate"),
        end_date: str = Query(..., alias="endDate"),
    ):
        store = ensure_ready()
        start, end = _range_params(start_date, end_date)
        conflicts = ConflictDetector(store).detect(tenant_id, start, end)
        return {
            "conflicts": [c.model_dump() for c in conflicts],
            "summary": summarize_conflicts(conflicts),
        }

    @router.post("/roster/auto-assign")
    def roster_auto_assign(tenant_id: int, req: AutoAssignRequest):
        store = ensure_ready()
        assigner = AutoAssigner(store)
        result = assigner.assign(
            tenant_id,
            req.date,
            balance_workload=req.balance_workload,
            consider_proximity=req.consider_proximity,
            max_assignments=req.max_assignments,
        )

        out: Dict[str, Any] = {
            "success": True,
            "assigned": len(result.assignments),
            "unassigned": len(result.unassigned),
            "assignments": [a.model_dump() for a in result.assignments],
            "unassignedTripIds": result.unassigned,
            "applied": req.apply_changes,
        }
        if req.apply_changes and result.assignments:
            committed = assigner.commit(tenant_id, result.assignments)
            out["committed"] = len(committed.applied)
            out["skipped"] = committed.skipped
        return out

    @router.get("/roster/workload")
    def roster_workload(
        tenant_id: int,
        start_date: str = Query(..., alias="startDate"),
        end_date: str = Query(..., alias="endDate"),
    ):
        store = ensure_ready()
        start, end = _range_params(start_date, end_date)
        metrics = WorkloadAggregator(store).metrics(tenant_id, start, end)
        return {
            "metrics": [m.model_dump() for m in metrics],
            "summary": summarize_workload(metrics),
        }

    @router.get("/roster/dashboard")
    def roster_dashboard(
        tenant_id: int,
        start_date: str = Query(..., alias="startDate"),
        end_date: str = Query(..., alias="endDate"),
    ):
        store = ensure_ready()
        start, end = _range_params(start_date, end_date)
        metrics = WorkloadAggregator(store).metrics(tenant_id, start, end)
        conflicts = ConflictDetector(store).detect(tenant_id, start, end)
        unassigned = sum(
            1 for t in store.list_trips_in_range(tenant_id, start, end)
            if t.driver_id is None and not t.is_cancelled
        )
        return {
            "workload": {
                "metrics": [m.model_dump() for m in metrics],
                "summary": summarize_workload(metrics),
            },
            "conflicts": {
                "items": [c.model_dump() for c in conflicts],
                "summary": summarize_conflicts(conflicts),
            },
            "unassignedTrips": unassigned,
        }

    # ------------------- Routes -------------------

    @router.post("/routes/optimize")
    def routes_optimize(tenant_id: int, req: OptimizeRouteRequest):
        store = ensure_ready()
        if req.driver_id is None or req.date is None or len(req.trips) < 2:
            raise ValidationError("Invalid request. Need driver, date, and at least 2 trips.")

        # only that driver's trips on that day (or still unassigned ones) take part
        trips: List[Trip] = []
        for ref in req.trips:
            trip = store.get_trip(tenant_id, ref.trip_id)
            if trip is None:
                continue
            if trip.trip_date != req.date or trip.driver_id not in (None, req.driver_id):
                logger.debug("Skipping trip %s for driver %s on %s", trip.trip_id, req.driver_id, req.date)
                continue
            trips.append(trip)
        if len(trips) < 2:
            raise ValidationError("Not enough trips to optimize")
        trips.sort(key=lambda t: (t.pickup_time, t.trip_id))

        matrix = provider_source().matrix_for_trips(trips)
        result = RouteSequencer().order(trips, matrix)

        out: Dict[str, Any] = {
            "method": matrix.provider,
            "originalOrder": [_trip_out(t) for t in trips],
            "optimizedOrder": [_trip_out(t) for t in result.trips],
            "savings": {
                "distance": result.distance_saved,
                "time": result.time_saved_minutes,
            },
            "reliable": matrix.reliable,
        }
        if matrix.warning:
            out["warning"] = matrix.warning
        return out

    @router.get("/routes/optimization-scores")
    def routes_optimization_scores(
        tenant_id: int,
        start_date: str = Query(..., alias="startDate"),
        end_date: str = Query(..., alias="endDate"),
    ):
        store = ensure_ready()
        start, end = _range_params(start_date, end_date)
        scores = OptimizationScorer(store, provider=provider_source()).scores_for_range(tenant_id, start, end)
        return {"scores": [s.model_dump(mode="json", by_alias=True, exclude_none=True) for s in scores]}

    @router.get("/routes/analytics")
    def routes_analytics(
        tenant_id: int,
        start_date: str = Query(..., alias="startDate"),
        end_date: str = Query(..., alias="endDate"),
    ):
        store = ensure_ready()
        start, end = _range_params(start_date, end_date)
        return {"success": True, **RouteAnalytics(store).summary(tenant_id, start, end)}

    # ------------------- Timetables / trips -------------------

    @router.get("/timetables/available-drivers")
    def available_drivers(
        tenant_id: int,
        date: str = Query(...),
        time: str = Query(...),
        duration: int = Query(DEFAULT_SLOT_MINUTES, ge=0),
    ):
        store = ensure_ready()
        day = _date_param(date, "date")
        start_time = _time_param(time, "time")
        checker = AvailabilityChecker(store)

        drivers = []
        for d in store.list_active_drivers(tenant_id):
            result = checker.check(tenant_id, d.driver_id, day, start_time, duration)
            drivers.append({
                "driver_id": d.driver_id,
                "name": d.name,
                "vehicle_id": d.assigned_vehicle_id,
                "available": result.available,
                "conflicts": [c.model_dump() for c in result.conflicts],
                "has_critical_conflicts": any(c.severity == "critical" for c in result.conflicts),
                "has_warnings": any(c.severity == "warning" for c in result.conflicts),
            })
        # available first, then by name
        drivers.sort(key=lambda r: (not r["available"], r["name"].lower(), r["driver_id"]))

        logger.info(
            "Available drivers tenant=%s %s %s: %d of %d",
            tenant_id, day, start_time.strftime("%H:%M"),
            sum(1 for r in drivers if r["available"]), len(drivers),
        )
        return {
            "date": day.isoformat(),
            "time": start_time.strftime("%H:%M"),
            "duration_minutes": duration,
            "drivers": drivers,
        }

    @router.patch("/trips/{trip_id}/assign-driver")
    def assign_driver(tenant_id: int, trip_id: int, req: AssignDriverRequest = Body(...)):
        store = ensure_ready()
        driver = store.get_driver(tenant_id, req.driver_id)
        if driver is None:
            raise NotFoundError("Driver not found")
        if not driver.is_active:
            raise ValidationError("Driver is not active")
        trip = store.get_trip(tenant_id, trip_id)
        if trip is None:
            raise NotFoundError("Trip not found")

        result = AvailabilityChecker(store).check(
            tenant_id,
            driver.driver_id,
            req.date or trip.trip_date,
            trip.pickup_time,
            trip.effective_duration,
            exclude_trip_id=trip.trip_id,
        )
        critical = [c for c in result.conflicts if c.severity == "critical"]
        if critical and not req.force:
            raise ConflictError("Driver has scheduling conflicts", critical)

        updated = store.commit_driver_assignment(tenant_id, trip.trip_id, driver.driver_id)
        logger.info(
            "Driver %s assigned to trip %s (tenant=%s, conflicts=%d, forced=%s)",
            driver.driver_id, trip.trip_id, tenant_id, len(result.conflicts), bool(critical),
        )
        return {
            **_trip_out(updated),
            "warnings": [c.model_dump() for c in result.conflicts if c.severity == "warning"],
            "forced": bool(critical),
        }

    return router
