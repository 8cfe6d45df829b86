from __future__ import annotations

from dataclasses import dataclass
import datetime as dt
import math
from typing import Any, Dict, List, Literal, Optional

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..timeparse import minutes_since_midnight, parse_date, to_time
from .config import DEFAULT_MAX_HOURS_PER_WEEK, DEFAULT_TRIP_MINUTES, MINUTES_PER_MILE


def round_half_up(x: float) -> int:
    # 2.5 -> 3 and -2.5 -> -2, unlike round()
    return int(math.floor(x + 0.5))


TripStatus = Literal["scheduled", "in_progress", "completed", "cancelled", "no_show"]
LeaveStatus = Literal["approved", "pending", "rejected"]
ConflictType = Literal["time_overlap", "unavailable", "max_hours", "no_rest_period"]
Severity = Literal["critical", "warning", "info"]
Provider = Literal["remote", "geometric"]
OptimizationStatus = Literal["optimal", "good", "needs-optimization", "error"]


# -----------------------------
# Records read from the data layer
# -----------------------------

class Driver(BaseModel):
    driver_id: int
    name: str = ""
    is_active: bool = True
    home_postcode: Optional[str] = None
    home_address: Optional[str] = None
    max_hours_per_week: float = Field(DEFAULT_MAX_HOURS_PER_WEEK, gt=0)
    assigned_vehicle_id: Optional[int] = None


class Trip(BaseModel):
    trip_id: int
    tenant_id: int = 1
    trip_date: dt.date
    pickup_time: dt.time
    duration_minutes: Optional[int] = Field(None, ge=0)
    pickup_location: str = ""
    pickup_address: Optional[str] = None
    pickup_postcode: Optional[str] = None
    destination: str = ""
    destination_address: Optional[str] = None
    destination_postcode: Optional[str] = None
    status: TripStatus = "scheduled"
    driver_id: Optional[int] = None
    distance_miles: Optional[float] = None
    customer_name: Optional[str] = None
    passenger_count: Optional[int] = Field(None, ge=0)

    @field_validator("trip_date", mode="before")
    @classmethod
    def _parse_trip_date(cls, v: Any) -> dt.date:
        return parse_date(v)

    @field_validator("pickup_time", mode="before")
    @classmethod
    def _parse_pickup_time(cls, v: Any) -> dt.time:
        return to_time(v)

    @property
    def effective_duration(self) -> int:
        return DEFAULT_TRIP_MINUTES if self.duration_minutes is None else int(self.duration_minutes)

    @property
    def start_minute(self) -> int:
        return minutes_since_midnight(self.pickup_time)

    @property
    def end_minute(self) -> int:
        return self.start_minute + self.effective_duration

    @property
    def start_address(self) -> str:
        return self.pickup_address or self.pickup_location

    @property
    def end_address(self) -> str:
        return self.destination_address or self.destination

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"


class LeaveRecord(BaseModel):
    driver_id: int
    start_date: dt.date
    end_date: dt.date
    status: LeaveStatus = "approved"
    holiday_type: str = "annual"

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_dates(cls, v: Any) -> dt.date:
        return parse_date(v)

    def covers(self, day: dt.date) -> bool:
        return self.start_date <= day <= self.end_date


# -----------------------------
# Computed results
# -----------------------------

class Conflict(BaseModel):
    conflict_type: ConflictType
    severity: Severity
    driver_id: int
    driver_name: str = ""
    trip_id: Optional[int] = None
    related_trip_id: Optional[int] = None
    details: str


class AvailabilityResult(BaseModel):
    available: bool
    conflicts: List[Conflict] = Field(default_factory=list)


class DriverScore(BaseModel):
    driver_id: int
    score: float
    reasoning: List[str] = Field(default_factory=list)


class ShiftAssignment(BaseModel):
    trip_id: int
    driver_id: int
    confidence_score: float = Field(..., ge=0, le=100)
    reasoning: List[str] = Field(default_factory=list)


class AutoAssignResult(BaseModel):
    assignments: List[ShiftAssignment] = Field(default_factory=list)
    unassigned: List[int] = Field(default_factory=list)


class CommitResult(BaseModel):
    applied: List[ShiftAssignment] = Field(default_factory=list)
    skipped: List[Dict[str, Any]] = Field(default_factory=list)


class WorkloadMetrics(BaseModel):
    driver_id: int
    driver_name: str
    total_hours: float
    total_trips: int
    total_distance: float
    days_worked: int
    average_hours_per_day: float
    utilization_percentage: float = Field(..., le=100)


class OptimizationScore(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    driver_id: int = Field(..., alias="driverId")
    date: dt.date
    score: int
    status: OptimizationStatus
    trip_count: int = Field(..., alias="tripCount")
    current_distance: float = Field(0.0, alias="currentDistance")
    optimal_distance: float = Field(0.0, alias="optimalDistance")
    savings_potential: float = Field(0.0, alias="savingsPotential")
    provider: Optional[Provider] = None
    reliable: bool = True
    warning: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DistanceMatrix:
    matrix: np.ndarray          # miles, directed: row = trip end, column = trip start
    provider: str               # "remote" | "geometric"
    reliable: bool
    warning: Optional[str] = None

    def __len__(self) -> int:
        return int(self.matrix.shape[0])

    def cell(self, i: int, j: int) -> float:
        return float(self.matrix[i, j])


@dataclass
class SequenceResult:
    trips: List[Trip]
    order: List[int]
    distance_before: float
    distance_after: float

    @property
    def distance_saved(self) -> float:
        return self.distance_before - self.distance_after

    @property
    def time_saved_minutes(self) -> int:
        return round_half_up(self.distance_saved * MINUTES_PER_MILE)


# -----------------------------
# HTTP request bodies
# -----------------------------

class AutoAssignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: dt.date
    balance_workload: bool = Field(True, alias="balanceWorkload")
    consider_proximity: bool = Field(False, alias="considerProximity")
    max_assignments: int = Field(100, ge=0, alias="maxAssignments")
    apply_changes: bool = Field(False, alias="applyChanges")


class TripRef(BaseModel):
    trip_id: int

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_id(cls, v: Any) -> Any:
        if isinstance(v, (int, str)) and str(v).strip().isdigit():
            return {"trip_id": int(v)}
        return v


class OptimizeRouteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    driver_id: Optional[int] = Field(None, alias="driverId")
    date: Optional[dt.date] = None
    trips: List[TripRef] = Field(default_factory=list)


class AssignDriverRequest(BaseModel):
    driver_id: int
    date: Optional[dt.date] = None
    force: bool = False
