from __future__ import annotations

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Conflict


class SchedulingError(Exception):
    """Base class for errors surfaced by the scheduling core."""

    status_code = 500


class ValidationError(SchedulingError):
    """Missing or malformed request fields, too few trips to optimise."""

    status_code = 400


class NotFoundError(SchedulingError):
    status_code = 404


class ConflictError(SchedulingError):
    """A critical scheduling conflict blocked an assignment."""

    status_code = 409

    def __init__(self, message: str, conflicts: Optional[List["Conflict"]] = None):
        super().__init__(message)
        self.conflicts = list(conflicts or [])


class ProviderError(SchedulingError):
    """Remote distance/geocoding failure.

    Never leaves the distance provider: it is caught there and turned into
    the geometric fallback with ``reliable=False``.
    """

    status_code = 502
