from __future__ import annotations

from typing import Sequence, Tuple

import numpy as np

from roster.scheduling.geo import EARTH_RADIUS_MILES


def build_haversine_matrix(
    from_points: Sequence[Tuple[float, float]],
    to_points: Sequence[Tuple[float, float]],
    radius: float = EARTH_RADIUS_MILES,
) -> np.ndarray:
    """Great-circle miles from every ``from_points[i]`` to every ``to_points[j]``."""
    if len(from_points) == 0 or len(to_points) == 0:
        return np.zeros((len(from_points), len(to_points)), float)

    src = np.radians(np.asarray(from_points, dtype=float))
    dst = np.radians(np.asarray(to_points, dtype=float))

    lat1 = src[:, 0][:, None]
    lon1 = src[:, 1][:, None]
    lat2 = dst[:, 0][None, :]
    lon2 = dst[:, 1][None, :]

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlon / 2) ** 2
    h = np.clip(h, 0.0, 1.0)
    return 2 * radius * np.arctan2(np.sqrt(h), np.sqrt(1 - h))
