from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import shapely  # type: ignore
from shapely.geometry import Polygon  # type: ignore


def sample_xs(polygon: Polygon, step: float) -> np.ndarray:
    """X positions sampled every ``step`` pixels across the polygon's bounds."""
    min_x, _min_y, max_x, _max_y = polygon.bounds
    if step <= 0:
        raise ValueError("step must be positive")
    count = int(np.floor((max_x - min_x) / step)) + 1
    return min_x + step * np.arange(max(count, 0), dtype=float)


def get_polygon_extent_at_y(
    polygon: Polygon,
    y: float,
    xs: np.ndarray,
) -> Tuple[Optional[float], Optional[float]]:
    """Min/max of the sampled ``xs`` that fall inside ``polygon`` on row ``y``.

    Returns (None, None) when no sample is inside.
    """
    if xs.size == 0:
        return None, None
    inside = shapely.contains_xy(polygon, xs, np.full_like(xs, float(y)))
    hits = xs[inside]
    if hits.size == 0:
        return None, None
    return float(hits.min()), float(hits.max())
