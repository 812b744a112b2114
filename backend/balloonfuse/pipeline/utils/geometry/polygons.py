from __future__ import annotations

from typing import Optional, Sequence, Tuple

from shapely.geometry import MultiPolygon, Polygon, box  # type: ignore


def normalize_polygon(poly: Polygon) -> Optional[Polygon]:
    """Repair self-intersections; keeps the largest piece of a split polygon."""
    if poly.is_valid and not poly.is_empty and poly.area > 0:
        return poly
    fixed = poly.buffer(0)
    if isinstance(fixed, Polygon):
        return fixed if not fixed.is_empty and fixed.area > 0 else None
    if isinstance(fixed, MultiPolygon):
        geoms = [g for g in fixed.geoms if g.area > 0]
        return max(geoms, key=lambda p: p.area) if geoms else None
    return None


def polygon_from_points(points: Sequence[Tuple[float, float]]) -> Optional[Polygon]:
    if len(points) < 3:
        return None
    return normalize_polygon(Polygon([(float(x), float(y)) for x, y in points]))


def rounded_rect(x0: float, y0: float, x1: float, y1: float, corner_ratio: float = 0.2) -> Polygon:
    """Axis-aligned rectangle with corners rounded by ``corner_ratio`` of the short side."""
    w, h = x1 - x0, y1 - y0
    radius = max(0.0, min(w, h) * min(max(corner_ratio, 0.0), 0.49))
    if radius <= 0:
        return box(x0, y0, x1, y1)
    core = box(x0 + radius, y0 + radius, x1 - radius, y1 - radius)
    return core.buffer(radius, quad_segs=8)
