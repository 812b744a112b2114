from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from PIL import ImageFont  # type: ignore
from shapely.geometry import Polygon  # type: ignore

from balloonfuse.pipeline.model import RefinedBalloon
from balloonfuse.pipeline.typeset.fit import find_optimal_font_size
from balloonfuse.pipeline.typeset.model import TextLayout
from balloonfuse.pipeline.utils.geometry.polygons import polygon_from_points, rounded_rect

logger = logging.getLogger(__name__)


def layout_text(
    text: str,
    shape: Sequence[Tuple[float, float]],
    font_path: Optional[Path] = None,
    min_size: int = 10,
    max_size: int = 42,
    font_cache: Optional[Dict[int, ImageFont.FreeTypeFont]] = None,
) -> Optional[TextLayout]:
    """Fit ``text`` inside the closed pixel-space ``shape``.

    Returns None when the text is empty or cannot fit even at ``min_size``.
    """
    if min_size > max_size:
        raise ValueError(f"min_size ({min_size}) must not exceed max_size ({max_size})")
    if not text or not text.strip():
        return None
    polygon = polygon_from_points(shape)
    if polygon is None:
        return None
    _size, layout = find_optimal_font_size(
        text,
        polygon,
        font_path,
        font_cache if font_cache is not None else {},
        min_font_size=min_size,
        max_font_size=max_size,
    )
    return layout


def balloon_shape(
    balloon: RefinedBalloon,
    page_width: int,
    page_height: int,
    corner_ratio: float = 0.2,
) -> Polygon:
    """Pixel polygon to typeset into: the refined contour, else a rounded rect on the geometry."""
    if balloon.has_contour:
        poly = polygon_from_points([(x * page_width, y * page_height) for x, y in balloon.contour])
        if poly is not None:
            return poly
    rect = balloon.geometry
    return rounded_rect(
        rect.x0 * page_width,
        rect.y0 * page_height,
        rect.x1 * page_width,
        rect.y1 * page_height,
        corner_ratio=corner_ratio,
    )


def layout_balloon(
    balloon: RefinedBalloon,
    page_width: int,
    page_height: int,
    *,
    font_path: Optional[Path] = None,
    min_size: int = 10,
    max_size: int = 42,
    font_cache: Optional[Dict[int, ImageFont.FreeTypeFont]] = None,
) -> Optional[TextLayout]:
    shape = balloon_shape(balloon, page_width, page_height)
    layout = layout_text(
        balloon.translated_text,
        list(shape.exterior.coords)[:-1],
        font_path=font_path,
        min_size=min_size,
        max_size=max_size,
        font_cache=font_cache,
    )
    if layout is None:
        logger.info(
            "layout_infeasible",
            extra={"text": balloon.translated_text[:20], "contour": balloon.has_contour},
        )
    return layout
