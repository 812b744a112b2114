from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

from PIL import ImageFont  # type: ignore
from shapely.geometry import Polygon  # type: ignore

from balloonfuse.pipeline.typeset.layout import compute_scanline_layout
from balloonfuse.pipeline.typeset.model import TextLayout

logger = logging.getLogger(__name__)


def load_font(font_path: Optional[Path], size: int) -> ImageFont.FreeTypeFont:
    """Load ``font_path`` at ``size``; Pillow's bundled scalable font when no path is usable."""
    if font_path is not None and Path(font_path).is_file():
        return ImageFont.truetype(str(font_path), size)
    return ImageFont.load_default(size=size)


def find_optimal_font_size(
    text: str,
    polygon: Polygon,
    font_path: Optional[Path],
    font_cache: Dict[int, ImageFont.FreeTypeFont],
    min_font_size: int = 10,
    max_font_size: int = 42,
) -> Tuple[int, Optional[TextLayout]]:
    """
    Finds the largest fitting font size using a binary search and a font cache.

    Feasibility is only roughly monotonic in font size (scan lines are
    quantized), so a larger size can be missed when a middle size fails.
    """
    low = int(min_font_size)
    high = int(max_font_size)
    optimal_size = low
    optimal_layout: Optional[TextLayout] = None

    if font_path is None or not Path(font_path).is_file():
        logger.warning("font_fallback_default", extra={"font_path": str(font_path) if font_path else None})

    while low <= high:
        mid = (low + high) // 2
        if mid <= 0:
            break

        if mid not in font_cache:
            try:
                font_cache[mid] = load_font(font_path, mid)
            except OSError:
                # A font may refuse a specific size; treat it as a failure for this size.
                high = mid - 1
                continue
        font = font_cache[mid]

        layout = compute_scanline_layout(text, polygon, font)

        if layout is not None:
            # This size works, try a larger one
            optimal_size = mid
            optimal_layout = layout
            low = mid + 1
        else:
            # This size is too big, try a smaller one
            high = mid - 1

    return optimal_size, optimal_layout
