from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from PIL import ImageFont  # type: ignore
from shapely.geometry import Polygon  # type: ignore

from balloonfuse.pipeline.typeset.model import LaidOutLine, TextLayout
from balloonfuse.pipeline.utils.geometry.poly_scanline import get_polygon_extent_at_y, sample_xs


@dataclass
class _Slot:
    text: str
    safe_left: float
    available: float
    width: float
    baseline_y: float


def _measure(font: ImageFont.FreeTypeFont, text: str) -> float:
    return float(font.getlength(text))


def _pack_words(
    words: List[str],
    start: int,
    font: ImageFont.FreeTypeFont,
    available: float,
) -> Tuple[List[str], float]:
    """Greedy fill: take words while the space-joined line still fits."""
    packed: List[str] = []
    width = 0.0
    idx = start
    while idx < len(words):
        candidate = " ".join(packed + [words[idx]])
        candidate_width = _measure(font, candidate)
        if candidate_width > available:
            break
        packed.append(words[idx])
        width = candidate_width
        idx += 1
    return packed, width


def compute_scanline_layout(
    text: str,
    polygon: Polygon,
    font: ImageFont.FreeTypeFont,
    *,
    line_spacing: float = 1.1,
    scan_step: float = 4.0,
    inset: float = 8.0,
) -> Optional[TextLayout]:
    """
    Attempts to place ``text`` inside ``polygon`` at the font's fixed size.

    Scan lines start one line height below the top of the bounding box and
    advance by one line height. On each line the polygon is sampled every
    ``scan_step`` pixels; the inset hit range is the available width. Lines
    narrower than twice the font size are skipped, as are slots where not
    even the next word fits.

    Returns:
        A vertically centered layout, or None when words remain once the
        shape's vertical extent is exhausted.
    """
    words = text.split()
    if not words:
        return None

    size = float(getattr(font, "size", 0))
    if size <= 0:
        return None
    line_height = size * line_spacing

    _min_x, min_y, _max_x, max_y = polygon.bounds
    xs = sample_xs(polygon, scan_step)

    slots: List[_Slot] = []
    next_word = 0
    y = min_y + line_height
    while y < max_y - line_height / 2.0 and next_word < len(words):
        center_line_y = y - line_height * 0.3
        left, right = get_polygon_extent_at_y(polygon, center_line_y, xs)
        if left is None or right is None:
            y += line_height
            continue

        safe_left = left + inset
        available = (right - inset) - safe_left
        if available < size * 2.0:
            y += line_height
            continue

        packed, width = _pack_words(words, next_word, font, available)
        if packed:
            slots.append(_Slot(" ".join(packed), safe_left, available, width, y))
            next_word += len(packed)
        y += line_height

    if next_word < len(words) or not slots:
        return None

    ascent, descent = font.getmetrics()
    block_top = slots[0].baseline_y - ascent
    block_bottom = slots[-1].baseline_y + descent
    shift = (min_y + max_y) / 2.0 - (block_top + block_bottom) / 2.0

    lines = tuple(
        LaidOutLine(
            text=slot.text,
            x=slot.safe_left + (slot.available - slot.width) / 2.0,
            baseline_y=slot.baseline_y + shift,
            width=slot.width,
        )
        for slot in slots
    )
    return TextLayout(
        lines=lines,
        font_size=int(size),
        total_height=float(block_bottom - block_top),
        ascent=float(ascent),
        descent=float(descent),
    )
