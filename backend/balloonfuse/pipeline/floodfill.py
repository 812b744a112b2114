from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from balloonfuse.pipeline.model import Color, NormalizedRect, Point, Polygon, SemanticBalloon

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FloodFillParams:
    """Thresholds of the model-free segmenter. Colour sums are r + g + b on 0..765."""

    work_width: Optional[int] = 500
    text_inset_px: int = 2
    perimeter_offset_px: int = 2
    ink_sum_threshold: int = 400
    dark_brightness: int = 150
    vivid_saturation: int = 60
    yellow_min_rg: int = 200
    yellow_max_b: int = 200
    blue_min_b: int = 200
    blue_min_rg: int = 180
    void_brightness: int = 30
    seed_brightness: int = 150
    spiral_step_px: int = 2
    spiral_radius_px: int = 20
    border_brightness: int = 60
    global_tolerance: int = 40
    local_tolerance: int = 40
    virtual_ink_sum: int = 300
    min_region_pixels: int = 50
    merge_overlap: float = 0.9


@dataclass(frozen=True)
class BubbleRegion:
    """A filled balloon interior as normalized row spans (one 1-row rect per filled row)."""

    spans: Tuple[NormalizedRect, ...]
    bounding_box: NormalizedRect
    pixel_count: int

    def outline(self) -> Polygon:
        """Closed polygon down the left extents of every row and back up the right extents."""
        rows: Dict[Tuple[float, float], Tuple[float, float]] = {}
        for span in self.spans:
            key = (span.y0, span.y1)
            if key in rows:
                left, right = rows[key]
                rows[key] = (min(left, span.x0), max(right, span.x1))
            else:
                rows[key] = (span.x0, span.x1)
        ordered = sorted(rows.items())
        left_side = [pt for (y0, y1), (left, _r) in ordered for pt in ((left, y0), (left, y1))]
        right_side = [pt for (y0, y1), (_l, right) in reversed(ordered) for pt in ((right, y1), (right, y0))]
        return tuple(left_side + right_side)


@dataclass(frozen=True)
class _Seed:
    x: int
    y: int
    color: Color


def _brightness(color: Color) -> int:
    return (color[0] + color[1] + color[2]) // 3


def semantic_anchors(balloons: Iterable[SemanticBalloon]) -> List[Point]:
    """Interior anchors of the balloons to translate, as ``extra_seed_points``."""
    return [balloon.anchor for balloon in balloons if balloon.should_translate]


def merge_regions(regions: Sequence[BubbleRegion], overlap: float = 0.9) -> List[BubbleRegion]:
    """
    Fold together regions whose bounding boxes overlap by at least ``overlap``
    of the smaller box. Repeats until no pair qualifies, so running it again on
    its own output returns the same list.
    """
    merged = list(regions)
    changed = True
    while changed:
        changed = False
        i = 0
        while i < len(merged):
            j = i + 1
            while j < len(merged):
                a, b = merged[i], merged[j]
                smaller = min(a.bounding_box.area, b.bounding_box.area)
                inter = a.bounding_box.intersection_area(b.bounding_box)
                if smaller > 0 and inter >= overlap * smaller:
                    merged[i] = BubbleRegion(
                        spans=tuple(sorted(a.spans + b.spans, key=lambda s: (s.y0, s.x0))),
                        bounding_box=a.bounding_box.union(b.bounding_box),
                        pixel_count=a.pixel_count + b.pixel_count,
                    )
                    del merged[j]
                    changed = True
                else:
                    j += 1
            i += 1
    return merged


class FloodFillSegmenter:
    """
    Finds balloon interiors by growing regions from seeds placed in text areas.

    Text rectangles act as bridges: ink inside them is compared as if it were
    the balloon's background colour, while dark borders outside them stop the
    fill. Seeds come from the text rectangles (perimeter colour) and from any
    extra anchor points.
    """

    def __init__(self, params: Optional[FloodFillParams] = None) -> None:
        self.params = params or FloodFillParams()

    def _prepare(self, image_bgr: np.ndarray) -> np.ndarray:
        rgb = cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB)
        target = self.params.work_width
        h, w = rgb.shape[:2]
        if target is not None and 0 < target < w:
            new_h = max(1, int(round(h * target / float(w))))
            rgb = cv2.resize(rgb, (int(target), new_h), interpolation=cv2.INTER_AREA)
        return rgb.astype(np.int32)

    def _is_plausible_background(self, color: Color) -> bool:
        p = self.params
        r, g, b = color
        is_dark = _brightness(color) < p.dark_brightness
        is_vivid = abs(r - g) + abs(r - b) + abs(g - b) > p.vivid_saturation
        is_yellowish = r > p.yellow_min_rg and g > p.yellow_min_rg and b < p.yellow_max_b
        is_blueish = b > p.blue_min_b and g > p.blue_min_rg and r > p.blue_min_rg
        if is_yellowish or is_blueish:
            return True
        return not is_dark and not is_vivid

    def _perimeter_color(self, rgb: np.ndarray, x0: int, y0: int, x1: int, y1: int) -> Color:
        """Mean of the non-ink pixels on the ring just outside the text rect; white when none."""
        h, w = rgb.shape[:2]
        off = self.params.perimeter_offset_px
        rows = [max(0, y0 - off), min(h - 1, y1 + off)]
        cols = [max(0, x0 - off), min(w - 1, x1 + off)]
        samples = [rgb[y, x0 : min(x1 + 1, w)] for y in rows]
        samples += [rgb[y0 : min(y1 + 1, h), x] for x in cols]
        ring = np.concatenate(samples, axis=0) if samples else np.zeros((0, 3), dtype=np.int32)
        ring = ring[ring.sum(axis=1) > self.params.ink_sum_threshold]
        if len(ring) == 0:
            return (255, 255, 255)
        totals = ring.sum(axis=0)
        count = len(ring)
        return (int(totals[0]) // count, int(totals[1]) // count, int(totals[2]) // count)

    def _sample_color(self, rgb: np.ndarray, x: int, y: int) -> Optional[Color]:
        """Exact colour of pixel (x, y); None off-image or on near-black."""
        h, w = rgb.shape[:2]
        if not (0 <= x < w and 0 <= y < h):
            return None
        r, g, b = (int(c) for c in rgb[y, x])
        color = (r, g, b)
        if _brightness(color) < self.params.void_brightness:
            return None
        return color

    def _is_border(self, rgb: np.ndarray, x: int, y: int) -> bool:
        return int(rgb[y, x].sum()) // 3 < self.params.border_brightness

    def _spiral_search(self, rgb: np.ndarray, px: int, py: int) -> Optional[_Seed]:
        """First bright, non-border pixel on square rings of growing radius around (px, py)."""
        p = self.params
        h, w = rgb.shape[:2]
        for radius in range(p.spiral_step_px, p.spiral_radius_px + 1, p.spiral_step_px):
            for dy in range(-radius, radius + 1):
                for dx in range(-radius, radius + 1):
                    if abs(dx) != radius and abs(dy) != radius:
                        continue
                    sx, sy = px + dx, py + dy
                    if not (0 <= sx < w and 0 <= sy < h) or self._is_border(rgb, sx, sy):
                        continue
                    color = self._sample_color(rgb, sx, sy)
                    if color is not None and _brightness(color) > p.seed_brightness:
                        return _Seed(sx, sy, color)
        return None

    def _text_seeds(
        self,
        rgb: np.ndarray,
        text_regions: Sequence[NormalizedRect],
        text_mask: bytearray,
    ) -> List[_Seed]:
        p = self.params
        h, w = rgb.shape[:2]
        seeds: List[_Seed] = []
        for region in text_regions:
            rx0, ry0 = region.x0 * w, region.y0 * h
            rx1, ry1 = region.x1 * w, region.y1 * h

            start_x = max(0, int(rx0 + p.text_inset_px))
            end_x = min(w, int(rx1 - p.text_inset_px))
            start_y = max(0, int(ry0 + p.text_inset_px))
            end_y = min(h, int(ry1 - p.text_inset_px))
            if start_x >= end_x or start_y >= end_y:
                continue

            for y in range(start_y, end_y):
                row = y * w
                text_mask[row + start_x : row + end_x] = b"\x01" * (end_x - start_x)

            color = self._perimeter_color(
                rgb,
                max(0, int(rx0)),
                max(0, int(ry0)),
                min(w, int(rx1)),
                min(h, int(ry1)),
            )
            if not self._is_plausible_background(color):
                logger.debug("floodfill_text_skipped", extra={"color": list(color)})
                continue

            cx, cy = (start_x + end_x) // 2, (start_y + end_y) // 2
            if self._is_border(rgb, cx, cy):
                moved = self._spiral_search(rgb, cx, cy)
                if moved is None:
                    continue
                cx, cy = moved.x, moved.y
            seeds.append(_Seed(cx, cy, color))
        return seeds

    def _anchor_seeds(self, rgb: np.ndarray, points: Sequence[Point]) -> List[_Seed]:
        h, w = rgb.shape[:2]
        seeds: List[_Seed] = []
        for x, y in points:
            px, py = int(x * w), int(y * h)
            if not (0 <= px < w and 0 <= py < h):
                continue
            color = self._sample_color(rgb, px, py)
            if color is not None and _brightness(color) > self.params.seed_brightness and not self._is_border(rgb, px, py):
                seeds.append(_Seed(px, py, color))
                continue
            found = self._spiral_search(rgb, px, py)
            if found is not None:
                seeds.append(found)
        return seeds

    def _fill(
        self,
        channels: Tuple[List[int], List[int], List[int]],
        width: int,
        height: int,
        seed: _Seed,
        text_mask: bytearray,
        visited: bytearray,
    ) -> List[int]:
        p = self.params
        reds, greens, blues = channels
        tr, tg, tb = seed.color
        global_limit = p.global_tolerance * 3
        local_limit = p.local_tolerance * 3

        def effective(idx: int) -> Tuple[int, int, int, int]:
            r, g, b = reds[idx], greens[idx], blues[idx]
            raw_sum = r + g + b
            if text_mask[idx] and raw_sum < p.virtual_ink_sum:
                return tr, tg, tb, raw_sum
            return r, g, b, raw_sum

        start = seed.y * width + seed.x
        visited[start] = 1
        pixels = [start]
        queue = deque([start])
        while queue:
            idx = queue.popleft()
            cr, cg, cb, _ = effective(idx)
            cx, cy = idx % width, idx // width
            neighbors = []
            if cx > 0:
                neighbors.append(idx - 1)
            if cx < width - 1:
                neighbors.append(idx + 1)
            if cy > 0:
                neighbors.append(idx - width)
            if cy < height - 1:
                neighbors.append(idx + width)

            for n_idx in neighbors:
                if visited[n_idx]:
                    continue
                r, g, b, raw_sum = effective(n_idx)
                # Border test on raw colour: virtualization never hides a dark outline.
                if raw_sum // 3 < p.border_brightness:
                    continue
                if abs(r - tr) + abs(g - tg) + abs(b - tb) >= global_limit:
                    continue
                if abs(r - cr) + abs(g - cg) + abs(b - cb) >= local_limit:
                    continue
                visited[n_idx] = 1
                pixels.append(n_idx)
                queue.append(n_idx)
        return pixels

    @staticmethod
    def _to_region(pixels: List[int], width: int, height: int) -> BubbleRegion:
        rows: Dict[int, Tuple[int, int]] = {}
        for idx in pixels:
            y, x = divmod(idx, width)
            if y in rows:
                lo, hi = rows[y]
                rows[y] = (min(lo, x), max(hi, x))
            else:
                rows[y] = (x, x)

        spans = tuple(
            NormalizedRect(lo / width, y / height, (hi + 1) / width, (y + 1) / height)
            for y, (lo, hi) in sorted(rows.items())
        )
        min_x = min(lo for lo, _hi in rows.values())
        max_x = max(hi for _lo, hi in rows.values())
        min_y, max_y = min(rows), max(rows)
        bbox = NormalizedRect(min_x / width, min_y / height, (max_x + 1) / width, (max_y + 1) / height)
        return BubbleRegion(spans=spans, bounding_box=bbox, pixel_count=len(pixels))

    def segment(
        self,
        image_bgr: np.ndarray,
        text_regions: Sequence[NormalizedRect],
        extra_seed_points: Sequence[Point] = (),
    ) -> List[BubbleRegion]:
        """
        Segment balloon interiors around the given text rectangles.

        Args:
            image_bgr: Page image (HxWx3, BGR).
            text_regions: Normalized text rectangles, top-left origin.
            extra_seed_points: Normalized (x, y) anchors, e.g. semantic center points.

        Returns:
            Merged regions in normalized page coordinates.
        """
        rgb = self._prepare(image_bgr)
        height, width = rgb.shape[:2]
        text_mask = bytearray(width * height)
        visited = bytearray(width * height)

        seeds = self._text_seeds(rgb, text_regions, text_mask)
        seeds += self._anchor_seeds(rgb, extra_seed_points)

        flat = rgb.reshape(-1, 3)
        channels = (flat[:, 0].tolist(), flat[:, 1].tolist(), flat[:, 2].tolist())

        regions: List[BubbleRegion] = []
        for seed in seeds:
            if visited[seed.y * width + seed.x]:
                continue
            pixels = self._fill(channels, width, height, seed, text_mask, visited)
            if len(pixels) < self.params.min_region_pixels:
                continue
            regions.append(self._to_region(pixels, width, height))

        merged = merge_regions(regions, overlap=self.params.merge_overlap)
        logger.info(
            "floodfill_complete",
            extra={
                "work_size": [width, height],
                "num_seeds": len(seeds),
                "num_regions": len(regions),
                "num_merged": len(merged),
            },
        )
        return merged
