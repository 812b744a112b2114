from __future__ import annotations

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from balloonfuse.pipeline.model import WHITE, Color, MergedBalloon, NormalizedRect, Polygon, RefinedBalloon

logger = logging.getLogger(__name__)

# r + g + b above this is paper, not ink
_BRIGHT_SUM = 400


def _clip_rect(rect: NormalizedRect, width: int, height: int) -> Tuple[int, int, int, int]:
    x, y, rw, rh = rect.to_pixels(width, height)
    x = max(0, min(x, width))
    y = max(0, min(y, height))
    rw = min(rw, width - x)
    rh = min(rh, height - y)
    return x, y, rw, rh


class ShapeRefiner:
    """
    Recovers a balloon's organic outline from its bounding box with grabCut.

    The rect interior is probable foreground and the rest of a surrounding crop
    is certain background. The largest external contour of the foreground mask
    is simplified with ``approxPolyDP`` and normalized to page fractions.
    """

    def __init__(
        self,
        iterations: int = 3,
        epsilon_px: float = 2.0,
        crop_margin: float = 0.5,
        sample_background: bool = False,
    ) -> None:
        self.iterations = int(iterations)
        self.epsilon_px = float(epsilon_px)
        self.crop_margin = max(0.0, float(crop_margin))
        self.sample_background = sample_background

    def _crop_bounds(self, x: int, y: int, rw: int, rh: int, width: int, height: int) -> Tuple[int, int, int, int]:
        mx = int(round(rw * self.crop_margin))
        my = int(round(rh * self.crop_margin))
        return max(0, x - mx), max(0, y - my), min(width, x + rw + mx), min(height, y + rh + my)

    def _segment(self, image_bgr: np.ndarray, seed_rect: NormalizedRect) -> Tuple[Optional[np.ndarray], Tuple[int, int]]:
        """Largest simplified contour in page pixels, or None."""
        height, width = image_bgr.shape[:2]
        x, y, rw, rh = _clip_rect(seed_rect, width, height)
        if rw <= 0 or rh <= 0:
            return None, (width, height)

        cx0, cy0, cx1, cy1 = self._crop_bounds(x, y, rw, rh, width, height)
        crop = np.ascontiguousarray(image_bgr[cy0:cy1, cx0:cx1]).copy()
        mask = np.zeros(crop.shape[:2], dtype=np.uint8)
        bgd_model = np.zeros((1, 65), dtype=np.float64)
        fgd_model = np.zeros((1, 65), dtype=np.float64)
        try:
            cv2.grabCut(
                crop,
                mask,
                (x - cx0, y - cy0, rw, rh),
                bgd_model,
                fgd_model,
                self.iterations,
                cv2.GC_INIT_WITH_RECT,
            )
        except cv2.error as exc:
            # No background samples left (rect covers the crop) or degenerate colour model.
            logger.debug("refine_grabcut_failed", extra={"error": str(exc).strip()[:200]})
            return None, (width, height)

        foreground = ((mask & 1) * 255).astype(np.uint8)
        contours, _ = cv2.findContours(foreground, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
        best: Optional[np.ndarray] = None
        best_area = 0.0
        for contour in contours:
            area = float(cv2.contourArea(contour))
            if best is None or area > best_area:
                best = contour
                best_area = area
        if best is None:
            return None, (width, height)

        approx = cv2.approxPolyDP(best, self.epsilon_px, True).reshape(-1, 2)
        if len(approx) < 3:
            return None, (width, height)
        approx = approx + np.array([cx0, cy0], dtype=approx.dtype)
        return approx, (width, height)

    def refine(self, image_bgr: np.ndarray, seed_rect: NormalizedRect) -> Polygon:
        approx, (width, height) = self._segment(image_bgr, seed_rect)
        if approx is None:
            return ()
        return _normalize_points(approx, width, height)

    def refine_balloon(self, image_bgr: np.ndarray, merged: MergedBalloon) -> RefinedBalloon:
        approx, (width, height) = self._segment(image_bgr, merged.geometry)
        if approx is None:
            logger.debug("refine_empty", extra={"text": merged.original_text[:20]})
            return RefinedBalloon(merged=merged)

        color = WHITE
        if self.sample_background:
            color = sample_background_color(image_bgr, approx)
        return RefinedBalloon(
            merged=merged,
            contour=_normalize_points(approx, width, height),
            background_color=color,
        )


def _normalize_points(points_px: np.ndarray, width: int, height: int) -> Polygon:
    return tuple(
        (min(1.0, max(0.0, float(px) / width)), min(1.0, max(0.0, float(py) / height)))
        for px, py in points_px
    )


def sample_background_color(image_bgr: np.ndarray, contour_px: np.ndarray) -> Color:
    """Median RGB of the bright pixels enclosed by ``contour_px``; white if there are none."""
    mask = np.zeros(image_bgr.shape[:2], dtype=np.uint8)
    cv2.fillPoly(mask, [contour_px.astype(np.int32).reshape(-1, 1, 2)], 255)
    pixels = image_bgr[mask > 0].astype(np.int32)
    if pixels.size == 0:
        return WHITE
    bright = pixels[pixels.sum(axis=1) > _BRIGHT_SUM]
    if bright.size == 0:
        return WHITE
    b, g, r = (int(v) for v in np.median(bright, axis=0))
    return (r, g, b)
