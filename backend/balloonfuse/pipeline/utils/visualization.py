from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

import cv2  # type: ignore
import numpy as np

from balloonfuse.pipeline.model import MatchKind, RefinedBalloon
from balloonfuse.pipeline.typeset.model import TextLayout

_MATCH_COLORS = {
    MatchKind.IOU: (0, 200, 0),
    MatchKind.DISTANCE: (0, 200, 255),
    MatchKind.NONE: (0, 0, 255),
}


def generate_distinct_colors(num_colors: int, seed: int = 42) -> List[Tuple[int, int, int]]:
    rng = np.random.default_rng(seed)
    colors = []
    for _ in range(num_colors):
        color = tuple(int(c) for c in rng.integers(low=64, high=255, size=3))
        colors.append((color[2], color[1], color[0]))
    return colors


def _put_label(image: np.ndarray, label: str, origin: Tuple[int, int]) -> None:
    cv2.putText(image, label, origin, cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 0, 0), 2)
    cv2.putText(image, label, origin, cv2.FONT_HERSHEY_SIMPLEX, 0.5, (255, 255, 255), 1)


def make_overlay(
    image_bgr: np.ndarray,
    balloons: Sequence[RefinedBalloon],
    layouts: Optional[Sequence[Optional[TextLayout]]] = None,
    alpha: float = 0.4,
) -> np.ndarray:
    """Debug view: geometry boxes coloured by match kind, filled contours, laid-out baselines."""
    h, w = image_bgr.shape[:2]
    overlay = image_bgr.copy()
    fills = generate_distinct_colors(len(balloons))
    for idx, balloon in enumerate(balloons):
        if balloon.has_contour:
            pts = np.array([[int(x * w), int(y * h)] for x, y in balloon.contour], dtype=np.int32)
            mask = np.zeros((h, w), dtype=np.uint8)
            cv2.fillPoly(mask, [pts], 1)
            mask_bool = mask.astype(bool)
            colored = np.zeros_like(image_bgr)
            colored[:, :] = fills[idx]
            overlay[mask_bool] = cv2.addWeighted(image_bgr[mask_bool], 1 - alpha, colored[mask_bool], alpha, 0)
            cv2.polylines(overlay, [pts], True, (0, 0, 0), thickness=1)

        x, y, rw, rh = balloon.geometry.to_pixels(w, h)
        color = _MATCH_COLORS[balloon.merged.match]
        cv2.rectangle(overlay, (x, y), (x + rw, y + rh), color, thickness=2)
        _put_label(overlay, f"{idx + 1}:{balloon.merged.match.value}", (x, max(12, y - 4)))

        layout = layouts[idx] if layouts is not None and idx < len(layouts) else None
        if layout is not None:
            for line in layout.lines:
                by = int(round(line.baseline_y))
                cv2.line(overlay, (int(line.x), by), (int(line.x + line.width), by), (255, 0, 0), 1)
    return overlay
