from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

Point = Tuple[float, float]
Polygon = Tuple[Point, ...]
Box1000 = Tuple[int, int, int, int]  # ymin, xmin, ymax, xmax
Color = Tuple[int, int, int]  # RGB

WHITE: Color = (255, 255, 255)


def _clamp01(v: float) -> float:
    return min(1.0, max(0.0, float(v)))


@dataclass(frozen=True)
class NormalizedRect:
    """Axis-aligned rectangle in page fractions, top-left origin."""

    x0: float
    y0: float
    x1: float
    y1: float

    @classmethod
    def clamped(cls, x0: float, y0: float, x1: float, y1: float) -> "NormalizedRect":
        x0, x1 = sorted((_clamp01(x0), _clamp01(x1)))
        y0, y1 = sorted((_clamp01(y0), _clamp01(y1)))
        return cls(x0, y0, x1, y1)

    @classmethod
    def from_box1000(cls, box: Box1000) -> "NormalizedRect":
        ymin, xmin, ymax, xmax = box
        return cls.clamped(xmin / 1000.0, ymin / 1000.0, xmax / 1000.0, ymax / 1000.0)

    def to_box1000(self) -> Box1000:
        return (
            int(round(self.y0 * 1000)),
            int(round(self.x0 * 1000)),
            int(round(self.y1 * 1000)),
            int(round(self.x1 * 1000)),
        )

    @property
    def width(self) -> float:
        return max(0.0, self.x1 - self.x0)

    @property
    def height(self) -> float:
        return max(0.0, self.y1 - self.y0)

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> Point:
        return ((self.x0 + self.x1) / 2.0, (self.y0 + self.y1) / 2.0)

    def intersection_area(self, other: "NormalizedRect") -> float:
        w = min(self.x1, other.x1) - max(self.x0, other.x0)
        h = min(self.y1, other.y1) - max(self.y0, other.y0)
        if w <= 0 or h <= 0:
            return 0.0
        return w * h

    def union(self, other: "NormalizedRect") -> "NormalizedRect":
        return NormalizedRect(
            min(self.x0, other.x0),
            min(self.y0, other.y0),
            max(self.x1, other.x1),
            max(self.y1, other.y1),
        )

    def iou(self, other: "NormalizedRect") -> float:
        inter = self.intersection_area(other)
        union_area = self.area + other.area - inter
        if union_area <= 0:
            return 0.0
        return inter / union_area

    def to_pixels(self, width: int, height: int) -> Tuple[int, int, int, int]:
        """(x, y, w, h) in integer pixels, truncated like the detector output."""
        x = int(self.x0 * width)
        y = int(self.y0 * height)
        return x, y, int(self.width * width), int(self.height * height)


def iou(a: NormalizedRect, b: NormalizedRect) -> float:
    return a.iou(b)


def center_distance(a: NormalizedRect, b: NormalizedRect) -> float:
    (ax, ay), (bx, by) = a.center, b.center
    return math.hypot(ax - bx, ay - by)


class BalloonShape(str, Enum):
    OVAL = "OVAL"
    RECTANGLE = "RECTANGLE"
    CLOUD = "CLOUD"
    JAGGED = "JAGGED"

    @classmethod
    def parse(cls, value: object) -> "BalloonShape":
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.OVAL


@dataclass(frozen=True)
class DetectedRegion:
    rect: NormalizedRect
    confidence: float


@dataclass(frozen=True)
class SemanticBalloon:
    original_text: str
    translated_text: str
    should_translate: bool
    shape: BalloonShape
    approx_box: Box1000
    center_point: Optional[Tuple[int, int]] = None  # y, x on the 1000 grid

    @property
    def rect(self) -> NormalizedRect:
        return NormalizedRect.from_box1000(self.approx_box)

    @property
    def anchor(self) -> Point:
        """Normalized (x, y) anchor: the reported center point, else the box center."""
        if self.center_point is not None:
            cy, cx = self.center_point
            return (_clamp01(cx / 1000.0), _clamp01(cy / 1000.0))
        return self.rect.center


class MatchKind(str, Enum):
    IOU = "iou"
    DISTANCE = "distance"
    NONE = "none"


@dataclass(frozen=True)
class MergedBalloon:
    semantic: SemanticBalloon
    geometry: NormalizedRect
    match: MatchKind = MatchKind.NONE

    @property
    def original_text(self) -> str:
        return self.semantic.original_text

    @property
    def translated_text(self) -> str:
        return self.semantic.translated_text

    @property
    def shape(self) -> BalloonShape:
        return self.semantic.shape


@dataclass(frozen=True)
class RefinedBalloon:
    merged: MergedBalloon
    contour: Polygon = ()
    background_color: Color = WHITE

    @property
    def geometry(self) -> NormalizedRect:
        return self.merged.geometry

    @property
    def translated_text(self) -> str:
        return self.merged.translated_text

    @property
    def has_contour(self) -> bool:
        return len(self.contour) >= 3
