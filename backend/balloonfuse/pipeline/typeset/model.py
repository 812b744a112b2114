from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class LaidOutLine:
    text: str
    x: float
    baseline_y: float
    width: float


@dataclass(frozen=True)
class TextLayout:
    """Lines positioned in the pixel space of the shape they were fitted to."""

    lines: Tuple[LaidOutLine, ...]
    font_size: int
    total_height: float
    ascent: float
    descent: float

    @property
    def text(self) -> str:
        return " ".join(line.text for line in self.lines)

    @property
    def block_top(self) -> float:
        return self.lines[0].baseline_y - self.ascent if self.lines else 0.0

    @property
    def block_bottom(self) -> float:
        return self.lines[-1].baseline_y + self.descent if self.lines else 0.0
