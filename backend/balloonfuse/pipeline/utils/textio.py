from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from balloonfuse.pipeline.model import (
    BalloonShape,
    MatchKind,
    MergedBalloon,
    NormalizedRect,
    RefinedBalloon,
    SemanticBalloon,
)
from balloonfuse.pipeline.typeset.model import LaidOutLine, TextLayout

from .io import ensure_dir


def _rect_to_list(rect: NormalizedRect) -> List[float]:
    return [rect.x0, rect.y0, rect.x1, rect.y1]


def _rect_from_list(values: Sequence[float]) -> NormalizedRect:
    x0, y0, x1, y1 = (float(v) for v in values)
    return NormalizedRect(x0, y0, x1, y1)


def balloons_to_records(balloons: Sequence[RefinedBalloon]) -> List[Dict[str, Any]]:
    records = []
    for idx, balloon in enumerate(balloons, start=1):
        semantic = balloon.merged.semantic
        records.append(
            {
                "id": idx,
                "original_text": semantic.original_text,
                "translated_text": semantic.translated_text,
                "should_translate": semantic.should_translate,
                "shape": semantic.shape.value,
                "box_2d": list(semantic.approx_box),
                "center_point": list(semantic.center_point) if semantic.center_point is not None else None,
                "geometry": _rect_to_list(balloon.geometry),
                "match": balloon.merged.match.value,
                "contour": [[float(x), float(y)] for x, y in balloon.contour],
                "background_color": list(balloon.background_color),
            }
        )
    return records


def balloons_from_records(records: Sequence[Dict[str, Any]]) -> List[RefinedBalloon]:
    balloons: List[RefinedBalloon] = []
    for rec in records:
        center = rec.get("center_point")
        semantic = SemanticBalloon(
            original_text=str(rec.get("original_text", "")),
            translated_text=str(rec.get("translated_text", "")),
            should_translate=bool(rec.get("should_translate", True)),
            shape=BalloonShape.parse(rec.get("shape")),
            approx_box=tuple(int(v) for v in rec["box_2d"]),  # type: ignore[arg-type]
            center_point=(int(center[0]), int(center[1])) if center else None,
        )
        merged = MergedBalloon(
            semantic=semantic,
            geometry=_rect_from_list(rec["geometry"]),
            match=MatchKind(rec.get("match", MatchKind.NONE.value)),
        )
        r, g, b = (int(v) for v in rec.get("background_color", (255, 255, 255)))
        balloons.append(
            RefinedBalloon(
                merged=merged,
                contour=tuple((float(x), float(y)) for x, y in rec.get("contour", [])),
                background_color=(r, g, b),
            )
        )
    return balloons


def layout_to_record(layout: Optional[TextLayout]) -> Optional[Dict[str, Any]]:
    if layout is None:
        return None
    return {
        "font_size": layout.font_size,
        "total_height": layout.total_height,
        "ascent": layout.ascent,
        "descent": layout.descent,
        "lines": [
            {"text": line.text, "x": line.x, "baseline_y": line.baseline_y, "width": line.width}
            for line in layout.lines
        ],
    }


def layout_from_record(record: Optional[Dict[str, Any]]) -> Optional[TextLayout]:
    if record is None:
        return None
    return TextLayout(
        lines=tuple(
            LaidOutLine(
                text=str(line["text"]),
                x=float(line["x"]),
                baseline_y=float(line["baseline_y"]),
                width=float(line["width"]),
            )
            for line in record.get("lines", [])
        ),
        font_size=int(record["font_size"]),
        total_height=float(record["total_height"]),
        ascent=float(record["ascent"]),
        descent=float(record["descent"]),
    )


def save_balloons_json(
    json_path: Path,
    page_id: str,
    balloons: Sequence[RefinedBalloon],
    layouts: Optional[Sequence[Optional[TextLayout]]] = None,
) -> None:
    ensure_dir(json_path.parent)
    records = balloons_to_records(balloons)
    if layouts is not None:
        for rec, layout in zip(records, layouts):
            rec["layout"] = layout_to_record(layout)
    with open(json_path, "w", encoding="utf-8") as f:
        json.dump({"page_id": page_id, "balloons": records}, f, ensure_ascii=False, indent=2)


def read_balloons_json(json_path: Path) -> Dict[str, Any]:
    """Load a saved page: ``{"page_id", "balloons", "layouts"}`` with typed values."""
    if not json_path.exists():
        raise FileNotFoundError(f"balloons.json not found at {json_path}. Run the pipeline first.")
    with open(json_path, "r", encoding="utf-8") as f:
        data: Dict[str, Any] = json.load(f)
    records = data.get("balloons")
    if not isinstance(records, list):
        records = []
    return {
        "page_id": str(data.get("page_id", "")),
        "balloons": balloons_from_records(records),
        "layouts": [layout_from_record(rec.get("layout")) for rec in records],
    }
