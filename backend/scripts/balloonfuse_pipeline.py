# ruff: noqa: E402

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv

# --- Path Setup ---
_BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(_BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(_BACKEND_DIR))

from balloonfuse.core.config import Settings, get_settings
from balloonfuse.core.logging import configure_logging
from balloonfuse.core.paths import get_page_dir
from balloonfuse.pipeline.errors import BalloonPipelineError, RemoteServiceError
from balloonfuse.pipeline.floodfill import FloodFillSegmenter, semantic_anchors
from balloonfuse.pipeline.model import NormalizedRect
from balloonfuse.pipeline.model_registry import ModelRegistry
from balloonfuse.pipeline.orchestrator import (
    BalloonPipeline,
    PageResultStore,
    SemanticSource,
    build_pipeline,
    build_semantic_source,
)
from balloonfuse.pipeline.typeset.model import TextLayout
from balloonfuse.pipeline.typeset.shapes import layout_balloon
from balloonfuse.pipeline.utils.io import ensure_dir, read_image_bgr, save_png
from balloonfuse.pipeline.utils.textio import save_balloons_json
from balloonfuse.pipeline.utils.visualization import make_overlay

# Usage:
#
#   Fusion pipeline (detector + Gemini + grabCut), with layouts and a debug overlay:
#     GOOGLE_API_KEY=... python ./backend/scripts/balloonfuse_pipeline.py \
#       --input ./samples --out-dir ./test_output --layout --debug
#
#   Model-free flood fill around known text rectangles:
#     python ./backend/scripts/balloonfuse_pipeline.py \
#       --input ./samples/page.png --out-dir ./test_output \
#       --text-regions ./samples/page_text.json


IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".webp")


@dataclass
class ScriptConfig:
    """Per-image settings resolved from the command line."""

    image_path: Path
    out_dir: Path
    page_id: str
    layout: bool
    debug: bool
    settings: Settings


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="BalloonFuse pipeline runner",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--input", type=str, required=True, help="Path to input image or a folder of images")
    parser.add_argument(
        "--out-dir", type=str, default=None, help="Directory to write artifacts (defaults to ARTIFACTS_ROOT/pages)"
    )
    parser.add_argument("--model", type=str, default=None, help="Path to YOLOv8 balloon detector weights (.pt)")
    parser.add_argument("--font", type=str, default=None, help="Path to TTF font used for layout metrics")
    parser.add_argument("--page-id", type=str, default=None, help="Page identifier (single image only)")
    parser.add_argument("--layout", action="store_true", help="Also compute text layouts for every balloon")
    parser.add_argument("--debug", action="store_true", help="Save a debug overlay PNG")
    parser.add_argument(
        "--text-regions",
        type=str,
        default=None,
        help="JSON file of normalized [x0, y0, x1, y1] text rects; runs the flood-fill segmenter instead",
    )
    parser.add_argument(
        "--semantic-anchors",
        action="store_true",
        help="With --text-regions: also seed the fill from Gemini balloon center points",
    )
    return parser.parse_args()


def _load_text_regions(path: Path) -> Tuple[List[NormalizedRect], List[Tuple[float, float]]]:
    with open(path, "r", encoding="utf-8") as f:
        data: Any = json.load(f)
    if isinstance(data, dict):
        rects = data.get("text_regions", [])
        seeds = data.get("seed_points", [])
    else:
        rects, seeds = data, []
    regions = [NormalizedRect.clamped(*(float(v) for v in r)) for r in rects]
    points = [(float(x), float(y)) for x, y in seeds]
    return regions, points


def run_floodfill(
    config: ScriptConfig,
    text_regions_path: Path,
    semantic_source: Optional[SemanticSource] = None,
) -> None:
    image_bgr = read_image_bgr(config.image_path)
    regions, seeds = _load_text_regions(text_regions_path)
    if semantic_source is not None:
        try:
            anchors = semantic_anchors(asyncio.run(semantic_source.fetch(image_bgr)))
        except RemoteServiceError as exc:
            print(f"  semantic anchors unavailable ({type(exc).__name__}: {exc}); using text regions only")
        else:
            print(f"  {len(anchors)} semantic anchor(s)")
            seeds += anchors
    segmenter = FloodFillSegmenter(config.settings.floodfill_params())
    found = segmenter.segment(image_bgr, regions, seeds)

    records: List[Dict[str, Any]] = [
        {
            "id": idx,
            "bounding_box": [r.bounding_box.x0, r.bounding_box.y0, r.bounding_box.x1, r.bounding_box.y1],
            "pixel_count": r.pixel_count,
            "outline": [[x, y] for x, y in r.outline()],
        }
        for idx, r in enumerate(found, start=1)
    ]
    out_path = config.out_dir / "regions.json"
    with open(out_path, "w", encoding="utf-8") as f:
        json.dump({"page_id": config.page_id, "regions": records}, f, ensure_ascii=False, indent=2)
    print(f"Found {len(found)} region(s). Saved to: {out_path}")


def process_image(config: ScriptConfig, pipeline: BalloonPipeline, store: PageResultStore) -> bool:
    """Runs the fusion pipeline on one image and writes balloons.json (and overlays)."""
    print(f"Fusing balloons for '{config.image_path.name}' -> '{config.out_dir}'")

    try:
        image_bgr = read_image_bgr(config.image_path)
        result = asyncio.run(pipeline.process_and_commit(store, image_bgr, page_id=config.page_id))
    except (BalloonPipelineError, OSError) as exc:
        print(f"  FAILED: {type(exc).__name__}: {exc}")
        return False
    if result is None:
        print(f"  superseded: a newer run for page '{config.page_id}' owns the result")
        return False
    print(f"  detections={result.num_detections} balloons={len(result.balloons)} ({result.elapsed_ms} ms)")

    layouts: Optional[List[Optional[TextLayout]]] = None
    if config.layout:
        h, w = image_bgr.shape[:2]
        font_cache: Dict[int, Any] = {}
        layouts = [
            layout_balloon(
                balloon,
                w,
                h,
                font_path=config.settings.effective_font_path,
                min_size=config.settings.layout_min_font_size,
                max_size=config.settings.layout_max_font_size,
                font_cache=font_cache,
            )
            for balloon in result.balloons
        ]
        print(f"  layouts fitted: {sum(1 for layout in layouts if layout is not None)}/{len(layouts)}")

    json_path = config.out_dir / "balloons.json"
    save_balloons_json(json_path, result.page_id, result.balloons, layouts)
    print(f"  wrote {json_path}")

    if config.debug:
        overlay_path = config.out_dir / "balloons_overlay.png"
        save_png(overlay_path, make_overlay(image_bgr, result.balloons, layouts))
        print(f"  wrote {overlay_path}")
    return True


def collect_images(input_path: Path) -> List[Path]:
    if not input_path.exists():
        raise FileNotFoundError(f"Input path not found: {input_path}")
    if input_path.is_file():
        return [input_path]
    return sorted(p for p in input_path.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)


def main() -> None:
    """Parse arguments, preload the detector once and process every image."""
    started = time.perf_counter()
    args = parse_args()

    load_dotenv(override=False)
    settings = get_settings()
    overrides: Dict[str, Any] = {}
    if args.model:
        overrides["detector_model_path"] = args.model
    if args.font:
        overrides["font_path"] = args.font
    if overrides:
        settings = settings.model_copy(update=overrides)
    configure_logging(settings.log_level)

    image_paths = collect_images(Path(args.input))
    if not image_paths:
        print(f"No images ({', '.join(IMAGE_SUFFIXES)}) under '{args.input}'.")
        return

    pipeline: Optional[BalloonPipeline] = None
    anchor_source: Optional[SemanticSource] = None
    store = PageResultStore()
    if args.text_regions is not None and args.semantic_anchors:
        anchor_source = build_semantic_source(settings)
    if args.text_regions is None:
        models = ModelRegistry.load(detector_model_path=settings.effective_detector_model_path)
        if models.yolo_model is None:
            print("Detector weights unavailable; balloons will use semantic boxes only.")
        pipeline = build_pipeline(settings, models=models)

    failures = 0
    for index, image_path in enumerate(image_paths, start=1):
        print(f"[{index}/{len(image_paths)}] {image_path.name}")
        page_started = time.perf_counter()

        out_dir = Path(args.out_dir) / image_path.stem if args.out_dir else get_page_dir(image_path.stem)
        ensure_dir(out_dir)
        config = ScriptConfig(
            image_path=image_path,
            out_dir=out_dir,
            page_id=args.page_id if (args.page_id and len(image_paths) == 1) else image_path.stem,
            layout=args.layout,
            debug=args.debug,
            settings=settings,
        )

        if pipeline is None:
            run_floodfill(config, Path(args.text_regions), anchor_source)
        elif not process_image(config, pipeline, store):
            failures += 1
        print(f"  done in {time.perf_counter() - page_started:.2f}s")

    elapsed = time.perf_counter() - started
    print(f"Processed {len(image_paths)} image(s), {failures} failed, in {elapsed:.2f}s.")


if __name__ == "__main__":
    main()
