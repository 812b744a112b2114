from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Set, Tuple

from balloonfuse.pipeline.model import (
    DetectedRegion,
    MatchKind,
    MergedBalloon,
    NormalizedRect,
    SemanticBalloon,
    center_distance,
)

logger = logging.getLogger(__name__)

IOU_THRESHOLD = 0.10
DISTANCE_THRESHOLD = 0.30


def _best_iou_match(
    rect: NormalizedRect,
    detections: Sequence[DetectedRegion],
    consumed: Set[int],
    threshold: float,
) -> Tuple[Optional[int], float]:
    best_idx: Optional[int] = None
    best_iou = 0.0
    for idx, det in enumerate(detections):
        if idx in consumed:
            continue
        score = rect.iou(det.rect)
        # Strict comparisons: ties keep the first detection seen.
        if score > threshold and score > best_iou:
            best_iou = score
            best_idx = idx
    return best_idx, best_iou


def _nearest_center(
    rect: NormalizedRect,
    detections: Sequence[DetectedRegion],
    consumed: Set[int],
) -> Tuple[Optional[int], float]:
    best_idx: Optional[int] = None
    best_dist = float("inf")
    for idx, det in enumerate(detections):
        if idx in consumed:
            continue
        dist = center_distance(rect, det.rect)
        if dist < best_dist:
            best_dist = dist
            best_idx = idx
    return best_idx, best_dist


def fuse(
    detections: Sequence[DetectedRegion],
    semantics: Sequence[SemanticBalloon],
    *,
    iou_threshold: float = IOU_THRESHOLD,
    distance_threshold: float = DISTANCE_THRESHOLD,
) -> List[MergedBalloon]:
    """
    Reconciles detector boxes with the semantic balloons in two greedy passes.

    Stage A links each translatable balloon to the unconsumed detection with the
    highest IoU above ``iou_threshold``. Stage B links the leftovers to the
    nearest unconsumed detection center closer than ``distance_threshold``.
    Balloons with no partner keep their own approximate box.

    Output holds Stage A balloons first, then Stage B balloons, each in input order.
    """
    consumed: Set[int] = set()
    merged: List[MergedBalloon] = []
    deferred: List[SemanticBalloon] = []

    for balloon in semantics:
        if not balloon.should_translate:
            continue
        rect = balloon.rect
        idx, score = _best_iou_match(rect, detections, consumed, iou_threshold)
        if idx is None:
            deferred.append(balloon)
            continue
        consumed.add(idx)
        merged.append(MergedBalloon(semantic=balloon, geometry=detections[idx].rect, match=MatchKind.IOU))
        logger.debug(
            "fusion_match",
            extra={"stage": "iou", "detection": idx, "score": round(score, 4), "text": balloon.original_text[:20]},
        )

    num_iou = len(merged)
    for balloon in deferred:
        rect = balloon.rect
        idx, dist = _nearest_center(rect, detections, consumed)
        if idx is not None and dist < distance_threshold:
            consumed.add(idx)
            merged.append(MergedBalloon(semantic=balloon, geometry=detections[idx].rect, match=MatchKind.DISTANCE))
            logger.debug(
                "fusion_match",
                extra={"stage": "distance", "detection": idx, "score": round(dist, 4), "text": balloon.original_text[:20]},
            )
        else:
            merged.append(MergedBalloon(semantic=balloon, geometry=rect, match=MatchKind.NONE))
            logger.debug("fusion_unmatched", extra={"text": balloon.original_text[:20]})

    num_distance = sum(1 for m in merged if m.match is MatchKind.DISTANCE)
    logger.info(
        "fusion_complete",
        extra={
            "num_detections": len(detections),
            "num_balloons": len(merged),
            "matched_iou": num_iou,
            "matched_distance": num_distance,
            "unmatched": len(merged) - num_iou - num_distance,
        },
    )
    return merged
