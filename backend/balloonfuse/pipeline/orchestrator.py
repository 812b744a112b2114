from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import numpy as np

from balloonfuse.core.config import Settings, get_settings
from balloonfuse.pipeline.errors import DetectionFailed, ModelUnavailable
from balloonfuse.pipeline.fusion import fuse
from balloonfuse.pipeline.model import DetectedRegion, MergedBalloon, RefinedBalloon, SemanticBalloon

logger = logging.getLogger(__name__)


class BalloonDetector(Protocol):
    async def detect(self, image_bgr: np.ndarray) -> List[DetectedRegion]:
        ...


class SemanticSource(Protocol):
    async def fetch(self, image_bgr: np.ndarray) -> List[SemanticBalloon]:
        ...


class BalloonRefiner(Protocol):
    def refine_balloon(self, image_bgr: np.ndarray, merged: MergedBalloon) -> RefinedBalloon:
        ...


@dataclass(frozen=True)
class PageResult:
    page_id: str
    balloons: Tuple[RefinedBalloon, ...]
    num_detections: int
    elapsed_ms: int


@dataclass(frozen=True)
class PageTicket:
    page_id: str
    version: int


class PageResultStore:
    """
    Holds the latest result per page and refuses stale ones.

    Every ``begin`` for a page supersedes earlier tickets for that page, so a
    result computed for an abandoned request can never overwrite a newer one
    or land on a different page.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._versions: Dict[str, int] = {}
        self._results: Dict[str, PageResult] = {}

    def begin(self, page_id: str) -> PageTicket:
        with self._lock:
            version = self._versions.get(page_id, 0) + 1
            self._versions[page_id] = version
            return PageTicket(page_id=page_id, version=version)

    def commit(self, ticket: PageTicket, result: PageResult) -> bool:
        with self._lock:
            current = self._versions.get(ticket.page_id)
            if current != ticket.version or result.page_id != ticket.page_id:
                logger.info(
                    "page_result_dropped",
                    extra={
                        "page_id": ticket.page_id,
                        "result_page_id": result.page_id,
                        "ticket_version": ticket.version,
                        "current_version": current,
                    },
                )
                return False
            self._results[ticket.page_id] = result
            return True

    def get(self, page_id: str) -> Optional[PageResult]:
        with self._lock:
            return self._results.get(page_id)


class BalloonPipeline:
    """
    Runs detection, semantic analysis, fusion and refinement for one page.

    Detection and the semantic call run concurrently. A failed detector
    degrades to semantic-only geometry; a failed semantic source fails the
    page. Each fused balloon is refined in its own worker thread.
    """

    def __init__(
        self,
        detector: BalloonDetector,
        semantic_source: SemanticSource,
        refiner: BalloonRefiner,
        *,
        settings: Optional[Settings] = None,
    ) -> None:
        self.detector = detector
        self.semantic_source = semantic_source
        self.refiner = refiner
        self.settings = settings or get_settings()

    async def _detect_or_degrade(self, image_bgr: np.ndarray, page_id: str) -> List[DetectedRegion]:
        try:
            return list(await self.detector.detect(image_bgr))
        except (ModelUnavailable, DetectionFailed) as exc:
            logger.warning(
                "detection_degraded",
                extra={"page_id": page_id, "error_type": type(exc).__name__, "error": str(exc)},
            )
            return []

    async def _refine_all(
        self,
        image_bgr: np.ndarray,
        merged: Sequence[MergedBalloon],
        page_id: str,
    ) -> List[RefinedBalloon]:
        tasks: Dict[asyncio.Task, int] = {
            asyncio.create_task(asyncio.to_thread(self.refiner.refine_balloon, image_bgr, balloon)): idx
            for idx, balloon in enumerate(merged)
        }
        results: Dict[int, RefinedBalloon] = {}
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    idx = tasks[task]
                    try:
                        results[idx] = task.result()
                    except Exception as exc:  # noqa: BLE001
                        # One balloon's failure must not abort its siblings.
                        logger.warning(
                            "refine_failed",
                            extra={"page_id": page_id, "balloon": idx, "error": str(exc)},
                        )
                        results[idx] = RefinedBalloon(merged=merged[idx])
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        return [results[idx] for idx in range(len(merged))]

    async def process_page(self, image_bgr: np.ndarray, *, page_id: str = "page") -> PageResult:
        t_start = time.perf_counter()

        detect_task = asyncio.create_task(self._detect_or_degrade(image_bgr, page_id))
        semantic_task = asyncio.create_task(self.semantic_source.fetch(image_bgr))
        try:
            detections, semantics = await asyncio.gather(detect_task, semantic_task)
        except BaseException:
            detect_task.cancel()
            semantic_task.cancel()
            raise
        t_sources = time.perf_counter()
        logger.info(
            "stage_timing",
            extra={
                "page_id": page_id,
                "stage": "sources",
                "ms": int((t_sources - t_start) * 1000),
                "num_detections": len(detections),
                "num_semantic": len(semantics),
            },
        )

        merged = fuse(
            detections,
            semantics,
            iou_threshold=self.settings.fusion_iou_threshold,
            distance_threshold=self.settings.fusion_distance_threshold,
        )

        refined = await self._refine_all(image_bgr, merged, page_id)
        t_end = time.perf_counter()
        logger.info(
            "stage_timing",
            extra={
                "page_id": page_id,
                "stage": "refine",
                "ms": int((t_end - t_sources) * 1000),
                "num_balloons": len(refined),
                "num_contours": sum(1 for b in refined if b.has_contour),
            },
        )

        return PageResult(
            page_id=page_id,
            balloons=tuple(refined),
            num_detections=len(detections),
            elapsed_ms=int((t_end - t_start) * 1000),
        )

    async def process_and_commit(
        self,
        store: PageResultStore,
        image_bgr: np.ndarray,
        *,
        page_id: str = "page",
    ) -> Optional[PageResult]:
        """Process a page and publish it to ``store``; None when a newer request superseded this one."""
        ticket = store.begin(page_id)
        result = await self.process_page(image_bgr, page_id=page_id)
        if not store.commit(ticket, result):
            return None
        return result


def build_semantic_source(settings: Optional[Settings] = None) -> SemanticSource:
    from balloonfuse.pipeline.semantic.gemini import GeminiSemanticSource

    settings = settings or get_settings()
    return GeminiSemanticSource(
        settings.google_api_key,
        model=settings.gemini_model,
        target_language=settings.target_language,
        max_dimension=settings.semantic_max_dimension,
        jpeg_quality=settings.semantic_jpeg_quality,
        max_attempts=settings.semantic_max_attempts,
        backoff_seconds=settings.semantic_backoff_seconds,
        retry_status_codes=settings.semantic_retry_status_codes,
    )


def build_pipeline(settings: Optional[Settings] = None, models: Any | None = None) -> BalloonPipeline:
    """Wire the default YOLO detector, Gemini source and grabCut refiner from settings."""
    from balloonfuse.pipeline.detection.yolo import YoloBalloonDetector
    from balloonfuse.pipeline.refine import ShapeRefiner

    settings = settings or get_settings()
    yolo_model = getattr(models, "yolo_model", None) if models else None

    detector = YoloBalloonDetector(
        settings.effective_detector_model_path,
        labels=settings.detector_labels,
        confidence_threshold=settings.detector_confidence,
        imgsz=settings.detector_imgsz,
        device=settings.detector_device,
        yolo_model=yolo_model,
    )
    semantic = build_semantic_source(settings)
    refiner = ShapeRefiner(
        iterations=settings.refine_iterations,
        epsilon_px=settings.refine_epsilon_px,
        crop_margin=settings.refine_crop_margin,
        sample_background=settings.refine_sample_background,
    )
    return BalloonPipeline(detector, semantic, refiner, settings=settings)
