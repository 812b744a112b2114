from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Literal, Optional, Sequence, Tuple

import numpy as np

from balloonfuse.pipeline.errors import DetectionFailed, ModelUnavailable
from balloonfuse.pipeline.model import DetectedRegion, NormalizedRect

logger = logging.getLogger(__name__)

Origin = Literal["top-left", "bottom-left"]


@dataclass(frozen=True)
class RawDetection:
    """One model output: normalized (x0, y0, x1, y1) in the backend's native origin."""

    box: Tuple[float, float, float, float]
    confidence: float
    label: str


def to_top_left(box: Tuple[float, float, float, float], origin: Origin) -> Tuple[float, float, float, float]:
    x0, y0, x1, y1 = box
    if origin == "bottom-left":
        # y grows upward: the box's visual top is 1 - its larger y.
        return x0, 1.0 - y1, x1, 1.0 - y0
    return x0, y0, x1, y1


def filter_detections(
    raw: Iterable[RawDetection],
    *,
    labels: Sequence[str],
    confidence_threshold: float = 0.35,
    origin: Origin = "top-left",
) -> List[DetectedRegion]:
    """
    Keeps balloon-class detections at or above the confidence threshold.

    Args:
        raw: Raw detections as reported by the model backend.
        labels: Accepted class names; everything else is ignored.
        confidence_threshold: Detections below this confidence are rejected.
        origin: Native vertical origin of ``raw`` boxes. Bottom-left boxes are
            flipped so every returned rect uses a top-left origin.

    Returns:
        Detected regions clamped to the unit square, in model output order.
    """
    accepted = set(labels)
    regions: List[DetectedRegion] = []
    for det in raw:
        if det.label not in accepted or det.confidence < confidence_threshold:
            continue
        rect = NormalizedRect.clamped(*to_top_left(det.box, origin))
        if rect.width <= 0 or rect.height <= 0:
            continue
        regions.append(DetectedRegion(rect=rect, confidence=float(det.confidence)))
    return regions


def _parse_yolo_results(result: Any) -> List[RawDetection]:
    """
    Parses the raw result object from a YOLOv8 detection.

    Args:
        result: The YOLOv8 result object for a single image.

    Returns:
        Raw detections with boxes normalized to the input image (top-left origin).
    """
    boxes = getattr(result, "boxes", None)
    if boxes is None or getattr(boxes, "xyxyn", None) is None:
        return []

    xyxyn = np.asarray(boxes.xyxyn.cpu().numpy(), dtype=float).reshape(-1, 4)
    confs = [float(c) for c in boxes.conf.cpu().numpy()]
    classes = [int(c) for c in boxes.cls.cpu().numpy()]
    names = getattr(result, "names", None) or {}

    n = min(len(xyxyn), len(confs), len(classes))
    return [
        RawDetection(
            box=(float(xyxyn[i][0]), float(xyxyn[i][1]), float(xyxyn[i][2]), float(xyxyn[i][3])),
            confidence=confs[i],
            label=str(names.get(classes[i], classes[i])),
        )
        for i in range(n)
    ]


class YoloBalloonDetector:
    """Balloon detector backed by an ultralytics YOLO detection model."""

    def __init__(
        self,
        model_path: Path,
        *,
        labels: Sequence[str] = ("text_bubble",),
        confidence_threshold: float = 0.35,
        imgsz: int = 640,
        device: Optional[str] = None,
        yolo_model: Optional[Any] = None,
    ) -> None:
        self.model_path = Path(model_path)
        self.labels = tuple(labels)
        self.confidence_threshold = confidence_threshold
        self.imgsz = imgsz
        self.device = device
        self._model = yolo_model
        self._lock = threading.Lock()

    def _load_model(self) -> Any:
        with self._lock:
            if self._model is not None:
                return self._model
            try:
                from ultralytics import YOLO  # type: ignore
            except ImportError as exc:
                raise ModelUnavailable(
                    "Ultralytics (YOLOv8) is required for balloon detection. Install with: pip install ultralytics"
                ) from exc

            if not self.model_path.is_file():
                raise ModelUnavailable(f"Detector model not found at '{self.model_path}'.")

            try:
                self._model = YOLO(str(self.model_path))
            except Exception as exc:
                raise ModelUnavailable(f"Failed to load detector model '{self.model_path}': {exc}") from exc
            logger.info("detector_loaded", extra={"path": str(self.model_path)})
            return self._model

    def detect_sync(self, image_bgr: np.ndarray) -> List[DetectedRegion]:
        if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
            raise DetectionFailed(ValueError("Input image must be a color image with shape HxWx3 (BGR)."))

        model = self._load_model()
        kwargs: dict = {"source": image_bgr, "imgsz": self.imgsz, "verbose": False}
        if self.device is not None:
            kwargs["device"] = self.device
        try:
            results = model.predict(**kwargs)
        except Exception as exc:
            raise DetectionFailed(exc) from exc
        if not results:
            return []

        raw = _parse_yolo_results(results[0])
        # Ultralytics reports top-left normalized boxes already.
        return filter_detections(
            raw,
            labels=self.labels,
            confidence_threshold=self.confidence_threshold,
            origin="top-left",
        )

    async def detect(self, image_bgr: np.ndarray) -> List[DetectedRegion]:
        return await asyncio.to_thread(self.detect_sync, image_bgr)
