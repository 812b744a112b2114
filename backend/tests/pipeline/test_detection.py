"""YOLO detector adapter: filtering, axis flip and error mapping."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import numpy as np
import pytest

from balloonfuse.pipeline.detection.yolo import (
    RawDetection,
    YoloBalloonDetector,
    filter_detections,
    to_top_left,
)
from balloonfuse.pipeline.errors import DetectionFailed, ModelUnavailable


class _Tensor:
    """Stand-in for a torch tensor exposing ``.cpu().numpy()``."""

    def __init__(self, values) -> None:
        self._values = np.asarray(values, dtype=float)

    def cpu(self) -> "_Tensor":
        return self

    def numpy(self) -> np.ndarray:
        return self._values


def _yolo_result(boxes, confs, classes, names=None) -> MagicMock:
    result = MagicMock()
    result.boxes.xyxyn = _Tensor(boxes)
    result.boxes.conf = _Tensor(confs)
    result.boxes.cls = _Tensor(classes)
    result.names = names or {0: "text_bubble", 1: "text_free"}
    return result


class TestAxisFlip:
    def test_bottom_left_box_is_flipped(self) -> None:
        x0, y0, x1, y1 = to_top_left((0.1, 0.7, 0.3, 0.9), "bottom-left")
        assert (x0, x1) == (0.1, 0.3)
        assert y0 == pytest.approx(0.1)
        assert y1 == pytest.approx(0.3)

    def test_top_left_box_is_unchanged(self) -> None:
        assert to_top_left((0.1, 0.7, 0.3, 0.9), "top-left") == (0.1, 0.7, 0.3, 0.9)

    def test_filter_flips_bottom_left_detections(self) -> None:
        raw = [RawDetection(box=(0.2, 0.0, 0.4, 0.25), confidence=0.8, label="text_bubble")]
        regions = filter_detections(raw, labels=["text_bubble"], origin="bottom-left")

        assert len(regions) == 1
        rect = regions[0].rect
        assert rect.y0 == pytest.approx(0.75)
        assert rect.y1 == pytest.approx(1.0)
        assert rect.x0 == pytest.approx(0.2)


class TestFilterDetections:
    def test_threshold_rejects_below_and_keeps_equal(self) -> None:
        raw = [
            RawDetection((0.1, 0.1, 0.2, 0.2), 0.34, "text_bubble"),
            RawDetection((0.3, 0.3, 0.4, 0.4), 0.35, "text_bubble"),
            RawDetection((0.5, 0.5, 0.6, 0.6), 0.9, "text_bubble"),
        ]
        regions = filter_detections(raw, labels=["text_bubble"], confidence_threshold=0.35)
        assert [r.confidence for r in regions] == [0.35, 0.9]

    def test_other_labels_are_ignored(self) -> None:
        raw = [
            RawDetection((0.1, 0.1, 0.2, 0.2), 0.9, "text_free"),
            RawDetection((0.3, 0.3, 0.4, 0.4), 0.9, "panel"),
        ]
        assert filter_detections(raw, labels=["text_bubble"]) == []
        assert len(filter_detections(raw, labels=["text_bubble", "text_free"])) == 1

    def test_boxes_are_clamped_and_degenerate_boxes_dropped(self) -> None:
        raw = [
            RawDetection((-0.1, 0.9, 0.2, 1.2), 0.9, "text_bubble"),
            RawDetection((0.5, 0.5, 0.5, 0.7), 0.9, "text_bubble"),
        ]
        regions = filter_detections(raw, labels=["text_bubble"])

        assert len(regions) == 1
        rect = regions[0].rect
        assert (rect.x0, rect.y0, rect.x1, rect.y1) == (0.0, 0.9, 0.2, 1.0)


class TestYoloBalloonDetector:
    def setup_method(self) -> None:
        self.model = MagicMock()
        self.detector = YoloBalloonDetector(
            Path("unused.pt"),
            labels=["text_bubble"],
            confidence_threshold=0.35,
            yolo_model=self.model,
        )
        self.image = np.full((64, 48, 3), 255, dtype=np.uint8)

    def test_detect_parses_model_output(self) -> None:
        self.model.predict.return_value = [
            _yolo_result(
                boxes=[[0.1, 0.2, 0.3, 0.4], [0.5, 0.5, 0.9, 0.9], [0.0, 0.0, 0.1, 0.1]],
                confs=[0.9, 0.2, 0.8],
                classes=[0, 0, 1],
            )
        ]

        regions = asyncio.run(self.detector.detect(self.image))

        assert len(regions) == 1
        rect = regions[0].rect
        assert (rect.x0, rect.y0, rect.x1, rect.y1) == pytest.approx((0.1, 0.2, 0.3, 0.4))
        assert regions[0].confidence == pytest.approx(0.9)
        kwargs = self.model.predict.call_args.kwargs
        assert kwargs["source"] is self.image
        assert kwargs["imgsz"] == 640

    def test_empty_prediction_returns_no_regions(self) -> None:
        self.model.predict.return_value = []
        assert self.detector.detect_sync(self.image) == []

    def test_prediction_error_is_wrapped(self) -> None:
        cause = RuntimeError("CUDA out of memory")
        self.model.predict.side_effect = cause

        with pytest.raises(DetectionFailed) as excinfo:
            self.detector.detect_sync(self.image)
        assert excinfo.value.cause is cause

    def test_grayscale_input_is_rejected(self) -> None:
        with pytest.raises(DetectionFailed):
            self.detector.detect_sync(np.zeros((10, 10), dtype=np.uint8))

    def test_missing_weights_raise_model_unavailable(self, tmp_path: Path) -> None:
        detector = YoloBalloonDetector(tmp_path / "missing.pt")
        with pytest.raises(ModelUnavailable):
            detector.detect_sync(self.image)
