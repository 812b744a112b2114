"""Image helpers."""

from pathlib import Path

import cv2
import numpy as np
import pytest

from balloonfuse.pipeline.model import BalloonShape, MatchKind, MergedBalloon, NormalizedRect, RefinedBalloon, SemanticBalloon
from balloonfuse.pipeline.utils.io import encode_jpeg, read_image_bgr, resize_long_edge, save_png
from balloonfuse.pipeline.utils.visualization import make_overlay


class TestResizeLongEdge:
    def test_downscales_long_edge(self) -> None:
        image = np.zeros((3000, 1500, 3), dtype=np.uint8)
        assert resize_long_edge(image, 1560).shape == (1560, 780, 3)

    def test_never_upscales(self) -> None:
        image = np.zeros((300, 200, 3), dtype=np.uint8)
        assert resize_long_edge(image, 1560) is image


class TestImageFiles:
    def test_jpeg_decodes(self) -> None:
        image = np.full((40, 60, 3), 128, dtype=np.uint8)
        decoded = cv2.imdecode(np.frombuffer(encode_jpeg(image), dtype=np.uint8), cv2.IMREAD_COLOR)
        assert decoded.shape == (40, 60, 3)

    def test_png_round_trip(self, tmp_path: Path) -> None:
        image = np.zeros((10, 20, 3), dtype=np.uint8)
        image[:, :10] = (255, 0, 0)
        path = tmp_path / "nested" / "page.png"

        save_png(path, image)

        assert np.array_equal(read_image_bgr(path), image)

    def test_missing_image_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            read_image_bgr(tmp_path / "nope.png")


class TestOverlay:
    def test_overlay_keeps_shape_and_marks_balloons(self) -> None:
        image = np.full((100, 100, 3), 255, dtype=np.uint8)
        semantic = SemanticBalloon("a", "b", True, BalloonShape.OVAL, (200, 200, 600, 600))
        merged = MergedBalloon(semantic=semantic, geometry=semantic.rect, match=MatchKind.IOU)
        balloon = RefinedBalloon(merged=merged, contour=((0.3, 0.3), (0.5, 0.3), (0.5, 0.5), (0.3, 0.5)))

        overlay = make_overlay(image, [balloon])

        assert overlay.shape == image.shape
        assert not np.array_equal(overlay, image)
        assert np.array_equal(image, np.full((100, 100, 3), 255, dtype=np.uint8))
