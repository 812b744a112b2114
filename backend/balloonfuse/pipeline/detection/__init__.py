"""Local balloon detection.

Usage:
    detector = YoloBalloonDetector(model_path)
    regions = await detector.detect(image_bgr)
"""

from balloonfuse.pipeline.detection.yolo import (
    RawDetection,
    YoloBalloonDetector,
    filter_detections,
    to_top_left,
)

__all__ = ["RawDetection", "YoloBalloonDetector", "filter_detections", "to_top_left"]
