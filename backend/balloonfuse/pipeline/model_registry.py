from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class ModelRegistry:
    """Container for long-lived model instances used by the pipeline.

    Attributes:
        yolo_model: Preloaded ultralytics YOLO balloon detection model.
    """

    yolo_model: Any | None = None

    @staticmethod
    def load(*, detector_model_path: Path) -> "ModelRegistry":
        """Load the heavy models once and return a registry instance.

        Intended to be called at process startup. A model that fails to load is
        left as ``None`` so the detector can report ``ModelUnavailable`` on use.
        """
        try:
            from ultralytics import YOLO  # type: ignore

            yolo_model = YOLO(str(detector_model_path))
        except Exception as exc:  # noqa: BLE001
            # Allow the caller to decide how to handle missing models
            logger.warning("detector_preload_failed", extra={"path": str(detector_model_path), "error": str(exc)})
            yolo_model = None

        return ModelRegistry(yolo_model=yolo_model)
