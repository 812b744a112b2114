from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices
from dotenv import load_dotenv


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Uses a local .env file in development for convenience. Every numeric
    threshold of the pipeline lives here so it can be recalibrated without a
    code change.
    """

    app_env: Literal["development", "production"] = "development"
    log_level: Literal["debug", "info", "warning", "error", "critical"] = "info"

    # Remote semantic source (Gemini)
    google_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_API_KEY", "GEMINI_API_KEY"),
        description="API key for the Gemini vision model",
    )
    gemini_model: str = "gemini-2.5-flash"
    target_language: str = "Italian"
    semantic_max_dimension: int = Field(default=1560, description="Long edge (px) of the image sent upstream")
    semantic_jpeg_quality: int = Field(default=85, ge=1, le=100)
    semantic_max_attempts: int = Field(default=3, ge=1)
    semantic_backoff_seconds: float = 2.0
    semantic_retry_status_codes: list[int] = Field(
        default=[500, 502, 503, 504],
        description="HTTP status codes treated as transient overload signals",
    )

    # Local detector (YOLO)
    detector_model_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DETECTOR_MODEL_PATH", "SEG_MODEL_PATH"),
        description="Path to the YOLO balloon detector weights; defaults to assets/models",
    )
    detector_labels: list[str] = ["text_bubble"]
    detector_confidence: float = 0.35
    detector_imgsz: int = 640
    detector_device: Optional[str] = None

    # Fusion
    fusion_iou_threshold: float = 0.10
    fusion_distance_threshold: float = 0.30

    # Shape refinement (grabCut)
    refine_iterations: int = 3
    refine_epsilon_px: float = 2.0
    refine_crop_margin: float = 0.5
    refine_sample_background: bool = False

    # Flood-fill segmenter
    floodfill_work_width: Optional[int] = 500
    floodfill_dark_brightness: int = 150
    floodfill_vivid_saturation: int = 60
    floodfill_border_brightness: int = 60
    floodfill_global_tolerance: int = 40
    floodfill_local_tolerance: int = 40
    floodfill_min_region_pixels: int = 50
    floodfill_merge_overlap: float = 0.9

    # Text layout
    font_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("FONT_PATH"),
        description="TTF used for layout metrics; defaults to assets/fonts",
    )
    layout_min_font_size: int = 10
    layout_max_font_size: int = 42

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    @property
    def effective_detector_model_path(self) -> Path:
        if self.detector_model_path:
            return Path(self.detector_model_path)
        from balloonfuse.core.paths import get_default_detector_model

        return get_default_detector_model()

    @property
    def effective_font_path(self) -> Path:
        if self.font_path:
            return Path(self.font_path)
        from balloonfuse.core.paths import get_default_font

        return get_default_font()

    def floodfill_params(self):
        """Build the flood-fill thresholds from the configured values."""
        from balloonfuse.pipeline.floodfill import FloodFillParams

        return FloodFillParams(
            work_width=self.floodfill_work_width,
            dark_brightness=self.floodfill_dark_brightness,
            vivid_saturation=self.floodfill_vivid_saturation,
            border_brightness=self.floodfill_border_brightness,
            global_tolerance=self.floodfill_global_tolerance,
            local_tolerance=self.floodfill_local_tolerance,
            min_region_pixels=self.floodfill_min_region_pixels,
            merge_overlap=self.floodfill_merge_overlap,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings to avoid re-parsing .env on each import."""
    # 1) Load backend/.env if present (works when running from repo root)
    backend_dir = Path(__file__).resolve().parents[2]
    backend_env_path = backend_dir / ".env"
    if backend_env_path.exists():
        load_dotenv(backend_env_path, override=False)

    # 2) Load nearest .env discovered from CWD upward without overriding existing vars
    load_dotenv(override=False)

    return Settings()
