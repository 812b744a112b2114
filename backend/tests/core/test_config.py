"""Settings loading and derived values."""

from pathlib import Path

import pytest

from balloonfuse.core.config import Settings
from balloonfuse.pipeline.floodfill import FloodFillParams


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("GOOGLE_API_KEY", "GEMINI_API_KEY", "DETECTOR_MODEL_PATH", "SEG_MODEL_PATH", "FONT_PATH"):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)

        assert settings.google_api_key is None
        assert settings.detector_confidence == 0.35
        assert settings.fusion_iou_threshold == 0.10
        assert settings.fusion_distance_threshold == 0.30
        assert settings.semantic_retry_status_codes == [500, 502, 503, 504]
        assert settings.layout_min_font_size == 10
        assert settings.layout_max_font_size == 42

    def test_gemini_key_alias(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("GEMINI_API_KEY", "secret")
        assert Settings(_env_file=None).google_api_key == "secret"

    def test_env_overrides_thresholds(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DETECTOR_CONFIDENCE", "0.5")
        monkeypatch.setenv("FLOODFILL_BORDER_BRIGHTNESS", "70")

        settings = Settings(_env_file=None)

        assert settings.detector_confidence == 0.5
        assert settings.floodfill_border_brightness == 70

    def test_floodfill_params_mapping(self) -> None:
        settings = Settings(_env_file=None, floodfill_work_width=None, floodfill_global_tolerance=55)
        params = settings.floodfill_params()

        assert isinstance(params, FloodFillParams)
        assert params.work_width is None
        assert params.global_tolerance == 55
        assert params.local_tolerance == 40
        assert params.min_region_pixels == 50

    def test_effective_paths(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("DETECTOR_MODEL_PATH", str(tmp_path / "det.pt"))
        settings = Settings(_env_file=None)

        assert settings.effective_detector_model_path == tmp_path / "det.pt"
        assert settings.effective_font_path.name == "animeace2_reg.ttf"
