from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path


@lru_cache(maxsize=1)
def get_repo_root() -> Path:
    """Directory holding ``pyproject.toml`` and ``backend/``.

    Searched upward from this file; a source checkout without the marker
    falls back to three levels above ``backend/balloonfuse/core``.
    """
    here = Path(__file__).resolve()
    for candidate in here.parents:
        if (candidate / "pyproject.toml").is_file() and (candidate / "backend").is_dir():
            return candidate
    parents = here.parents
    return parents[3] if len(parents) > 3 else here.parent


def _root_from_env(variable: str, default_name: str) -> Path:
    override = os.getenv(variable)
    return Path(override) if override else get_repo_root() / default_name


@lru_cache(maxsize=1)
def get_artifacts_root() -> Path:
    return _root_from_env("ARTIFACTS_ROOT", "artifacts")


@lru_cache(maxsize=1)
def get_assets_root() -> Path:
    return _root_from_env("ASSETS_ROOT", "assets")


def get_default_detector_model() -> Path:
    return get_assets_root() / "models" / "comic-speech-bubble-detector.pt"


def get_default_font() -> Path:
    return get_assets_root() / "fonts" / "animeace2_reg.ttf"


def get_page_dir(page_id: str) -> Path:
    return get_artifacts_root() / "pages" / page_id
