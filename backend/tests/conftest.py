from typing import Tuple

import cv2
import numpy as np
import pytest

from balloonfuse.core.config import Settings


def make_balloon_page(
    size: Tuple[int, int] = (200, 200),
    center: Tuple[int, int] = (100, 100),
    radius: int = 62,
    ring: int = 4,
    paper: int = 255,
) -> np.ndarray:
    """White page with one circular balloon outlined by a black ring (BGR)."""
    h, w = size
    image = np.full((h, w, 3), paper, dtype=np.uint8)
    cv2.circle(image, center, radius, (0, 0, 0), thickness=ring)
    return image


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def balloon_page() -> np.ndarray:
    return make_balloon_page()
