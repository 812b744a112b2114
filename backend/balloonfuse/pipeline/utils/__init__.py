"""Shared utilities for the balloon pipeline.

Subpackages:
- geometry: polygon helpers
Modules:
- io: image/file IO helpers
- textio: read/write of balloons.json and cached layouts
- visualization: debug overlays
"""

__all__ = [
    "io",
    "textio",
    "visualization",
]
