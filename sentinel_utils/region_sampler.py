"""
Sentinel-Vision — Region Sampler
=================================
Extracts a rectangular pixel region from a Frame for colour analysis.

The sampler never raises: a zero-area or out-of-frame rectangle yields
an empty (0, 3) array. Callers must read an empty result as
"undecidable", not as a negative answer.
"""

from __future__ import annotations

import logging
import math

import numpy as np

from sentinel_errors import SamplingError
from sentinel_types import FaceDetection, Frame

_log = logging.getLogger("RegionSampler")

_EMPTY = np.empty((0, 3), dtype=np.uint8)

# Nose/mouth region starts halfway down the face box
_LOWER_FACE_START = 0.5


def _extract_region(frame: Frame, x1: int, y1: int, x2: int, y2: int) -> np.ndarray:
    if x2 <= x1 or y2 <= y1:
        raise SamplingError(f"Degenerate region ({x1},{y1})-({x2},{y2})")

    cx1, cy1 = max(0, x1), max(0, y1)
    cx2, cy2 = min(frame.width, x2), min(frame.height, y2)
    if cx2 <= cx1 or cy2 <= cy1:
        raise SamplingError(
            f"Region ({x1},{y1})-({x2},{y2}) lies outside "
            f"{frame.width}x{frame.height} frame"
        )

    return frame.rgb[cy1:cy2, cx1:cx2].reshape(-1, 3)


def sample_region(frame: Frame, x1: int, y1: int, x2: int, y2: int) -> np.ndarray:
    """Return the RGB pixels inside [x1, x2) x [y1, y2), clipped to the frame.

    Returns:
        (N, 3) uint8 array, N == 0 when the region is degenerate.
    """
    try:
        return _extract_region(frame, int(x1), int(y1), int(x2), int(y2))
    except SamplingError as e:
        _log.debug("Region sampling skipped: %s", e)
        return _EMPTY


def lower_face_box(face: FaceDetection) -> tuple[int, int, int, int]:
    """(x1, y1, x2, y2) of the lower half of a face box."""
    x1 = int(math.floor(face.top_left[0]))
    y1 = int(math.floor(face.top_left[1]))
    face_width = int(face.width)
    face_height = int(face.height)

    lower_y = y1 + int(math.floor(face_height * _LOWER_FACE_START))
    return x1, lower_y, x1 + face_width, y1 + face_height
