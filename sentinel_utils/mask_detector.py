"""
Sentinel-Vision — Face Mask Detector
=====================================
Decides whether a face is covered by a mask from the colour mix of the
lower half of its bounding box (nose / mouth region).

  skin_ratio   = skin-tone pixels / sampled pixels
  fabric_ratio = fabric-like pixels / sampled pixels

  has_mask   = fabric_ratio > 0.3 and skin_ratio < 0.4
  confidence = clamp(fabric_ratio * 2, 0.1, 0.95)

Landmarks are not needed. When a face carries at least 4 landmarks the
box is still taken from its corners, so both paths give the same answer.

The detector is fail-soft: an empty region or any sampling problem
returns has_mask=False, confidence=0.0.
"""

from __future__ import annotations

import logging

import numpy as np

from sentinel_types import FaceDetection, Frame, MaskAnalysis
from sentinel_utils_core import clamp
from .pixel_classifiers import fabric_like_mask, skin_tone_mask
from .region_sampler import lower_face_box, sample_region

_log = logging.getLogger("MaskDetector")

MASK_FABRIC_THRESHOLD = 0.3
MASK_SKIN_CEILING = 0.4
CONFIDENCE_FLOOR = 0.1
CONFIDENCE_CEILING = 0.95

_NO_DECISION = MaskAnalysis(has_mask=False, confidence=0.0)


def analyze_mask_pixels(pixels: np.ndarray) -> MaskAnalysis:
    """Mask decision over an (N, 3) array of lower-face pixels."""
    total = int(pixels.shape[0]) if pixels.ndim == 2 else 0
    if total == 0:
        return _NO_DECISION

    skin_ratio = int(np.count_nonzero(skin_tone_mask(pixels))) / total
    fabric_ratio = int(np.count_nonzero(fabric_like_mask(pixels))) / total

    has_mask = fabric_ratio > MASK_FABRIC_THRESHOLD and skin_ratio < MASK_SKIN_CEILING
    confidence = clamp(fabric_ratio * 2, CONFIDENCE_FLOOR, CONFIDENCE_CEILING)

    return MaskAnalysis(
        has_mask=has_mask,
        confidence=confidence,
        skin_ratio=skin_ratio,
        fabric_ratio=fabric_ratio,
    )


def analyze_mask(frame: Frame, face: FaceDetection) -> MaskAnalysis:
    """Run the mask heuristic for one face.

    Args:
        frame: Frame the face was detected in.
        face: Face with top-left / bottom-right corners in frame pixels.

    Returns:
        MaskAnalysis. Never raises.
    """
    try:
        x1, y1, x2, y2 = lower_face_box(face)
        pixels = sample_region(frame, x1, y1, x2, y2)
        return analyze_mask_pixels(pixels)
    except Exception as e:
        _log.warning("Mask analysis failed, treating as undecided: %s", e)
        return _NO_DECISION
