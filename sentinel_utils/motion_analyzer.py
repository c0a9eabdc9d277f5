"""
Sentinel-Vision — Motion Pattern Analyzer
==========================================
Approximates flame flicker and rising smoke from ONE frame.

No temporal history is kept. "Motion" here is read from local
intensity gradients:
  - flicker proxy: a pixel differs from the mean of its 4 neighbours
    by more than 40 intensity levels
  - upward proxy: a pixel is more than 20 levels brighter than the
    pixel directly below it

Counts cover interior pixels only (1-pixel border skipped) but the
ratios divide by the full width x height.

Cost is O(width x height). The engine only calls this on throttled
detection ticks.
"""

from __future__ import annotations

import logging

import numpy as np

from sentinel_types import Frame, MotionAnalysis

_log = logging.getLogger("MotionAnalyzer")

FLICKER_INTENSITY_DELTA = 40
UPWARD_GRADIENT_DELTA = 20
FLICKER_RATIO_THRESHOLD = 0.01
UPWARD_RATIO_THRESHOLD = 0.008


def _intensity(frame: Frame) -> np.ndarray:
    """Per-pixel mean of the RGB channels as float64."""
    rgb = frame.rgb
    r = rgb[:, :, 0].astype(np.float64)
    g = rgb[:, :, 1].astype(np.float64)
    b = rgb[:, :, 2].astype(np.float64)
    return (r + g + b) / 3


def analyze_motion_patterns(frame: Frame) -> MotionAnalysis:
    """Single-frame flicker / upward-gradient statistics."""
    total_pixels = frame.width * frame.height
    if total_pixels == 0:
        return MotionAnalysis(has_flickering=False, has_upward_movement=False)

    intensity_changes = 0
    vertical_gradients = 0

    if frame.height >= 3 and frame.width >= 3:
        intensity = _intensity(frame)
        current = intensity[1:-1, 1:-1]
        above = intensity[:-2, 1:-1]
        below = intensity[2:, 1:-1]
        left = intensity[1:-1, :-2]
        right = intensity[1:-1, 2:]

        avg_neighbor = (above + below + left + right) / 4
        intensity_changes = int(np.count_nonzero(
            np.abs(current - avg_neighbor) > FLICKER_INTENSITY_DELTA))
        vertical_gradients = int(np.count_nonzero(
            (current - below) > UPWARD_GRADIENT_DELTA))

    flickering_ratio = intensity_changes / total_pixels
    upward_motion_ratio = vertical_gradients / total_pixels

    _log.debug(
        "Motion: flicker=%.4f upward=%.4f (%d px)",
        flickering_ratio, upward_motion_ratio, total_pixels,
    )

    return MotionAnalysis(
        has_flickering=flickering_ratio > FLICKER_RATIO_THRESHOLD,
        has_upward_movement=upward_motion_ratio > UPWARD_RATIO_THRESHOLD,
        flickering_ratio=flickering_ratio,
        upward_motion_ratio=upward_motion_ratio,
    )
