"""
Sentinel-Vision — Fire & Smoke Detector
========================================
Full-frame colour ratios corroborated by single-frame motion cues.

  fire  = (fire_ratio  > 0.002 and flickering)      or fire_ratio  > 0.005
  smoke = (smoke_ratio > 0.01  and upward movement) or smoke_ratio > 0.03

A high colour ratio is enough on its own. A moderate ratio needs the
motion cue, which keeps static orange or gray backgrounds from firing.
"""

from __future__ import annotations

import logging

import numpy as np

from sentinel_types import FireSmokeAnalysis, Frame, MotionAnalysis
from .motion_analyzer import analyze_motion_patterns
from .pixel_classifiers import fire_color_mask, smoke_color_mask

_log = logging.getLogger("FireSmokeDetector")

FIRE_RATIO_WITH_FLICKER = 0.002
FIRE_RATIO_ALONE = 0.005
SMOKE_RATIO_WITH_UPWARD = 0.01
SMOKE_RATIO_ALONE = 0.03

_NOTHING = FireSmokeAnalysis(fire_detected=False, smoke_detected=False)


def decide_fire_smoke(
    fire_ratio: float,
    smoke_ratio: float,
    motion: MotionAnalysis,
) -> tuple[bool, bool]:
    """(fire_detected, smoke_detected) from colour ratios + motion cues."""
    fire_detected = (
        (fire_ratio > FIRE_RATIO_WITH_FLICKER and motion.has_flickering)
        or fire_ratio > FIRE_RATIO_ALONE
    )
    smoke_detected = (
        (smoke_ratio > SMOKE_RATIO_WITH_UPWARD and motion.has_upward_movement)
        or smoke_ratio > SMOKE_RATIO_ALONE
    )
    return fire_detected, smoke_detected


def detect_fire_and_smoke(frame: Frame) -> FireSmokeAnalysis:
    """Classify every pixel of the frame and decide fire / smoke presence.

    Never raises; on failure both flags are False.
    """
    try:
        total_pixels = frame.width * frame.height
        if total_pixels == 0:
            return _NOTHING

        rgb = frame.rgb
        fire_ratio = int(np.count_nonzero(fire_color_mask(rgb))) / total_pixels
        smoke_ratio = int(np.count_nonzero(smoke_color_mask(rgb))) / total_pixels

        motion = analyze_motion_patterns(frame)
        fire_detected, smoke_detected = decide_fire_smoke(fire_ratio, smoke_ratio, motion)

        if fire_detected or smoke_detected:
            _log.info(
                "Hazard colours: fire=%.4f smoke=%.4f flicker=%s upward=%s",
                fire_ratio, smoke_ratio,
                motion.has_flickering, motion.has_upward_movement,
            )

        return FireSmokeAnalysis(
            fire_detected=fire_detected,
            smoke_detected=smoke_detected,
            fire_ratio=fire_ratio,
            smoke_ratio=smoke_ratio,
            motion=motion,
        )
    except Exception as e:
        _log.error("Fire/smoke detection error: %s", e)
        return _NOTHING
