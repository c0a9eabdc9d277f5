"""
Sentinel-Vision -- sentinel_utils package
==========================================
Pixel-level heuristics used by the analysis core.

Submodules:
  - sentinel_utils.pixel_classifiers
  - sentinel_utils.region_sampler
  - sentinel_utils.motion_analyzer
  - sentinel_utils.mask_detector
  - sentinel_utils.fire_smoke_detector
"""

from __future__ import annotations

from .pixel_classifiers import (
    is_skin_tone,
    is_fabric_like,
    is_fire_color,
    is_smoke_color,
    skin_tone_mask,
    fabric_like_mask,
    fire_color_mask,
    smoke_color_mask,
)
from .region_sampler import sample_region, lower_face_box
from .motion_analyzer import analyze_motion_patterns
from .mask_detector import analyze_mask, analyze_mask_pixels
from .fire_smoke_detector import detect_fire_and_smoke, decide_fire_smoke

__all__ = [
    "is_skin_tone", "is_fabric_like", "is_fire_color", "is_smoke_color",
    "skin_tone_mask", "fabric_like_mask", "fire_color_mask", "smoke_color_mask",
    "sample_region", "lower_face_box",
    "analyze_motion_patterns",
    "analyze_mask", "analyze_mask_pixels",
    "detect_fire_and_smoke", "decide_fire_smoke",
]
