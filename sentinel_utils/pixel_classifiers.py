"""
Sentinel-Vision — Pixel Classifiers
====================================
Hand-tuned colour rules over a single (r, g, b) triple in [0, 255].

Every rule exists twice:
  - a scalar predicate (is_skin_tone, ...) for single pixels
  - a vectorised mask (skin_tone_mask, ...) over an (..., 3) array

Both forms must agree element-wise. The thresholds are fixed contracts;
downstream alert behaviour depends on them exactly.
"""

from __future__ import annotations

import numpy as np


# ═══════════════════════════════════════════════════════════════
# Scalar predicates
# ═══════════════════════════════════════════════════════════════

def is_skin_tone(r: int, g: int, b: int) -> bool:
    """Rough skin-colour rule (RGB explicit-boundary model)."""
    return (
        r > 95 and g > 40 and b > 20
        and max(r, g, b) - min(r, g, b) > 15
        and abs(r - g) > 15 and r > g and r > b
    )


def is_fabric_like(r: int, g: int, b: int) -> bool:
    """Typical mask colours: blue, white, gray or black."""
    is_blue = b > r and b > g and b > 100
    is_white = r > 200 and g > 200 and b > 200
    is_gray = abs(r - g) < 20 and abs(g - b) < 20 and abs(r - b) < 20
    is_black = r < 50 and g < 50 and b < 50
    return is_blue or is_white or is_gray or is_black


def is_fire_color(r: int, g: int, b: int) -> bool:
    """Bright orange / red / yellow flame colours."""
    is_orange = r > 200 and 100 < g < 200 and b < 100
    is_red = r > 180 and g < 100 and b < 100
    is_yellow = r > 200 and g > 200 and b < 150
    is_bright_yellow = r > 220 and g > 220 and b < 100
    is_intense = (r + g) > 350 and b < 150 and r > g
    return is_orange or is_red or is_yellow or is_bright_yellow or is_intense


def is_smoke_color(r: int, g: int, b: int) -> bool:
    """Low-saturation grays, from dark smoke to whitish haze."""
    avg = (r + g + b) / 3
    variation = max(abs(r - avg), abs(g - avg), abs(b - avg))

    is_grayish = 80 < avg < 200 and variation < 30
    is_light_smoke = r > 150 and g > 150 and b > 150 and variation < 25
    is_dark_smoke = 60 < avg < 140 and variation < 20
    return is_grayish or is_light_smoke or is_dark_smoke


# ═══════════════════════════════════════════════════════════════
# Vectorised masks
# ═══════════════════════════════════════════════════════════════

def _split_channels(pixels: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Split (..., C>=3) uint8 pixels into widened int32 R, G, B planes.

    uint8 arithmetic wraps around; sums and differences need headroom.
    """
    px = np.asarray(pixels)
    r = px[..., 0].astype(np.int32)
    g = px[..., 1].astype(np.int32)
    b = px[..., 2].astype(np.int32)
    return r, g, b


def skin_tone_mask(pixels: np.ndarray) -> np.ndarray:
    r, g, b = _split_channels(pixels)
    spread = np.maximum(np.maximum(r, g), b) - np.minimum(np.minimum(r, g), b)
    return (
        (r > 95) & (g > 40) & (b > 20)
        & (spread > 15)
        & (np.abs(r - g) > 15) & (r > g) & (r > b)
    )


def fabric_like_mask(pixels: np.ndarray) -> np.ndarray:
    r, g, b = _split_channels(pixels)
    is_blue = (b > r) & (b > g) & (b > 100)
    is_white = (r > 200) & (g > 200) & (b > 200)
    is_gray = (np.abs(r - g) < 20) & (np.abs(g - b) < 20) & (np.abs(r - b) < 20)
    is_black = (r < 50) & (g < 50) & (b < 50)
    return is_blue | is_white | is_gray | is_black


def fire_color_mask(pixels: np.ndarray) -> np.ndarray:
    r, g, b = _split_channels(pixels)
    is_orange = (r > 200) & (g > 100) & (g < 200) & (b < 100)
    is_red = (r > 180) & (g < 100) & (b < 100)
    is_yellow = (r > 200) & (g > 200) & (b < 150)
    is_bright_yellow = (r > 220) & (g > 220) & (b < 100)
    is_intense = ((r + g) > 350) & (b < 150) & (r > g)
    return is_orange | is_red | is_yellow | is_bright_yellow | is_intense


def smoke_color_mask(pixels: np.ndarray) -> np.ndarray:
    r, g, b = _split_channels(pixels)
    avg = (r + g + b) / 3
    variation = np.maximum(
        np.maximum(np.abs(r - avg), np.abs(g - avg)), np.abs(b - avg)
    )
    is_grayish = (avg > 80) & (avg < 200) & (variation < 30)
    is_light_smoke = (r > 150) & (g > 150) & (b > 150) & (variation < 25)
    is_dark_smoke = (avg > 60) & (avg < 140) & (variation < 20)
    return is_grayish | is_light_smoke | is_dark_smoke
