"""
Sentinel-Vision — Shared Utility Module
========================================
Configuration loading, console logging setup and small numeric helpers
used by every Sentinel-Vision module.

Configuration lives in config.yaml next to this file. Missing keys fall
back to DEFAULT_CONFIG, so a partial file (or no file) is valid.
"""

from __future__ import annotations

import copy
import logging
import math
import os
from typing import Optional

import yaml


# ===================================================================
# Configuration
# ===================================================================

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_config_path = os.path.join(_SCRIPT_DIR, 'config.yaml')

DEFAULT_CONFIG: dict = {
    "camera": {
        "id": 0,
        "width": 1280,
        "height": 720,
    },
    "engine": {
        "module": "classroom-behavior",
        "max_detection_rate_hz": 10.0,
        "target_fps": 30.0,
        "log_path": "logs/sentinel_audit.jsonl",
    },
    "models": {
        "max_retries": 3,
        "retry_backoff_s": 2.0,
        "runtime_timeout_s": 30.0,
        "model_load_timeout_s": 45.0,
        "providers": ["CUDAExecutionProvider", "CPUExecutionProvider"],
        "object_model_paths": [
            "models/ssd_mobilenet_v2_coco.onnx",
            "models/ssdlite_mobilenet_v2_coco.onnx",
            "models/ssd_mobilenet_v1_coco.onnx",
        ],
        "face_model_path": "models/blaze_face_short_range.tflite",
        "face_min_confidence": 0.5,
    },
}


def merge_config(base: dict, override: Optional[dict]) -> dict:
    """Deep-merge ``override`` onto a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Optional[str] = None) -> dict:
    """Load config.yaml merged over DEFAULT_CONFIG."""
    target = path or _config_path
    if not os.path.exists(target):
        _log.warning("Config file %s not found, using defaults", target)
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(target, 'r', encoding='utf-8') as f:
        return merge_config(DEFAULT_CONFIG, yaml.safe_load(f) or {})


def resolve_path(path: str) -> str:
    """Resolve a config-relative path against the project root."""
    if os.path.isabs(path):
        return path
    return os.path.join(_SCRIPT_DIR, path)


# ===================================================================
# Logging Setup
# ===================================================================

def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a configured logger for Sentinel-Vision modules."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '[%(asctime)s] %(name)-12s %(levelname)-7s %(message)s',
            datefmt='%H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger


_log = setup_logger('SentinelUtils')


# ===================================================================
# Numeric helpers
# ===================================================================

def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3, not 2).

    Metric rounding must not use Python's banker's rounding.
    """
    return int(math.floor(value + 0.5))
