"""
Sentinel-Vision — Frame Source
===============================
Owns ALL capture-device interaction. No other module should touch
cv2.VideoCapture directly.

A source is either a camera index ("0") or a video file / stream URL.
Frames that fail validation are counted as drops and reported as
"not ready" (None), which the engine treats as a skipped tick.

Validation checklist:
  1. read() succeeded and returned a buffer
  2. (H, W, 3) uint8
  3. at least 160x120
  4. not all-black (lens cap, dead feed)
  5. not all-white (saturated sensor)
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Optional, Union

import cv2
import numpy as np

from sentinel_types import Frame

_log = logging.getLogger("SentinelCamera")


def parse_source(source: Union[int, str]) -> Union[int, str]:
    """'0' → 0 (device index); anything else is a path or URL."""
    if isinstance(source, str) and source.strip().isdigit():
        return int(source.strip())
    return source


class SentinelCamera:
    """Validated OpenCV capture producing RGB Frames.

    Args:
        source: Camera index, video file path or stream URL.
        width, height: Requested capture size (cameras only; files keep
            their native size).
        backend: OpenCV capture API, cv2.CAP_ANY by default.
    """

    MIN_HEIGHT: int = 120
    MIN_WIDTH: int = 160
    MIN_MEAN_BRIGHTNESS: float = 5.0
    MAX_MEAN_BRIGHTNESS: float = 250.0
    FPS_WINDOW: int = 30

    def __init__(
        self,
        source: Union[int, str] = 0,
        width: Optional[int] = None,
        height: Optional[int] = None,
        backend: int = cv2.CAP_ANY,
    ) -> None:
        self._source = parse_source(source)
        self._cap = cv2.VideoCapture(self._source, backend)

        if isinstance(self._source, int):
            self._cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
            if width:
                self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            if height:
                self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._resolution = (
            int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
        )

        self._frames_total = 0
        self._frames_dropped = 0
        self._last_valid_timestamp = 0.0
        self._frame_times: deque[float] = deque(maxlen=self.FPS_WINDOW)

        if not self._cap.isOpened():
            _log.warning("Frame source %r could not be opened", self._source)
        _log.info("SentinelCamera initialized — source=%r resolution=%s",
                  self._source, self._resolution)

    # ── Public API ────────────────────────────────────────────

    def read_frame(self) -> Optional[Frame]:
        """Next validated frame, or None when the source is not ready."""
        self._frames_total += 1
        timestamp = time.monotonic()

        ret, frame_bgr = self._cap.read()
        reason = self.validate(ret, frame_bgr)
        if reason is not None:
            self._frames_dropped += 1
            _log.debug("Frame dropped: %s", reason)
            return None

        self._last_valid_timestamp = timestamp
        self._frame_times.append(timestamp)
        return Frame.from_bgr(frame_bgr, timestamp)

    def validate(self, ret: bool, frame: Optional[np.ndarray]) -> Optional[str]:
        """Return why a captured buffer is unusable, or None if it is fine."""
        if not ret or frame is None:
            return "no frame from source"
        if frame.ndim != 3 or frame.shape[2] != 3:
            return f"unexpected shape {frame.shape}"
        if frame.dtype != np.uint8:
            return f"unexpected dtype {frame.dtype}"

        h, w = frame.shape[:2]
        if h < self.MIN_HEIGHT or w < self.MIN_WIDTH:
            return f"resolution {w}x{h} below {self.MIN_WIDTH}x{self.MIN_HEIGHT}"

        mean_brightness = float(frame.mean())
        if mean_brightness <= self.MIN_MEAN_BRIGHTNESS:
            return f"all-black frame (mean={mean_brightness:.2f})"
        if mean_brightness >= self.MAX_MEAN_BRIGHTNESS:
            return f"all-white frame (mean={mean_brightness:.2f})"
        return None

    def get_health_status(self) -> dict:
        now = time.monotonic()
        last_age_ms = (
            (now - self._last_valid_timestamp) * 1000.0
            if self._last_valid_timestamp > 0
            else float("inf")
        )
        return {
            "connected": self._cap.isOpened(),
            "fps_actual": self._calculate_fps(),
            "frames_total": self._frames_total,
            "frames_dropped": self._frames_dropped,
            "drop_rate_pct": (
                self._frames_dropped / self._frames_total * 100.0
                if self._frames_total > 0
                else 0.0
            ),
            "last_valid_frame_age_ms": round(last_age_ms, 2),
            "resolution": self._resolution,
        }

    def is_opened(self) -> bool:
        return self._cap.isOpened()

    def release(self) -> None:
        health = self.get_health_status()
        _log.info(
            "SentinelCamera releasing — total=%d dropped=%d (%.1f%%)",
            health["frames_total"],
            health["frames_dropped"],
            health["drop_rate_pct"],
        )
        self._cap.release()

    def __enter__(self) -> "SentinelCamera":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()

    def _calculate_fps(self) -> float:
        if len(self._frame_times) < 2:
            return 0.0
        elapsed = self._frame_times[-1] - self._frame_times[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._frame_times) - 1) / elapsed
