"""
Sentinel-Vision — SentinelEngine (Frame Loop Orchestrator)
===========================================================
The central orchestrator. Pulls frames from the frame source, runs
throttled detection, and aggregates the active monitoring module every
tick.

Architecture:
  1. Model init thread: ModelLifecycleManager.initialize() in the
     background. The loop never waits for it.
  2. Loop thread: read frame → tick() → push EngineResult to a size-2
     queue (oldest dropped).
  3. Caller (display / launcher): get_latest_result(), non-blocking.

Per tick:
  - frame not ready           → skipped (None)
  - throttle window open      → detect objects + faces (+ fire/smoke on
                                the safety module), keep as last-known-good
  - throttle window closed    → reuse last-known-good detections
  - models still initializing → empty detections
  - aggregate for the active module
"""

import gc
import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple

import psutil

from sentinel_aggregators import analyze_for_module
from sentinel_backend import DetectionAdapter
from sentinel_camera import SentinelCamera
from sentinel_errors import BackendUnavailableError, DetectionCallError
from sentinel_logger import get_logger
from sentinel_models import ModelLifecycleManager
from sentinel_types import (
    Detection,
    FaceDetection,
    FireSmokeAnalysis,
    Frame,
    ModuleAnalysisResult,
    MonitoringModule,
)
from sentinel_utils import detect_fire_and_smoke
from sentinel_utils_core import DEFAULT_CONFIG, merge_config

_log = logging.getLogger("SentinelEngine")

MAX_DETECTION_RATE_HZ = 10.0
FPS_WINDOW = 120
MEMORY_GROWTH_LIMIT = 500 * 1024 * 1024  # bytes
MIN_LOOP_SLEEP_S = 0.001
INIT_JOIN_TIMEOUT_S = 1.0


@dataclass
class EngineResult:
    """Full tick outcome."""
    frame: Frame
    timestamp: float
    detections: Tuple[Detection, ...]
    faces: Tuple[FaceDetection, ...]
    analysis: ModuleAnalysisResult
    model_status: dict
    fps: float
    timing_breakdown: dict
    detection_ran: bool
    camera_health: dict = field(default_factory=dict)
    memory_mb: float = 0.0

    def to_dict(self) -> dict:
        """JSON-friendly summary (pixels omitted)."""
        return {
            "timestamp": self.timestamp,
            "detections": [d.to_dict() for d in self.detections],
            "faces": [f.to_dict() for f in self.faces],
            "analysis": self.analysis.to_dict(),
            "model_status": self.model_status,
            "fps": self.fps,
            "timing": self.timing_breakdown,
            "detection_ran": self.detection_ran,
            "camera_health": self.camera_health,
            "memory_mb": self.memory_mb,
        }


class DetectionThrottle:
    """Admits at most ``max_rate_hz`` detection calls per second."""

    def __init__(self, max_rate_hz: float = MAX_DETECTION_RATE_HZ):
        if max_rate_hz <= 0:
            raise ValueError(f"max_rate_hz must be positive, got {max_rate_hz}")
        if max_rate_hz > MAX_DETECTION_RATE_HZ:
            _log.warning("Detection rate %.1f Hz capped at %.1f Hz",
                         max_rate_hz, MAX_DETECTION_RATE_HZ)
            max_rate_hz = MAX_DETECTION_RATE_HZ
        self.max_rate_hz = max_rate_hz
        self.min_interval = 1.0 / max_rate_hz
        self._last_run: Optional[float] = None

    def should_run(self, now: float) -> bool:
        """True (and the window restarts) if a detection call may run at ``now``."""
        if self._last_run is not None and now - self._last_run < self.min_interval:
            return False
        self._last_run = now
        return True


class SentinelEngine:
    """
    Frame loop orchestrator.

    Collaborators can be injected (tests, alternative sources); anything
    not given is built from the merged config.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        camera: Optional[Any] = None,
        model_manager: Optional[ModelLifecycleManager] = None,
        adapter: Optional[DetectionAdapter] = None,
        logger: Optional[Any] = None,
    ):
        self.config = merge_config(DEFAULT_CONFIG, config)
        engine_cfg = self.config["engine"]
        camera_cfg = self.config["camera"]

        self.logger = logger if logger is not None else get_logger(engine_cfg["log_path"])

        self.camera = camera if camera is not None else SentinelCamera(
            source=camera_cfg["id"],
            width=camera_cfg.get("width"),
            height=camera_cfg.get("height"),
        )
        self.models = (
            model_manager if model_manager is not None
            else ModelLifecycleManager.from_config(self.config)
        )
        self.adapter = adapter if adapter is not None else DetectionAdapter(self.models)

        self.module = MonitoringModule(engine_cfg["module"])
        self.throttle = DetectionThrottle(engine_cfg["max_detection_rate_hz"])
        self.target_fps = float(engine_cfg.get("target_fps", 30.0))

        # Last-known-good detection set, replaced only on successful ticks
        self._detections: Tuple[Detection, ...] = ()
        self._faces: Tuple[FaceDetection, ...] = ()
        self._fire_smoke: Optional[FireSmokeAnalysis] = None

        self.result_queue: queue.Queue = queue.Queue(maxsize=2)
        self.running = False
        self._loop_thread: Optional[threading.Thread] = None
        self._init_thread: Optional[threading.Thread] = None

        self._process = psutil.Process()
        self._memory_baseline = self._process.memory_info().rss
        self._tick_times: deque = deque(maxlen=FPS_WINDOW)

        self.logger.log({
            "module": self.module.value,
            "max_detection_rate_hz": self.throttle.max_rate_hz,
        }, event="engine_init_complete")

    # ── Control ───────────────────────────────────────────────

    def set_module(self, module) -> None:
        """Switch the active monitoring module (takes effect next tick)."""
        module = MonitoringModule(module)
        if module is self.module:
            return
        self.module = module
        self._fire_smoke = None
        self.logger.log({"module": module.value}, event="module_changed")

    def model_status(self) -> dict:
        return self.models.status()

    def start(self) -> None:
        """Start model init and the frame loop. Returns immediately."""
        if self.running:
            return
        self.running = True
        self._init_thread = self.models.initialize_in_background(
            on_error=self._on_models_unavailable
        )
        self._loop_thread = threading.Thread(target=self._loop, daemon=True, name="SentinelLoop")
        self._loop_thread.start()
        self.logger.log({"module": self.module.value}, event="engine_started")

    def stop(self) -> None:
        """Stop the loop and release camera, models and audit log."""
        self.running = False
        if self._loop_thread is not None:
            self._loop_thread.join(timeout=1.0)
        self.camera.release()
        # Closes the manager first so a load finishing after stop() is released.
        self.models.release()
        if self._init_thread is not None:
            self._init_thread.join(timeout=INIT_JOIN_TIMEOUT_S)
        self.logger.close()

    def get_latest_result(self) -> Optional[EngineResult]:
        """Most recent queued result, or None. Never blocks."""
        try:
            return self.result_queue.get_nowait()
        except queue.Empty:
            return None

    def _on_models_unavailable(self, error: BackendUnavailableError) -> None:
        self.logger.warn(str(error), {"attempts": error.attempts})

    # ── Frame loop ────────────────────────────────────────────

    def _loop(self) -> None:
        frame_interval = 1.0 / self.target_fps if self.target_fps > 0 else 0.0
        while self.running:
            t_start = time.monotonic()
            try:
                frame = self.camera.read_frame()
                result = self.tick(frame, t_start) if frame is not None else None
                if result is not None:
                    self._publish(result)
            except Exception as e:
                self.logger.error(f"Frame loop error: {e}", e)
            finally:
                # Error and empty ticks are paced like normal ones.
                spare = frame_interval - (time.monotonic() - t_start)
                time.sleep(max(spare, MIN_LOOP_SLEEP_S))

    def _publish(self, result: EngineResult) -> None:
        try:
            self.result_queue.put_nowait(result)
        except queue.Full:
            try:
                self.result_queue.get_nowait()
            except queue.Empty:
                pass
            self.result_queue.put_nowait(result)

    def tick(self, frame: Optional[Frame], now: Optional[float] = None) -> Optional[EngineResult]:
        """Process one frame. Returns None when the frame is not ready."""
        if frame is None:
            return None
        now = time.monotonic() if now is None else now
        module = self.module
        timing = {}
        t_start = time.monotonic()

        # STAGE 1: Throttled detection
        detection_ran = self.throttle.should_run(now)
        if detection_ran:
            t0 = time.monotonic()
            self._run_detection(frame, module)
            timing["detect_ms"] = (time.monotonic() - t0) * 1000

        # STAGE 2: Module aggregation (every tick)
        t0 = time.monotonic()
        analysis = analyze_for_module(
            module,
            self._detections,
            self._faces,
            fire_smoke=self._fire_smoke if module is MonitoringModule.SAFETY else None,
        )
        timing["analyze_ms"] = (time.monotonic() - t0) * 1000
        timing["total_ms"] = (time.monotonic() - t_start) * 1000

        # STAGE 3: Performance + memory
        self._tick_times.append(now)
        fps = self._calculate_fps()

        current_mem = self._process.memory_info().rss
        if current_mem - self._memory_baseline > MEMORY_GROWTH_LIMIT:
            gc.collect()
            self.logger.warn("Memory growth > 500MB, GC forced")

        status = self.models.status()
        result = EngineResult(
            frame=frame,
            timestamp=now,
            detections=self._detections,
            faces=self._faces,
            analysis=analysis,
            model_status=status,
            fps=fps,
            timing_breakdown=timing,
            detection_ran=detection_ran,
            camera_health=self.camera.get_health_status() if self.camera is not None else {},
            memory_mb=current_mem / 1e6,
        )

        # STAGE 4: Audit (detection ticks only)
        if detection_ran:
            self.logger.log_frame({
                "module": module.value,
                "objects": len(self._detections),
                "faces": len(self._faces),
                "alerts": list(analysis.alerts),
                "model_status": status,
                "fps": fps,
                "timing": timing,
                "memory_mb": current_mem / 1e6,
            })

        return result

    def _run_detection(self, frame: Frame, module: MonitoringModule) -> None:
        if not self.models.is_model_ready():
            # Still initializing: present frames with no detections.
            self._detections, self._faces = (), ()
        else:
            try:
                detections = tuple(self.adapter.detect_objects(frame))
                faces = tuple(self.adapter.detect_faces(frame))
            except Exception as e:
                err = e if isinstance(e, DetectionCallError) else DetectionCallError(str(e))
                self.logger.error(f"Detection tick failed, keeping previous detections: {err}", err)
            else:
                self._detections, self._faces = detections, faces

        if module is MonitoringModule.SAFETY:
            self._fire_smoke = detect_fire_and_smoke(frame)

    def _calculate_fps(self) -> float:
        if len(self._tick_times) < 2:
            return 0.0
        elapsed = self._tick_times[-1] - self._tick_times[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._tick_times) - 1) / elapsed
