"""
Sentinel-Vision — Shared Data Types
====================================
Frame, detection, model-state and per-module result types shared by
the analysis core, the engine and the presentation layer.

All result types are frozen dataclasses: they are produced fresh on
every call and ownership passes to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional, Tuple, Union

import cv2
import numpy as np


Point = Tuple[float, float]
BBox = Tuple[float, float, float, float]  # x, y, w, h


# ═══════════════════════════════════════════════════════════════
# Frame
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True, eq=False)
class Frame:
    """One captured video frame.

    Attributes:
        pixels: (H, W, C) uint8 buffer, row-major, C = 3 (RGB) or 4 (RGBA).
        timestamp: Monotonic capture time in seconds.
    """
    pixels: np.ndarray
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        if self.pixels.ndim != 3 or self.pixels.shape[2] not in (3, 4):
            raise ValueError(
                f"Frame buffer must be (H, W, 3|4), got {self.pixels.shape}"
            )
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Frame buffer must be uint8, got {self.pixels.dtype}")
        # Classifiers share this buffer; nobody may write to it. The
        # caller's array keeps its own flags.
        view = self.pixels.view()
        view.flags.writeable = False
        object.__setattr__(self, "pixels", view)

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def rgb(self) -> np.ndarray:
        """(H, W, 3) view without the alpha channel."""
        return self.pixels[:, :, :3]

    @classmethod
    def from_bgr(cls, frame_bgr: np.ndarray, timestamp: float = 0.0) -> "Frame":
        """Build a frame from an OpenCV BGR capture."""
        rgb = cv2.cvtColor(frame_bgr, cv2.COLOR_BGR2RGB)
        return cls(pixels=rgb, timestamp=timestamp)


# ═══════════════════════════════════════════════════════════════
# Detections
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Detection:
    """A single object-class hypothesis."""
    label: str
    score: float
    bbox: BBox  # x, y, w, h in frame pixels

    def is_valid(self) -> bool:
        x, y, w, h = self.bbox
        return x >= 0 and y >= 0 and w > 0 and h > 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FaceDetection:
    """A detected face.

    Mask fields are filled in by the mask detector, never by the backend.
    """
    top_left: Point
    bottom_right: Point
    landmarks: Optional[Tuple[Point, ...]] = None
    probability: Optional[Tuple[float, ...]] = None
    has_mask: Optional[bool] = None
    mask_confidence: Optional[float] = None

    @property
    def width(self) -> float:
        return self.bottom_right[0] - self.top_left[0]

    @property
    def height(self) -> float:
        return self.bottom_right[1] - self.top_left[1]

    @property
    def bbox(self) -> BBox:
        return (self.top_left[0], self.top_left[1], self.width, self.height)

    def to_dict(self) -> dict:
        return asdict(self)


# ═══════════════════════════════════════════════════════════════
# Heuristic analysis outputs
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class MaskAnalysis:
    has_mask: bool
    confidence: float
    skin_ratio: float = 0.0
    fabric_ratio: float = 0.0


@dataclass(frozen=True)
class MotionAnalysis:
    has_flickering: bool
    has_upward_movement: bool
    flickering_ratio: float = 0.0
    upward_motion_ratio: float = 0.0


@dataclass(frozen=True)
class FireSmokeAnalysis:
    fire_detected: bool
    smoke_detected: bool
    fire_ratio: float = 0.0
    smoke_ratio: float = 0.0
    motion: Optional[MotionAnalysis] = None


# ═══════════════════════════════════════════════════════════════
# Model state
# ═══════════════════════════════════════════════════════════════

class ModelPhase(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


@dataclass(frozen=True)
class ModelState:
    """Backend readiness.

    READY with real=False is fallback/demo mode (synthetic detections).
    """
    phase: ModelPhase = ModelPhase.UNINITIALIZED
    attempt: int = 0
    real: bool = False

    @classmethod
    def uninitialized(cls) -> "ModelState":
        return cls()

    @classmethod
    def initializing(cls, attempt: int) -> "ModelState":
        return cls(phase=ModelPhase.INITIALIZING, attempt=attempt)

    @classmethod
    def ready(cls, real: bool, attempt: int = 0) -> "ModelState":
        return cls(phase=ModelPhase.READY, attempt=attempt, real=real)

    @property
    def is_ready(self) -> bool:
        return self.phase is ModelPhase.READY


# ═══════════════════════════════════════════════════════════════
# Module analysis results
# ═══════════════════════════════════════════════════════════════

class MonitoringModule(str, Enum):
    CLASSROOM = "classroom-behavior"
    EXAM = "exam-supervision"
    OCCUPANCY = "occupancy-monitoring"
    COMPLIANCE = "compliance-check"
    SAFETY = "safety-detection"


@dataclass(frozen=True)
class ClassroomAnalysis:
    student_count: int
    attention_level: int
    distractions: int
    engagement_items: int
    face_detection_rate: int
    alerts: Tuple[str, ...] = ()
    module: MonitoringModule = MonitoringModule.CLASSROOM

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ExamAnalysis:
    candidate_count: int
    gaze_compliance: int
    violations: int
    prohibited_items: int
    alerts: Tuple[str, ...] = ()
    module: MonitoringModule = MonitoringModule.EXAM

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SeatingCounts:
    chairs: int = 0
    benches: int = 0
    couches: int = 0


@dataclass(frozen=True)
class OccupancyAnalysis:
    current_occupancy: int
    max_capacity: int
    occupancy_rate: int
    available_seats: int
    seating_detected: SeatingCounts = field(default_factory=SeatingCounts)
    alerts: Tuple[str, ...] = ()
    module: MonitoringModule = MonitoringModule.OCCUPANCY

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class ComplianceAnalysis:
    people_count: int
    mask_compliance: int
    faces_analyzed: int
    masked_faces: int
    violations: int
    # None means "not yet measured": there is no uniform classifier.
    uniform_compliance: Optional[int] = None
    alerts: Tuple[str, ...] = ()
    module: MonitoringModule = MonitoringModule.COMPLIANCE

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class SafetyHazards:
    fire: bool = False
    smoke: bool = False
    crowding: bool = False
    unattended_items: bool = False
    equipment_missing: bool = False


@dataclass(frozen=True)
class SafetyAnalysis:
    people_count: int
    system_status: str
    safety_equipment: int
    response_time: str
    fire_detected: bool
    smoke_detected: bool
    potential_hazards: SafetyHazards = field(default_factory=SafetyHazards)
    alerts: Tuple[str, ...] = ()
    module: MonitoringModule = MonitoringModule.SAFETY

    def to_dict(self) -> dict:
        return asdict(self)


ModuleAnalysisResult = Union[
    ClassroomAnalysis,
    ExamAnalysis,
    OccupancyAnalysis,
    ComplianceAnalysis,
    SafetyAnalysis,
]
