"""
Sentinel-Vision — Detection Backends & Adapter
===============================================
Owns ALL calls into the object / face detection models.
No other module should run a detector directly.

Layers:
  - DetectionBackend: the black-box contract (load / detect / release)
  - OnnxObjectBackend: SSD-MobileNet COCO detector on onnxruntime
  - MediaPipeFaceBackend: BlazeFace short-range via MediaPipe Tasks
  - parse_*: validated parse of untyped backend output into
    Detection / FaceDetection (malformed entries are rejected)
  - DetectionAdapter: filtering, mask attachment and the synthetic
    fallback path. Never raises to the caller.

Fallback (demo) mode:
  When a capability is missing, or a call fails, the adapter returns
  synthetic detections so downstream aggregation stays exercised:
    person          p=0.7, score 0.85-0.95
    book/laptop/... p=0.3, score 0.60-0.90
    one face        p=0.6, random mask flag
"""

from __future__ import annotations

import logging
import math
import os
import random
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Optional

import cv2
import numpy as np

from sentinel_errors import DetectionCallError
from sentinel_types import Detection, FaceDetection, Frame
from sentinel_utils import analyze_mask
from sentinel_utils_core import resolve_path

_log = logging.getLogger("DetectionBackend")

MIN_OBJECT_SCORE = 0.3

# TF Object Detection API COCO label ids (1-based, with gaps)
COCO_LABELS = {
    1: "person", 2: "bicycle", 3: "car", 4: "motorcycle", 5: "airplane",
    6: "bus", 7: "train", 8: "truck", 9: "boat", 10: "traffic light",
    11: "fire hydrant", 13: "stop sign", 14: "parking meter", 15: "bench",
    16: "bird", 17: "cat", 18: "dog", 19: "horse", 20: "sheep", 21: "cow",
    22: "elephant", 23: "bear", 24: "zebra", 25: "giraffe", 27: "backpack",
    28: "umbrella", 31: "handbag", 32: "tie", 33: "suitcase", 34: "frisbee",
    35: "skis", 36: "snowboard", 37: "sports ball", 38: "kite",
    39: "baseball bat", 40: "baseball glove", 41: "skateboard",
    42: "surfboard", 43: "tennis racket", 44: "bottle", 46: "wine glass",
    47: "cup", 48: "fork", 49: "knife", 50: "spoon", 51: "bowl",
    52: "banana", 53: "apple", 54: "sandwich", 55: "orange", 56: "broccoli",
    57: "carrot", 58: "hot dog", 59: "pizza", 60: "donut", 61: "cake",
    62: "chair", 63: "couch", 64: "potted plant", 65: "bed",
    67: "dining table", 70: "toilet", 72: "tv", 73: "laptop", 74: "mouse",
    75: "remote", 76: "keyboard", 77: "cell phone", 78: "microwave",
    79: "oven", 80: "toaster", 81: "sink", 82: "refrigerator", 84: "book",
    85: "clock", 86: "vase", 87: "scissors", 88: "teddy bear",
    89: "hair drier", 90: "toothbrush",
}

# ─── Synthetic fallback constants ─────────────────────────────
_MOCK_PERSON_BBOX = (100.0, 50.0, 200.0, 300.0)
_MOCK_OBJECT_BBOX = (200.0, 100.0, 100.0, 80.0)
_MOCK_OBJECT_LABELS = ("book", "laptop", "cell phone", "chair")
_MOCK_FACE_TOP_LEFT = (120.0, 80.0)
_MOCK_FACE_BOTTOM_RIGHT = (220.0, 180.0)
_MOCK_FACE_LANDMARKS = (
    (150.0, 120.0), (190.0, 120.0),  # eyes
    (170.0, 140.0),                  # nose
    (170.0, 160.0),                  # mouth
)


# ═══════════════════════════════════════════════════════════════
# Backend contract
# ═══════════════════════════════════════════════════════════════

class DetectionBackend(ABC):
    """Black-box detection capability.

    Treated as untrusted: timeouts are enforced by the caller and the
    raw output is validated by the adapter.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    def load(self, config: dict) -> "DetectionBackend":
        """Load model weights. Returns self, raises on failure."""
        pass

    @abstractmethod
    def detect(self, frame: Frame) -> list[dict]:
        """Run the model and return raw, untyped predictions."""
        pass

    def release(self):
        """Optional cleanup logic on shutdown."""
        pass


def onnx_runtime_ready() -> list[str]:
    """Backend readiness step: onnxruntime imports and has providers."""
    import onnxruntime as ort

    providers = ort.get_available_providers()
    if not providers:
        raise RuntimeError("onnxruntime reports no execution providers")
    return providers


class OnnxObjectBackend(DetectionBackend):
    """COCO SSD-MobileNet object detector on onnxruntime.

    Expects the TF Object Detection API export layout:
      input:  (1, H, W, 3) uint8 RGB
      output: detection_boxes (1, N, 4) [ymin, xmin, ymax, xmax] normalized
              detection_classes (1, N), detection_scores (1, N),
              num_detections (1,)
    """

    name = "onnx_ssd_coco"

    def __init__(self) -> None:
        self.session = None
        self.model_path: Optional[str] = None
        self.input_name: Optional[str] = None
        self._input_hw: Optional[tuple[int, int]] = None
        self._input_is_float = False
        self._output_names: list[str] = []

    def load(self, config: dict) -> "OnnxObjectBackend":
        import onnxruntime as ort

        models_cfg = config.get("models", config)
        available = ort.get_available_providers()
        providers = [p for p in models_cfg["providers"] if p in available]
        if not providers:
            providers = ["CPUExecutionProvider"]

        # Try each model base in order; the first that loads wins.
        failures = []
        for path in models_cfg["object_model_paths"]:
            full_path = resolve_path(path)
            if not os.path.exists(full_path):
                failures.append(f"{path}: not found")
                continue
            try:
                self.session = ort.InferenceSession(full_path, providers=providers)
            except Exception as e:
                _log.warning("Failed to load object model %s: %s", path, e)
                failures.append(f"{path}: {e}")
                continue

            self.model_path = full_path
            model_input = self.session.get_inputs()[0]
            self.input_name = model_input.name
            self._input_is_float = "float" in model_input.type
            shape = model_input.shape
            if len(shape) == 4 and isinstance(shape[1], int) and isinstance(shape[2], int):
                self._input_hw = (shape[1], shape[2])
            self._output_names = [o.name for o in self.session.get_outputs()]
            _log.info(
                "Object detector loaded — model=%s providers=%s input=%s",
                os.path.basename(full_path), self.session.get_providers(), shape,
            )
            return self

        raise FileNotFoundError(
            "No object detection model could be loaded: " + "; ".join(failures)
        )

    def detect(self, frame: Frame) -> list[dict]:
        if self.session is None:
            raise DetectionCallError("Object detector is not loaded")

        image = frame.rgb
        if self._input_hw is not None:
            in_h, in_w = self._input_hw
            image = cv2.resize(image, (in_w, in_h))
        tensor = np.expand_dims(image, axis=0)
        tensor = tensor.astype(np.float32) if self._input_is_float else tensor.astype(np.uint8)

        outputs = self.session.run(None, {self.input_name: tensor})
        named = dict(zip(self._output_names, outputs))

        boxes = named["detection_boxes"][0]
        classes = named["detection_classes"][0]
        scores = named["detection_scores"][0]
        count = int(named["num_detections"][0])

        predictions = []
        for i in range(min(count, len(scores))):
            label = COCO_LABELS.get(int(classes[i]))
            if label is None:
                continue
            ymin, xmin, ymax, xmax = (float(v) for v in boxes[i])
            predictions.append({
                "class": label,
                "score": float(scores[i]),
                "bbox": [
                    xmin * frame.width,
                    ymin * frame.height,
                    (xmax - xmin) * frame.width,
                    (ymax - ymin) * frame.height,
                ],
            })
        return predictions

    def release(self):
        self.session = None


class MediaPipeFaceBackend(DetectionBackend):
    """BlazeFace short-range face detector via MediaPipe Tasks."""

    name = "mediapipe_blazeface"

    def __init__(self) -> None:
        self._detector = None

    def load(self, config: dict) -> "MediaPipeFaceBackend":
        from mediapipe.tasks import python
        from mediapipe.tasks.python import vision

        models_cfg = config.get("models", config)
        full_path = resolve_path(models_cfg["face_model_path"])
        if not os.path.exists(full_path):
            raise FileNotFoundError(f"MediaPipe face model not found: {full_path}")

        base_options = python.BaseOptions(
            model_asset_path=full_path,
            delegate=python.BaseOptions.Delegate.CPU
        )
        options = vision.FaceDetectorOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.IMAGE,
            min_detection_confidence=models_cfg.get("face_min_confidence", 0.5),
        )
        self._detector = vision.FaceDetector.create_from_options(options)
        _log.info("Face detector loaded — model=%s", os.path.basename(full_path))
        return self

    def detect(self, frame: Frame) -> list[dict]:
        import mediapipe as mp

        if self._detector is None:
            raise DetectionCallError("Face detector is not loaded")

        image = mp.Image(
            image_format=mp.ImageFormat.SRGB,
            data=np.ascontiguousarray(frame.rgb),
        )
        result = self._detector.detect(image)

        predictions = []
        for det in result.detections:
            bb = det.bounding_box
            score = det.categories[0].score if det.categories else 0.0
            keypoints = det.keypoints or []
            predictions.append({
                "top_left": [bb.origin_x, bb.origin_y],
                "bottom_right": [bb.origin_x + bb.width, bb.origin_y + bb.height],
                "landmarks": [[kp.x * frame.width, kp.y * frame.height] for kp in keypoints],
                "probability": [score],
            })
        return predictions

    def release(self):
        if self._detector is not None:
            self._detector.close()
            self._detector = None


# ═══════════════════════════════════════════════════════════════
# Validated parse
# ═══════════════════════════════════════════════════════════════

def _as_point(value: Any) -> tuple[float, float]:
    x, y = (float(v) for v in value)
    if not (math.isfinite(x) and math.isfinite(y)):
        raise ValueError(f"non-finite point {value!r}")
    return (x, y)


def _require_sequence(raw: Any, what: str) -> None:
    if not isinstance(raw, (list, tuple)):
        raise DetectionCallError(
            f"{what} backend returned {type(raw).__name__}, expected a list"
        )


def parse_object_predictions(raw: Any) -> tuple[Detection, ...]:
    """Map raw object predictions to valid Detections.

    Keeps score > 0.3 and boxes with x, y >= 0 and w, h > 0.
    Raises DetectionCallError only when the payload itself is unusable.
    """
    _require_sequence(raw, "Object")

    detections = []
    for pred in raw:
        try:
            label = str(pred["class"])
            score = float(pred["score"])
            x, y, w, h = (float(v) for v in pred["bbox"])
        except (KeyError, TypeError, ValueError) as e:
            _log.debug("Rejecting malformed object prediction %r: %s", pred, e)
            continue

        if not all(math.isfinite(v) for v in (score, x, y, w, h)):
            continue
        if score <= MIN_OBJECT_SCORE:
            continue

        detection = Detection(label=label, score=score, bbox=(x, y, w, h))
        if detection.is_valid():
            detections.append(detection)
    return tuple(detections)


def parse_face_predictions(raw: Any) -> tuple[FaceDetection, ...]:
    """Map raw face predictions to FaceDetections (mask fields unset)."""
    _require_sequence(raw, "Face")

    faces = []
    for pred in raw:
        try:
            top_left = _as_point(pred["top_left"])
            bottom_right = _as_point(pred["bottom_right"])
            landmarks = pred.get("landmarks")
            if landmarks is not None:
                landmarks = tuple(_as_point(p) for p in landmarks)
            probability = pred.get("probability")
            if probability is not None:
                probability = tuple(float(p) for p in probability)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            _log.debug("Rejecting malformed face prediction %r: %s", pred, e)
            continue

        if bottom_right[0] <= top_left[0] or bottom_right[1] <= top_left[1]:
            continue

        faces.append(FaceDetection(
            top_left=top_left,
            bottom_right=bottom_right,
            landmarks=landmarks,
            probability=probability,
        ))
    return tuple(faces)


# ═══════════════════════════════════════════════════════════════
# Adapter
# ═══════════════════════════════════════════════════════════════

class DetectionAdapter:
    """Per-tick detection entry point used by the engine.

    ``models`` is anything exposing ``object_backend`` and
    ``face_backend`` attributes (None when unavailable), normally a
    ModelLifecycleManager.
    """

    def __init__(self, models: Any, rng: Optional[random.Random] = None) -> None:
        self._models = models
        self._rng = rng or random.Random()

    def has_mask_detection(self) -> bool:
        return self._models.face_backend is not None

    def detect_objects(self, frame: Optional[Frame]) -> tuple[Detection, ...]:
        backend = self._models.object_backend
        if backend is None or frame is None:
            return self._mock_object_detections()

        try:
            return parse_object_predictions(backend.detect(frame))
        except Exception as e:
            _log.error("Object detection error: %s", e)
            return self._mock_object_detections()

    def detect_faces(self, frame: Optional[Frame]) -> tuple[FaceDetection, ...]:
        backend = self._models.face_backend
        if backend is None or frame is None:
            return self._mock_face_detections()

        try:
            faces = parse_face_predictions(backend.detect(frame))
        except Exception as e:
            _log.error("Face detection error: %s", e)
            return self._mock_face_detections()

        return tuple(self._attach_mask(frame, face) for face in faces)

    @staticmethod
    def _attach_mask(frame: Frame, face: FaceDetection) -> FaceDetection:
        analysis = analyze_mask(frame, face)
        return replace(
            face,
            has_mask=analysis.has_mask,
            mask_confidence=analysis.confidence,
        )

    # ── Synthetic fallback ────────────────────────────────────

    def _mock_object_detections(self) -> tuple[Detection, ...]:
        rng = self._rng
        detections = []

        if rng.random() > 0.3:
            detections.append(Detection(
                label="person",
                score=0.85 + rng.random() * 0.1,
                bbox=_MOCK_PERSON_BBOX,
            ))

        if rng.random() > 0.7:
            detections.append(Detection(
                label=rng.choice(_MOCK_OBJECT_LABELS),
                score=0.6 + rng.random() * 0.3,
                bbox=_MOCK_OBJECT_BBOX,
            ))

        return tuple(detections)

    def _mock_face_detections(self) -> tuple[FaceDetection, ...]:
        rng = self._rng
        if rng.random() > 0.4:
            return (FaceDetection(
                top_left=_MOCK_FACE_TOP_LEFT,
                bottom_right=_MOCK_FACE_BOTTOM_RIGHT,
                landmarks=_MOCK_FACE_LANDMARKS,
                probability=(0.9,),
                has_mask=rng.random() > 0.6,
                mask_confidence=0.7 + rng.random() * 0.3,
            ),)
        return ()
