"""
Sentinel-Vision — Detection Backend & Adapter Tests
====================================================
Validated parse, filtering, mask attachment and the synthetic fallback
path. Backends are stubs; no model files are needed.
"""

import math
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pytest

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from sentinel_backend import (
    DetectionAdapter,
    OnnxObjectBackend,
    onnx_runtime_ready,
    parse_face_predictions,
    parse_object_predictions,
)
from sentinel_errors import DetectionCallError
from sentinel_types import Detection, Frame


def _frame(height: int = 100, width: int = 200, color=(255, 255, 255)) -> Frame:
    pixels = np.empty((height, width, 3), dtype=np.uint8)
    pixels[:, :] = color
    return Frame(pixels=pixels)


def _backend(predictions=None, error=None):
    backend = MagicMock()
    if error is not None:
        backend.detect.side_effect = error
    else:
        backend.detect.return_value = predictions
    return backend


def _models(object_backend=None, face_backend=None):
    return SimpleNamespace(object_backend=object_backend, face_backend=face_backend)


def _scripted_rng(randoms, choice="laptop"):
    rng = MagicMock()
    rng.random.side_effect = list(randoms)
    rng.choice.return_value = choice
    return rng


# ─── Object parse ─────────────────────────────────────────────

def test_object_parse_keeps_valid_confident_detections():
    raw = [
        {"class": "person", "score": 0.9, "bbox": [10, 20, 50, 100]},
        {"class": "book", "score": 0.3, "bbox": [0, 0, 10, 10]},      # not > 0.3
        {"class": "chair", "score": 0.8, "bbox": [-1, 0, 10, 10]},    # negative x
        {"class": "laptop", "score": 0.8, "bbox": [5, 5, 0, 10]},     # zero width
    ]
    result = parse_object_predictions(raw)
    assert result == (Detection("person", 0.9, (10.0, 20.0, 50.0, 100.0)),)


def test_object_parse_rejects_malformed_entries():
    raw = [
        {"class": "person", "score": 0.9},                            # no bbox
        {"class": "person", "score": 0.9, "bbox": [1, 2, 3]},         # short bbox
        {"class": "person", "score": "high", "bbox": [1, 2, 3, 4]},   # bad score
        {"class": "person", "score": math.nan, "bbox": [1, 2, 3, 4]},
        "person",
        {"class": "cup", "score": 0.7, "bbox": [1, 2, 3, 4]},
    ]
    result = parse_object_predictions(raw)
    assert [d.label for d in result] == ["cup"]


def test_object_parse_rejects_non_list_payload():
    with pytest.raises(DetectionCallError):
        parse_object_predictions(None)
    with pytest.raises(DetectionCallError):
        parse_object_predictions({"class": "person"})


# ─── Face parse ───────────────────────────────────────────────

def test_face_parse_maps_fields():
    raw = [{
        "top_left": [10, 20],
        "bottom_right": [60, 90],
        "landmarks": [[20, 40], [50, 40]],
        "probability": [0.97],
    }]
    (face,) = parse_face_predictions(raw)
    assert face.top_left == (10.0, 20.0)
    assert face.bottom_right == (60.0, 90.0)
    assert face.landmarks == ((20.0, 40.0), (50.0, 40.0))
    assert face.probability == (0.97,)
    assert face.has_mask is None


def test_face_parse_skips_malformed_and_inverted_boxes():
    raw = [
        {"top_left": [10, 20]},
        {"top_left": [60, 20], "bottom_right": [10, 90]},
        {"top_left": [1, 1], "bottom_right": [5, 5], "landmarks": [[1]]},
        {"top_left": [1, 1], "bottom_right": [5, 5]},
    ]
    faces = parse_face_predictions(raw)
    assert len(faces) == 1
    assert faces[0].landmarks is None


# ─── Adapter: real backends ───────────────────────────────────

def test_adapter_filters_real_object_predictions():
    backend = _backend([
        {"class": "person", "score": 0.9, "bbox": [10, 20, 50, 100]},
        {"class": "book", "score": 0.2, "bbox": [10, 20, 50, 100]},
    ])
    adapter = DetectionAdapter(_models(object_backend=backend))
    result = adapter.detect_objects(_frame())
    assert [d.label for d in result] == ["person"]
    backend.detect.assert_called_once()


def test_adapter_attaches_mask_to_real_faces():
    # white lower face: fabric ratio 1.0
    backend = _backend([{"top_left": [0, 0], "bottom_right": [10, 20]}])
    adapter = DetectionAdapter(_models(face_backend=backend))
    (face,) = adapter.detect_faces(_frame())
    assert face.has_mask is True
    assert face.mask_confidence == pytest.approx(0.95)
    assert adapter.has_mask_detection() is True


# ─── Adapter: synthetic fallback ──────────────────────────────

def test_missing_object_backend_uses_mock_detections():
    rng = _scripted_rng([0.9, 0.5, 0.8, 0.5], choice="laptop")
    adapter = DetectionAdapter(_models(), rng=rng)
    person, extra = adapter.detect_objects(_frame())

    assert person.label == "person"
    assert person.score == pytest.approx(0.9)
    assert person.bbox == (100.0, 50.0, 200.0, 300.0)
    assert extra.label == "laptop"
    assert extra.score == pytest.approx(0.75)
    assert extra.bbox == (200.0, 100.0, 100.0, 80.0)


def test_mock_detections_can_be_empty():
    adapter = DetectionAdapter(_models(), rng=_scripted_rng([0.1, 0.1]))
    assert adapter.detect_objects(_frame()) == ()


def test_mock_face_has_fixed_geometry_and_random_mask():
    adapter = DetectionAdapter(_models(), rng=_scripted_rng([0.5, 0.7, 0.5]))
    (face,) = adapter.detect_faces(_frame())
    assert face.top_left == (120.0, 80.0)
    assert face.bottom_right == (220.0, 180.0)
    assert len(face.landmarks) == 4
    assert face.probability == (0.9,)
    assert face.has_mask is True
    assert face.mask_confidence == pytest.approx(0.85)
    assert adapter.has_mask_detection() is False


def test_backend_failure_falls_back_to_mock():
    backend = _backend(error=RuntimeError("GPU lost"))
    adapter = DetectionAdapter(_models(object_backend=backend),
                               rng=_scripted_rng([0.9, 0.0, 0.0]))
    result = adapter.detect_objects(_frame())
    assert [d.label for d in result] == ["person"]


def test_malformed_payload_falls_back_to_mock():
    backend = _backend(predictions=None)
    adapter = DetectionAdapter(_models(face_backend=backend), rng=_scripted_rng([0.0]))
    assert adapter.detect_faces(_frame()) == ()


def test_missing_frame_uses_mock_path():
    backend = _backend([])
    adapter = DetectionAdapter(_models(object_backend=backend), rng=_scripted_rng([0.0, 0.0]))
    assert adapter.detect_objects(None) == ()
    backend.detect.assert_not_called()


def test_seeded_rng_is_reproducible():
    import random
    a = DetectionAdapter(_models(), rng=random.Random(7))
    b = DetectionAdapter(_models(), rng=random.Random(7))
    for _ in range(5):
        assert a.detect_objects(None) == b.detect_objects(None)
        assert a.detect_faces(None) == b.detect_faces(None)


# ─── Concrete ONNX backend ────────────────────────────────────

def test_onnx_backend_decodes_tf_detection_outputs():
    backend = OnnxObjectBackend()
    backend.session = MagicMock()
    backend.input_name = "inputs"
    backend._output_names = [
        "detection_boxes", "detection_classes", "detection_scores", "num_detections",
    ]
    backend.session.run.return_value = [
        np.array([[[0.1, 0.2, 0.5, 0.6], [0.0, 0.0, 1.0, 1.0], [0.0, 0.0, 0.5, 0.5]]]),
        np.array([[1.0, 12.0, 84.0]]),
        np.array([[0.9, 0.8, 0.7]]),
        np.array([2.0]),
    ]

    preds = backend.detect(_frame(height=100, width=200))

    # class 12 has no COCO label; the third box is past num_detections
    assert len(preds) == 1
    assert preds[0]["class"] == "person"
    assert preds[0]["score"] == pytest.approx(0.9)
    assert preds[0]["bbox"] == pytest.approx([40.0, 10.0, 80.0, 40.0])

    (tensor,) = backend.session.run.call_args[0][1].values()
    assert tensor.shape == (1, 100, 200, 3)
    assert tensor.dtype == np.uint8


def test_onnx_backend_load_fails_without_model_files(tmp_path):
    config = {
        "providers": ["CPUExecutionProvider"],
        "object_model_paths": [str(tmp_path / "missing_a.onnx"), str(tmp_path / "missing_b.onnx")],
    }
    with pytest.raises(FileNotFoundError, match="missing_a.onnx"):
        OnnxObjectBackend().load(config)


def test_onnx_detect_before_load_raises():
    with pytest.raises(DetectionCallError):
        OnnxObjectBackend().detect(_frame())


def test_runtime_ready_requires_providers():
    with patch("onnxruntime.get_available_providers", return_value=[]):
        with pytest.raises(RuntimeError):
            onnx_runtime_ready()
    with patch("onnxruntime.get_available_providers", return_value=["CPUExecutionProvider"]):
        assert onnx_runtime_ready() == ["CPUExecutionProvider"]
