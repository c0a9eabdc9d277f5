"""
Sentinel-Vision — Region Sampler Tests
=======================================
Clipping, degenerate regions and the lower-face box.
"""

import sys
from pathlib import Path

import numpy as np

# Add project root to path
_project_root = str(Path(__file__).resolve().parent.parent)
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from sentinel_types import FaceDetection, Frame
from sentinel_utils import lower_face_box, sample_region


def _indexed_frame(height: int = 10, width: int = 10, channels: int = 3) -> Frame:
    """Red channel = column, green channel = row."""
    pixels = np.zeros((height, width, channels), dtype=np.uint8)
    pixels[:, :, 0] = np.arange(width)[None, :]
    pixels[:, :, 1] = np.arange(height)[:, None]
    return Frame(pixels=pixels)


def test_samples_rectangle_in_row_major_order():
    frame = _indexed_frame()
    pixels = sample_region(frame, 2, 3, 5, 6)
    assert pixels.shape == (9, 3)
    assert pixels[0].tolist() == [2, 3, 0]
    assert pixels[-1].tolist() == [4, 5, 0]


def test_region_is_clipped_to_frame():
    frame = _indexed_frame()
    pixels = sample_region(frame, -5, -5, 3, 3)
    assert pixels.shape == (9, 3)
    assert pixels[0].tolist() == [0, 0, 0]


def test_degenerate_region_is_empty():
    frame = _indexed_frame()
    assert sample_region(frame, 5, 5, 5, 9).shape == (0, 3)
    assert sample_region(frame, 6, 5, 2, 9).shape == (0, 3)


def test_region_outside_frame_is_empty():
    frame = _indexed_frame()
    assert sample_region(frame, 20, 20, 30, 30).shape == (0, 3)


def test_alpha_channel_is_dropped():
    frame = _indexed_frame(channels=4)
    assert sample_region(frame, 0, 0, 2, 2).shape == (4, 3)


def test_frame_buffer_is_read_only():
    frame = _indexed_frame()
    sample_region(frame, 0, 0, 5, 5)
    assert frame.pixels.flags.writeable is False


def test_frame_leaves_callers_array_writable():
    pixels = np.zeros((4, 4, 3), dtype=np.uint8)
    frame = Frame(pixels=pixels)

    assert pixels.flags.writeable is True
    assert frame.pixels.flags.writeable is False
    pixels[0, 0] = (9, 9, 9)
    assert frame.pixels[0, 0].tolist() == [9, 9, 9]


def test_lower_face_box_floors_half_height():
    face = FaceDetection(top_left=(10.0, 20.0), bottom_right=(60.0, 81.0))
    assert lower_face_box(face) == (10, 50, 60, 81)


def test_lower_face_box_with_fractional_corners():
    face = FaceDetection(top_left=(10.7, 20.2), bottom_right=(30.9, 40.6))
    x1, y1, x2, y2 = lower_face_box(face)
    assert (x1, x2) == (10, 30)
    assert y1 == 20 + 10
    assert y2 == 40
