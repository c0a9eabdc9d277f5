"""
Sentinel-Vision — Engine Tests
===============================
Validates the SentinelEngine frame loop, including:
- Detection throttling and last-known-good reuse
- Error tolerance at the detection boundary
- Empty detections while models initialize
- Safety module fire/smoke scheduling
- Result queue and shutdown
"""

import os
import sys
import threading
import time
import unittest
from unittest.mock import MagicMock, patch

import numpy as np

# Add project root
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sentinel_engine import DetectionThrottle, EngineResult, SentinelEngine
from sentinel_models import ModelLifecycleManager
from sentinel_types import (
    ClassroomAnalysis,
    Detection,
    FaceDetection,
    FireSmokeAnalysis,
    Frame,
    MonitoringModule,
    SafetyAnalysis,
)

PERSON = Detection("person", 0.9, (10.0, 10.0, 50.0, 100.0))
PHONE = Detection("cell phone", 0.8, (20.0, 20.0, 10.0, 10.0))
FACE = FaceDetection((10.0, 10.0), (40.0, 50.0), has_mask=False, mask_confidence=0.2)


def _frame() -> Frame:
    return Frame(pixels=np.full((48, 64, 3), 90, dtype=np.uint8))


class TestDetectionThrottle(unittest.TestCase):

    def test_admits_at_most_rate_per_second(self):
        throttle = DetectionThrottle(10.0)
        runs = [throttle.should_run(t) for t in (0.0, 0.05, 0.1, 0.15, 0.2)]
        self.assertEqual(runs, [True, False, True, False, True])

    def test_rate_is_capped_at_ten_hz(self):
        throttle = DetectionThrottle(60.0)
        self.assertEqual(throttle.max_rate_hz, 10.0)
        self.assertAlmostEqual(throttle.min_interval, 0.1)

    def test_rejects_non_positive_rate(self):
        with self.assertRaises(ValueError):
            DetectionThrottle(0)


class TestSentinelEngine(unittest.TestCase):

    def setUp(self):
        self.camera = MagicMock()
        self.camera.get_health_status.return_value = {"connected": True}
        self.models = MagicMock()
        self.models.is_model_ready.return_value = True
        self.models.status.return_value = {"ready": True, "real": True}
        self.adapter = MagicMock()
        self.adapter.detect_objects.return_value = (PERSON, PHONE)
        self.adapter.detect_faces.return_value = (FACE,)
        self.logger = MagicMock()

    def _engine(self, module="classroom-behavior", rate=10.0) -> SentinelEngine:
        config = {"engine": {"module": module, "max_detection_rate_hz": rate}}
        return SentinelEngine(
            config,
            camera=self.camera,
            model_manager=self.models,
            adapter=self.adapter,
            logger=self.logger,
        )

    def test_tick_produces_result(self):
        engine = self._engine()
        result = engine.tick(_frame(), now=0.0)

        self.assertIsInstance(result, EngineResult)
        self.assertTrue(result.detection_ran)
        self.assertEqual(result.detections, (PERSON, PHONE))
        self.assertEqual(result.faces, (FACE,))
        self.assertIsInstance(result.analysis, ClassroomAnalysis)
        self.assertEqual(result.analysis.alerts, ("1 mobile phone(s) detected",))
        self.assertEqual(result.model_status, {"ready": True, "real": True})
        self.assertEqual(result.camera_health, {"connected": True})
        self.assertIn("detect_ms", result.timing_breakdown)
        self.assertGreater(result.memory_mb, 0)
        self.logger.log_frame.assert_called_once()

    def test_frame_not_ready_is_skipped(self):
        engine = self._engine()
        self.assertIsNone(engine.tick(None, now=0.0))
        self.adapter.detect_objects.assert_not_called()

    def test_skipped_ticks_reuse_last_detections(self):
        engine = self._engine()
        first = engine.tick(_frame(), now=0.0)
        second = engine.tick(_frame(), now=0.05)

        self.assertFalse(second.detection_ran)
        self.assertIs(second.detections, first.detections)
        self.assertEqual(second.analysis, first.analysis)
        self.assertEqual(self.adapter.detect_objects.call_count, 1)
        self.assertEqual(self.logger.log_frame.call_count, 1)

    def test_detection_rate_is_bounded(self):
        engine = self._engine()
        # one simulated second at 60 fps
        for i in range(60):
            engine.tick(_frame(), now=i / 60)
        self.assertLessEqual(self.adapter.detect_objects.call_count, 10)

    def test_detection_failure_keeps_previous_set(self):
        engine = self._engine()
        engine.tick(_frame(), now=0.0)
        self.adapter.detect_objects.side_effect = RuntimeError("backend crashed")

        result = engine.tick(_frame(), now=0.2)

        self.assertTrue(result.detection_ran)
        self.assertEqual(result.detections, (PERSON, PHONE))
        self.assertEqual(result.faces, (FACE,))
        self.logger.error.assert_called_once()

    def test_no_detections_while_models_initialize(self):
        self.models.is_model_ready.return_value = False
        self.models.status.return_value = {"ready": False, "real": False}
        engine = self._engine()

        result = engine.tick(_frame(), now=0.0)

        self.assertEqual(result.detections, ())
        self.assertEqual(result.faces, ())
        self.adapter.detect_objects.assert_not_called()
        self.assertEqual(result.analysis.student_count, 0)

    @patch("sentinel_engine.detect_fire_and_smoke")
    def test_fire_smoke_runs_only_on_safety_detection_ticks(self, mock_fire):
        mock_fire.return_value = FireSmokeAnalysis(fire_detected=True, smoke_detected=False)
        engine = self._engine(module="safety-detection")

        first = engine.tick(_frame(), now=0.0)
        second = engine.tick(_frame(), now=0.05)

        self.assertIsInstance(first.analysis, SafetyAnalysis)
        self.assertTrue(first.analysis.fire_detected)
        self.assertTrue(second.analysis.fire_detected)
        self.assertEqual(second.analysis.system_status, "emergency")
        mock_fire.assert_called_once()

    @patch("sentinel_engine.detect_fire_and_smoke")
    def test_other_modules_skip_fire_smoke(self, mock_fire):
        engine = self._engine(module="occupancy-monitoring")
        engine.tick(_frame(), now=0.0)
        mock_fire.assert_not_called()

    def test_set_module_switches_aggregation(self):
        engine = self._engine()
        engine.tick(_frame(), now=0.0)

        engine.set_module(MonitoringModule.SAFETY)
        result = engine.tick(_frame(), now=0.05)

        self.assertIsInstance(result.analysis, SafetyAnalysis)
        self.assertFalse(result.analysis.fire_detected)
        self.assertEqual(result.analysis.people_count, 1)

    def test_fps_over_tick_times(self):
        engine = self._engine()
        for t in (0.0, 0.1, 0.2):
            result = engine.tick(_frame(), now=t)
        self.assertAlmostEqual(result.fps, 10.0)

    def test_result_queue_drops_oldest(self):
        engine = self._engine()
        results = [engine.tick(_frame(), now=i * 0.2) for i in range(3)]
        for r in results:
            engine._publish(r)

        self.assertIs(engine.get_latest_result(), results[1])
        self.assertIs(engine.get_latest_result(), results[2])
        self.assertIsNone(engine.get_latest_result())

    def test_result_to_dict_omits_pixels(self):
        engine = self._engine()
        data = engine.tick(_frame(), now=0.0).to_dict()
        self.assertNotIn("frame", data)
        self.assertEqual(data["detections"][0]["label"], "person")
        self.assertEqual(data["analysis"]["student_count"], 1)

    def test_start_runs_loop_and_stop_releases(self):
        self.camera.read_frame.side_effect = lambda: _frame()
        engine = self._engine()

        engine.start()
        try:
            self.models.initialize_in_background.assert_called_once()
            result = None
            deadline = time.monotonic() + 2.0
            while result is None and time.monotonic() < deadline:
                result = engine.get_latest_result()
                time.sleep(0.01)
        finally:
            engine.stop()

        self.assertIsNotNone(result)
        self.assertFalse(engine.running)
        self.camera.release.assert_called_once()
        self.models.release.assert_called_once()
        self.logger.close.assert_called_once()

    def test_stop_during_model_load_releases_late_backend(self):
        gate = threading.Event()
        loading = threading.Event()
        handle = MagicMock(name="object_backend")

        def slow_object_loader():
            loading.set()
            gate.wait(5.0)
            return handle

        models = ModelLifecycleManager(
            object_loader=slow_object_loader,
            face_loader=None,
            runtime_ready=lambda: ["CPUExecutionProvider"],
            sleep=MagicMock(),
        )
        self.camera.read_frame.return_value = None
        engine = SentinelEngine(
            {"engine": {"module": "classroom-behavior"}},
            camera=self.camera,
            model_manager=models,
            adapter=self.adapter,
            logger=self.logger,
        )

        engine.start()
        self.assertTrue(loading.wait(5.0))
        engine.stop()
        gate.set()
        engine._init_thread.join(5.0)

        self.assertIsNone(models.object_backend)
        handle.release.assert_called_once()
        self.assertFalse(models.has_real_models())

    def test_failing_ticks_are_paced(self):
        self.camera.read_frame.side_effect = lambda: _frame()
        engine = self._engine()
        engine.target_fps = 30.0
        calls = []

        def failing_tick(frame, now=None):
            calls.append(now)
            raise RuntimeError("tick failed")

        engine.tick = failing_tick
        engine.start()
        try:
            time.sleep(0.5)
        finally:
            engine.stop()

        self.assertGreater(len(calls), 0)
        self.assertLessEqual(len(calls), 20)

    def test_raising_frame_source_keeps_loop_alive(self):
        self.camera.read_frame.side_effect = RuntimeError("device lost")
        engine = self._engine()
        engine.target_fps = 30.0

        engine.start()
        try:
            time.sleep(0.2)
            self.assertTrue(engine._loop_thread.is_alive())
        finally:
            engine.stop()

        self.logger.error.assert_called()
        self.assertLessEqual(self.camera.read_frame.call_count, 10)


if __name__ == '__main__':
    unittest.main()
