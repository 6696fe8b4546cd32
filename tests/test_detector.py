"""
Detection loop tests.

Drives ExpressionStateDetector with a manual blendshape source and explicit
timestamps via step(); one test runs the real background thread briefly.
"""

import sys
import os
import time

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest

from expression_engine import (
    BlendshapeFrame,
    BlendshapeSource,
    EmotionGate,
    ExpressionClass,
    GateStatus,
    RuleMode,
    StaticBlendshapeSource,
)
from tests.fixtures.synthetic_blendshapes import calibrate_detector


class UnavailableSource(BlendshapeSource):
    """Source that never comes up (e.g. missing camera)."""

    def read(self):
        return BlendshapeFrame()

    def is_available(self):
        return False

    def get_name(self):
        return "unavailable"


class TestDetectorStep(unittest.TestCase):

    def setUp(self):
        from detector import ExpressionStateDetector
        self.source = StaticBlendshapeSource()
        self.detector = ExpressionStateDetector(self.source)

    def test_step_before_calibration_soft_fails(self):
        from tests.fixtures.synthetic_blendshapes import make_smile
        self.source.set_frame(make_smile(), True)
        state = self.detector.step(now=1.0)
        self.assertEqual(state.expression, ExpressionClass.NEUTRAL)
        self.assertEqual(state.confidence, 0.0)
        self.assertTrue(state.face_detected)
        self.assertFalse(state.is_calibrated)
        self.assertIs(self.detector.get_current_state(), state)
        self.assertEqual(self.detector.tick_count, 1)

    def test_calibration_through_steps(self):
        """Calibrating via the detector stores all three profiles and then classifies."""
        from tests.fixtures.synthetic_blendshapes import make_smile, make_sad
        t = calibrate_detector(self.detector, self.source)
        self.assertTrue(self.detector.calibrator.is_calibrated)

        self.source.set_frame(make_smile(0.75), True)
        state = self.detector.step(now=t)
        self.assertEqual(state.expression, ExpressionClass.SMILE)
        self.assertGreater(state.confidence, 0.5)
        self.assertTrue(self.detector.is_expression(ExpressionClass.SMILE))

        self.source.set_frame(make_sad(0.8), True)
        self.detector.step(now=t + 0.1)
        self.assertEqual(self.detector.detect()[0], ExpressionClass.SAD)

    def test_start_calibration_needs_face(self):
        self.source.clear()
        self.assertFalse(self.detector.start_calibration(ExpressionClass.SMILE, now=0.0))
        self.source.set_expression_preset("smile")
        self.detector.step(now=0.0)
        self.assertTrue(self.detector.start_calibration(ExpressionClass.SMILE, now=0.0))
        status = self.detector.get_calibration_status()
        self.assertTrue(status["isCalibrating"])
        self.assertEqual(status["currentCalibrating"], "smile")

    def test_state_dict(self):
        self.source.set_expression_preset("smile")
        self.detector.start_calibration(ExpressionClass.SMILE, now=0.0)
        data = self.detector.step(now=0.5).to_dict()
        self.assertEqual(data["expression"], "neutral")
        self.assertTrue(data["faceDetected"])
        self.assertTrue(data["isCalibrating"])
        self.assertEqual(data["currentCalibrating"], "smile")
        self.assertAlmostEqual(data["calibrationProgress"], 0.25)
        self.assertIsNone(data["gate"])

    def test_reset_calibration(self):
        calibrate_detector(self.detector, self.source)
        self.detector.reset_calibration()
        self.assertFalse(self.detector.get_calibration_status()["isCalibrated"])

    def test_update_callback_errors_are_logged(self):
        from detector import ExpressionStateDetector
        seen = []

        def callback(state):
            seen.append(state)
            raise RuntimeError("callback failure")

        detector = ExpressionStateDetector(self.source, update_callback=callback)
        with self.assertLogs("detector", level="WARNING"):
            state = detector.step(now=0.0)
        self.assertEqual(seen, [state])


class TestDetectorGate(unittest.TestCase):

    def setUp(self):
        from detector import ExpressionStateDetector
        self.source = StaticBlendshapeSource()
        self.gate = EmotionGate(RuleMode.REQUIRE_ONE, required=ExpressionClass.SMILE, fill_time=1.0)
        self.detector = ExpressionStateDetector(self.source, gate=self.gate)

    def test_gate_waits_for_calibration(self):
        """Soft-fail NEUTRAL results never fill the meter."""
        from tests.fixtures.synthetic_blendshapes import make_sad
        self.gate.enter()
        self.source.set_frame(make_sad(), True)
        self.detector.step(now=0.0)
        self.detector.step(now=5.0)
        self.assertEqual(self.gate.anger, 0.0)
        self.assertEqual(self.gate.status, GateStatus.SAFE)

    def test_gate_triggers_on_wrong_expression(self):
        from tests.fixtures.synthetic_blendshapes import make_sad
        t = calibrate_detector(self.detector, self.source)
        reasons = []
        self.gate.add_trigger_listener(reasons.append)
        self.detector.with_gate(lambda gate: gate.enter())

        self.source.set_frame(make_sad(), True)
        self.detector.step(now=t)
        state = self.detector.step(now=t + 1.5)
        self.assertEqual(state.gate["status"], "triggered")
        self.assertEqual(len(reasons), 1)

    def test_with_gate_without_gate(self):
        self.detector.set_gate(None)
        self.assertIsNone(self.detector.with_gate(lambda gate: gate.enter()))


class TestDetectorFlowAndFrames(unittest.TestCase):

    def setUp(self):
        from detector import ExpressionStateDetector
        self.source = StaticBlendshapeSource()
        self.detector = ExpressionStateDetector(self.source)

    def test_flow_confirm_starts_recording(self):
        from expression_engine import FlowResult
        state = self.detector.open_flow()
        self.assertEqual(state["phase"], "calibrating")
        self.assertEqual(state["requiredExpression"], "neutral")

        self.detector.feed_manual_frame({"jawOpen": 0.1}, True)
        result, state = self.detector.confirm_flow(now=0.0)
        self.assertEqual(result, FlowResult.CALIBRATION_STARTED)
        self.assertTrue(state["waitingForCalibration"])

        for i in range(1, 21):
            self.detector.step(now=i * 0.1)
        state = self.detector.get_flow_state()
        self.assertFalse(state["waitingForCalibration"])
        self.assertEqual(state["requiredExpression"], "smile")
        self.assertEqual(self.detector.close_flow()["phase"], "idle")

    def test_feed_manual_frame_updates_current_frame(self):
        from tests.fixtures.synthetic_blendshapes import make_smile
        calibrate_detector(self.detector, self.source)
        self.assertTrue(self.detector.feed_manual_frame(make_smile(0.75), True))
        self.assertEqual(self.detector.detect()[0], ExpressionClass.SMILE)

    def test_feed_manual_frame_rejected_for_other_sources(self):
        from detector import ExpressionStateDetector
        detector = ExpressionStateDetector(UnavailableSource())
        self.assertFalse(detector.feed_manual_frame({"mouthSmileLeft": 1.0}, True))


class TestDetectorLoop(unittest.TestCase):

    def test_unavailable_source_does_not_start(self):
        from detector import ExpressionStateDetector
        detector = ExpressionStateDetector(UnavailableSource())
        with self.assertLogs("detector", level="ERROR"):
            self.assertFalse(detector.start_detection())
        self.assertFalse(detector.is_running)

    def test_background_loop_ticks(self):
        from detector import ExpressionStateDetector
        detector = ExpressionStateDetector(StaticBlendshapeSource(), detection_interval=0.01)
        self.assertTrue(detector.start_detection())
        try:
            deadline = time.monotonic() + 2.0
            while detector.tick_count == 0 and time.monotonic() < deadline:
                time.sleep(0.01)
            self.assertGreater(detector.tick_count, 0)
            self.assertIsNotNone(detector.get_current_state())
        finally:
            detector.stop_detection()
        self.assertFalse(detector.is_running)
        self.assertIsNone(detector.detection_thread)


if __name__ == "__main__":
    unittest.main()
