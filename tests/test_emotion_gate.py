"""
Emotion gate tests: rule modes, anger meter and trigger notifications.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import unittest

from expression_engine.expression_calibrator import ExpressionClass
from expression_engine.emotion_gate import EmotionGate, GateStatus, RuleMode


class TestRequireOne(unittest.TestCase):

    def setUp(self):
        self.gate = EmotionGate(RuleMode.REQUIRE_ONE, required=ExpressionClass.SMILE, fill_time=1.0, name="staff")
        self.reasons = []
        self.gate.add_trigger_listener(self.reasons.append)
        self.gate.enter()

    def test_outside_never_fills(self):
        self.gate.exit()
        self.assertEqual(self.gate.update(5.0, ExpressionClass.SAD), GateStatus.OUTSIDE)
        self.assertEqual(self.gate.anger, 0.0)
        self.assertEqual(self.reasons, [])

    def test_required_expression_is_safe(self):
        self.assertEqual(self.gate.update(0.5, ExpressionClass.SMILE), GateStatus.SAFE)
        self.assertEqual(self.gate.anger, 0.0)

    def test_meter_fills_and_triggers_once(self):
        """Breaking the rule for fill_time seconds triggers exactly once."""
        self.assertEqual(self.gate.update(0.5, ExpressionClass.NEUTRAL), GateStatus.WARNING)
        self.assertAlmostEqual(self.gate.anger, 0.5)
        self.assertAlmostEqual(self.gate.seconds_left, 0.5)
        self.assertEqual(self.gate.update(0.6, ExpressionClass.SAD), GateStatus.TRIGGERED)
        self.assertEqual(self.gate.anger, 1.0)
        self.gate.update(1.0, ExpressionClass.SAD)
        self.assertEqual(self.reasons, ["staff: failed emotion check (need smile)"])

    def test_safe_resets_meter(self):
        self.gate.update(0.5, ExpressionClass.SAD)
        self.gate.update(0.1, ExpressionClass.SMILE)
        self.assertEqual(self.gate.anger, 0.0)
        self.gate.update(0.5, ExpressionClass.SAD)
        self.assertEqual(self.reasons, [])

    def test_meter_holds_without_reset_when_safe(self):
        self.gate.reset_when_safe = False
        self.gate.update(0.5, ExpressionClass.SAD)
        self.gate.update(0.1, ExpressionClass.SMILE)
        self.assertAlmostEqual(self.gate.anger, 0.5)
        self.assertEqual(self.gate.update(0.5, ExpressionClass.SAD), GateStatus.TRIGGERED)

    def test_rearm_enforces_again(self):
        self.gate.update(2.0, ExpressionClass.SAD)
        self.gate.rearm()
        self.assertEqual(self.gate.anger, 0.0)
        self.gate.update(2.0, ExpressionClass.SAD)
        self.assertEqual(len(self.reasons), 2)

    def test_negative_dt_counts_as_zero(self):
        self.gate.update(-1.0, ExpressionClass.SAD)
        self.assertEqual(self.gate.anger, 0.0)

    def test_failing_listener_is_logged(self):
        def boom(reason):
            raise RuntimeError(reason)
        self.gate.add_trigger_listener(boom)
        with self.assertLogs("expression_engine.emotion_gate", level="WARNING"):
            self.gate.update(2.0, ExpressionClass.SAD)
        self.assertEqual(len(self.reasons), 1)


class TestBlockOne(unittest.TestCase):

    def test_blocked_expression_fills_meter(self):
        gate = EmotionGate(RuleMode.BLOCK_ONE, blocked=ExpressionClass.SAD, fill_time=0.5, name="library")
        reasons = []
        gate.add_trigger_listener(reasons.append)
        gate.enter()
        self.assertEqual(gate.update(1.0, ExpressionClass.SMILE), GateStatus.SAFE)
        self.assertEqual(gate.update(1.0, ExpressionClass.NEUTRAL), GateStatus.SAFE)
        self.assertEqual(gate.update(0.5, ExpressionClass.SAD), GateStatus.TRIGGERED)
        self.assertEqual(reasons, ["library: failed emotion check (forbid sad)"])

    def test_rule_text_and_state(self):
        gate = EmotionGate(RuleMode.BLOCK_ONE, blocked=ExpressionClass.SMILE)
        self.assertEqual(gate.rule_text, "Forbidden: smile")
        self.assertEqual(EmotionGate().rule_text, "Required: smile")
        state = gate.get_state()
        self.assertEqual(state["mode"], "block_one")
        self.assertEqual(state["status"], "outside")
        self.assertIsNone(state["current"])


if __name__ == "__main__":
    unittest.main()
