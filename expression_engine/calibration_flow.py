"""
Calibration Flow Module

Guided onboarding on top of ExpressionCalibrator, without any UI:

  1. Calibration phase: record Neutral, Smile and Sad in that order. Each
     confirm() starts one recording window; the flow moves on once the
     calibrator has stored the profile (a window that recorded nothing is
     simply repeated).
  2. Testing phase: the user must show a fixed sequence of six expressions.
     Each confirm() classifies the current sample; a wrong answer counts as a
     failure and too many consecutive failures wipe the calibration and start
     over from step 1.
  3. Complete: listeners registered with on_complete are notified once.

The caller polls update() every tick so the flow can notice when a recording
window has finished.
"""

import logging
from enum import Enum
from typing import Callable, List, Mapping, Optional

from expression_engine.expression_calibrator import ExpressionCalibrator, ExpressionClass

logger = logging.getLogger(__name__)


class FlowPhase(Enum):
    IDLE = "idle"
    CALIBRATING = "calibrating"
    TESTING = "testing"
    COMPLETE = "complete"


class FlowResult(Enum):
    """Outcome of a confirm() call."""
    IGNORED = "ignored"
    CALIBRATION_STARTED = "calibration_started"
    CORRECT = "correct"
    WRONG = "wrong"
    RESTARTED = "restarted"


CALIBRATION_SEQUENCE = (
    ExpressionClass.NEUTRAL,
    ExpressionClass.SMILE,
    ExpressionClass.SAD,
)

TESTING_SEQUENCE = (
    ExpressionClass.SMILE,
    ExpressionClass.SAD,
    ExpressionClass.NEUTRAL,
    ExpressionClass.SAD,
    ExpressionClass.NEUTRAL,
    ExpressionClass.SMILE,
)


class CalibrationFlow:
    """Step-by-step calibration and verification driven by confirm()/update()."""

    def __init__(
        self,
        calibrator: ExpressionCalibrator,
        match_threshold: float = 0.4,
        max_failures: int = 3,
    ):
        self.calibrator = calibrator
        self.match_threshold = float(match_threshold)
        self.max_failures = max(1, int(max_failures))

        self.phase = FlowPhase.IDLE
        self.index = 0
        self.consecutive_failures = 0
        self._awaiting_calibration = False
        self._last_completed: Optional[ExpressionClass] = None
        self._on_complete: List[Callable[[], None]] = []

        calibrator.add_listener(on_complete=self._handle_profile_stored)

    @property
    def is_open(self) -> bool:
        return self.phase != FlowPhase.IDLE

    @property
    def is_waiting(self) -> bool:
        """True while a calibration window started by the flow is still recording."""
        return self._awaiting_calibration

    @property
    def required_expression(self) -> Optional[ExpressionClass]:
        """Expression the user should show for the current step."""
        if self.phase == FlowPhase.CALIBRATING:
            return CALIBRATION_SEQUENCE[self.index]
        if self.phase == FlowPhase.TESTING:
            return TESTING_SEQUENCE[self.index]
        return None

    def add_complete_listener(self, callback: Callable[[], None]) -> None:
        self._on_complete.append(callback)

    def open(self) -> None:
        """Start (or restart) the flow from the first calibration step."""
        self.calibrator.reset_calibration()
        self.phase = FlowPhase.CALIBRATING
        self.index = 0
        self.consecutive_failures = 0
        self._awaiting_calibration = False
        self._last_completed = None
        logger.info("Calibration flow opened")

    def close(self) -> None:
        self.phase = FlowPhase.IDLE
        self._awaiting_calibration = False

    def _handle_profile_stored(self, expression: ExpressionClass) -> None:
        self._last_completed = expression

    def confirm(
        self,
        sample: Optional[Mapping[str, float]],
        face_detected: bool,
        now: Optional[float] = None,
    ) -> FlowResult:
        """
        The user says "I'm showing the expression now".

        Ignored when the flow is idle or complete, without a face, or while a
        recording window is still running.
        """
        if self.phase in (FlowPhase.IDLE, FlowPhase.COMPLETE):
            return FlowResult.IGNORED
        if not face_detected or self._awaiting_calibration:
            return FlowResult.IGNORED

        if self.phase == FlowPhase.CALIBRATING:
            target = CALIBRATION_SEQUENCE[self.index]
            self._last_completed = None
            if self.calibrator.start_calibration(target, face_detected, now):
                self._awaiting_calibration = True
                return FlowResult.CALIBRATION_STARTED
            return FlowResult.IGNORED

        required = TESTING_SEQUENCE[self.index]
        if self.calibrator.is_expression(required, sample, face_detected, self.match_threshold):
            self._handle_correct_answer()
            return FlowResult.CORRECT
        return self._handle_wrong_answer(required)

    def update(self) -> None:
        """Poll once per tick; advances past a calibration step when its window ends."""
        if not self._awaiting_calibration or self.calibrator.is_calibrating:
            return
        self._awaiting_calibration = False

        target = CALIBRATION_SEQUENCE[self.index]
        if self._last_completed != target:
            logger.info("Calibration of %s produced no profile; repeating step", target.value)
            return

        self.index += 1
        if self.index >= len(CALIBRATION_SEQUENCE):
            self.phase = FlowPhase.TESTING
            self.index = 0
            logger.info("Calibration flow: testing phase")

    def _handle_correct_answer(self) -> None:
        self.consecutive_failures = 0
        self.index += 1
        if self.index < len(TESTING_SEQUENCE):
            return

        self.phase = FlowPhase.COMPLETE
        logger.info("Calibration flow complete")
        for callback in list(self._on_complete):
            try:
                callback()
            except Exception as e:
                logger.warning("Flow completion listener failed: %s", e)

    def _handle_wrong_answer(self, required: ExpressionClass) -> FlowResult:
        self.consecutive_failures += 1
        logger.info(
            "Expected %s (failure %d/%d)", required.value,
            self.consecutive_failures, self.max_failures,
        )
        if self.consecutive_failures >= self.max_failures:
            self.open()
            return FlowResult.RESTARTED
        return FlowResult.WRONG

    def get_state(self) -> dict:
        """JSON-friendly snapshot for the HTTP layer."""
        required = self.required_expression
        return {
            "phase": self.phase.value,
            "step": self.index,
            "requiredExpression": required.value if required else None,
            "consecutiveFailures": self.consecutive_failures,
            "maxFailures": self.max_failures,
            "waitingForCalibration": self._awaiting_calibration,
        }
