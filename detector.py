"""
=============================================================================
EXPRESSION STATE DETECTOR (detector.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This is the loop that drives expression calibration and detection. Every tick
it:

  1. Reads the latest blendshapes from a BlendshapeSource (MediaPipe webcam
     tracking, or frames posted over HTTP in "manual" mode).
  2. Feeds them to the ExpressionCalibrator while a calibration is recording.
  3. Lets the guided CalibrationFlow notice finished recordings.
  4. Classifies the current face against the calibrated profiles
     (expression + confidence).
  5. Updates the optional EmotionGate (rule zone with an anger meter).
  6. Stores an ExpressionState snapshot that routes.py serves to clients.

The calibrator itself is single-threaded. When the loop runs on a background
thread, every calibrator/flow/gate access goes through self.lock, so HTTP
handlers and the loop never touch it at the same time.

Everything is injected: the caller builds the source, calibrator, flow and
gate and hands them in. Nothing here is a process-wide singleton.
=============================================================================
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Tuple

import config
from expression_engine import (
    BlendshapeFrame,
    BlendshapeSource,
    CalibrationFlow,
    EmotionGate,
    ExpressionCalibrator,
    ExpressionClass,
    FlowResult,
    StaticBlendshapeSource,
)
from expression_engine.helpers import build_gate

logger = logging.getLogger(__name__)


@dataclass
class ExpressionState:
    """Snapshot of one detection tick."""
    expression: ExpressionClass
    confidence: float
    face_detected: bool
    timestamp: float
    is_calibrated: bool
    is_calibrating: bool
    calibration_progress: float
    current_calibrating: Optional[ExpressionClass] = None
    gate: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "expression": self.expression.value,
            "confidence": round(float(self.confidence), 4),
            "faceDetected": bool(self.face_detected),
            "timestamp": self.timestamp,
            "isCalibrated": self.is_calibrated,
            "isCalibrating": self.is_calibrating,
            "calibrationProgress": round(float(self.calibration_progress), 4),
            "currentCalibrating": self.current_calibrating.value if self.current_calibrating else None,
            "gate": self.gate,
        }


class ExpressionStateDetector:
    """
    Owns one blendshape source and one calibrator and ticks them together.

    Use step() to drive it from your own loop, or start_detection() to run
    step() on a daemon thread every detection_interval seconds.
    """

    def __init__(
        self,
        source: BlendshapeSource,
        calibrator: Optional[ExpressionCalibrator] = None,
        flow: Optional[CalibrationFlow] = None,
        gate: Optional[EmotionGate] = None,
        detection_interval: float = config.DETECTION_INTERVAL_SEC,
        update_callback: Optional[Callable[[ExpressionState], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            source: Where blendshapes come from
            calibrator: Calibrator to drive (a default one from config if None)
            flow: Guided calibration flow bound to the same calibrator (created if None)
            gate: Optional emotion rule zone updated with each detection
            detection_interval: Seconds between ticks in the background loop
            update_callback: Called with every new ExpressionState (errors are logged)
            clock: Monotonic clock in seconds (injectable for tests)
        """
        self.source = source
        self.calibrator = calibrator or ExpressionCalibrator(
            calibration_duration=config.CALIBRATION_DURATION_SEC,
            sample_interval=config.CALIBRATION_SAMPLE_INTERVAL_SEC,
        )
        self.flow = flow or CalibrationFlow(
            self.calibrator,
            match_threshold=config.FLOW_MATCH_THRESHOLD,
            max_failures=config.FLOW_MAX_FAILURES,
        )
        self.gate = gate
        self.detection_interval = max(0.001, float(detection_interval))
        self.update_callback = update_callback
        self._clock = clock

        # Threading and control
        self.lock = threading.Lock()
        self.detection_thread: Optional[threading.Thread] = None
        self.is_running = False

        self.current_state: Optional[ExpressionState] = None
        self._last_frame: Optional[BlendshapeFrame] = None
        self._last_step_time: Optional[float] = None
        self.tick_count = 0

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------
    def step(self, now: Optional[float] = None) -> ExpressionState:
        """
        Run one detection tick and return the new state.

        Args:
            now: Timestamp for this tick in seconds (defaults to the clock)
        """
        now = self._clock() if now is None else float(now)
        frame = self.source.read()

        with self.lock:
            self._last_frame = frame
            if self.calibrator.is_calibrating:
                self.calibrator.tick(now, frame.blendshapes, frame.face_detected)
            self.flow.update()

            expression, confidence = self.calibrator.detect_expression(frame.blendshapes, frame.face_detected)

            dt = 0.0 if self._last_step_time is None else now - self._last_step_time
            self._last_step_time = now
            # The gate only judges real classifications
            if self.gate is not None and self.calibrator.is_calibrated:
                self.gate.update(dt, expression)

            state = ExpressionState(
                expression=expression,
                confidence=confidence,
                face_detected=frame.face_detected,
                timestamp=now,
                is_calibrated=self.calibrator.is_calibrated,
                is_calibrating=self.calibrator.is_calibrating,
                calibration_progress=self.calibrator.calibration_progress,
                current_calibrating=self.calibrator.current_calibrating_class,
                gate=self.gate.get_state() if self.gate is not None else None,
            )
            self.current_state = state
            self.tick_count += 1

        if self.update_callback:
            try:
                self.update_callback(state)
            except Exception as e:
                logger.warning("Error in update callback: %s", e)
        return state

    def start_detection(self) -> bool:
        """
        Start the background detection loop.

        Returns:
            bool: True if the loop started, False if the source is unavailable
        """
        if self.is_running:
            self.stop_detection()

        if not self.source.is_available():
            logger.error("Blendshape source %s is not available", self.source.get_name())
            return False

        with self.lock:
            self.current_state = None
            self._last_step_time = None

        logger.info("Expression detection started: source=%s", self.source.get_name())
        self.is_running = True
        self.detection_thread = threading.Thread(target=self._detection_loop, daemon=True)
        self.detection_thread.start()
        return True

    def stop_detection(self) -> None:
        """
        Stop the loop (waiting up to 2 seconds for the thread) and close the source.
        Calibration profiles stay in memory.
        """
        self.is_running = False
        if self.detection_thread and self.detection_thread.is_alive():
            self.detection_thread.join(timeout=2.0)
        self.detection_thread = None
        self.source.close()

    def _detection_loop(self) -> None:
        while self.is_running:
            started = time.monotonic()
            try:
                self.step()
            except Exception as e:
                logger.warning("Error in detection loop: %s", e)
            elapsed = time.monotonic() - started
            if elapsed < self.detection_interval:
                time.sleep(self.detection_interval - elapsed)

    def _current_frame(self) -> BlendshapeFrame:
        """Last frame seen by the loop, or a fresh read before the first tick. Caller holds the lock."""
        if self._last_frame is None:
            self._last_frame = self.source.read()
        return self._last_frame

    # ------------------------------------------------------------------
    # Calibration (thread-safe wrappers)
    # ------------------------------------------------------------------
    def start_calibration(self, expression: ExpressionClass, now: Optional[float] = None) -> bool:
        """Start recording expression using the current face-detected flag."""
        now = self._clock() if now is None else float(now)
        with self.lock:
            frame = self._current_frame()
            return self.calibrator.start_calibration(expression, frame.face_detected, now)

    def reset_calibration(self) -> None:
        with self.lock:
            self.calibrator.reset_calibration()

    def get_calibration_status(self) -> dict:
        with self.lock:
            return self.calibrator.get_status()

    def detect(self) -> Tuple[ExpressionClass, float]:
        """Classify the most recent frame."""
        with self.lock:
            frame = self._current_frame()
            return self.calibrator.detect_expression(frame.blendshapes, frame.face_detected)

    def is_expression(self, target: ExpressionClass, threshold: float = config.EXPRESSION_MATCH_THRESHOLD) -> bool:
        with self.lock:
            frame = self._current_frame()
            return self.calibrator.is_expression(target, frame.blendshapes, frame.face_detected, threshold)

    def get_current_state(self) -> Optional[ExpressionState]:
        """
        Get the latest state (thread-safe). None until the first tick after start.
        """
        with self.lock:
            return self.current_state

    # ------------------------------------------------------------------
    # Guided flow
    # ------------------------------------------------------------------
    def open_flow(self) -> dict:
        with self.lock:
            self.flow.open()
            return self.flow.get_state()

    def close_flow(self) -> dict:
        with self.lock:
            self.flow.close()
            return self.flow.get_state()

    def confirm_flow(self, now: Optional[float] = None) -> Tuple[FlowResult, dict]:
        now = self._clock() if now is None else float(now)
        with self.lock:
            frame = self._current_frame()
            result = self.flow.confirm(frame.blendshapes, frame.face_detected, now)
            return result, self.flow.get_state()

    def get_flow_state(self) -> dict:
        with self.lock:
            return self.flow.get_state()

    # ------------------------------------------------------------------
    # Emotion gate
    # ------------------------------------------------------------------
    def set_gate(self, gate: Optional[EmotionGate]) -> None:
        with self.lock:
            self.gate = gate

    def configure_gate(self, data: Mapping[str, Any]) -> dict:
        """
        Create the gate or update the existing one in place from a JSON body
        (see helpers.build_gate). Raises ValueError/TypeError on bad fields.
        """
        with self.lock:
            self.gate = build_gate(data, current=self.gate)
            return self.gate.get_state()

    def with_gate(self, action: Callable[[EmotionGate], None]) -> Optional[dict]:
        """Run action(gate) under the lock; returns the gate state, or None without a gate."""
        with self.lock:
            if self.gate is None:
                return None
            action(self.gate)
            return self.gate.get_state()

    def feed_manual_frame(self, blendshapes: Mapping[str, float], face_detected: bool) -> bool:
        """
        Push a frame into a manual source. Returns False for sources that
        produce their own frames (e.g. MediaPipe).
        """
        if not isinstance(self.source, StaticBlendshapeSource):
            return False
        self.source.set_frame(blendshapes, face_detected)
        with self.lock:
            self._last_frame = self.source.read()
        return True
