"""
Expression Calibrator Module

Builds per-user reference profiles for a small fixed set of facial expressions
(Neutral, Smile, Sad) from short recording windows of blendshape coefficients,
then classifies live samples against those profiles by Euclidean distance.

The calibrator is tick-driven: it never sleeps or schedules anything itself.
The caller supplies timestamps and the current blendshape sample on every tick
(see detector.py for the loop that drives it).

States:
    Idle       -> Recording(target)   on a successful start_calibration()
    Recording  -> Idle                when the window elapses inside tick()

Typical use:
    calibrator = ExpressionCalibrator()
    calibrator.start_calibration(ExpressionClass.SMILE, face_detected=True, now=t0)
    while calibrator.is_calibrating:
        calibrator.tick(now, blendshapes, face_detected)
    expression, confidence = calibrator.detect_expression(blendshapes, face_detected)
"""

import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class ExpressionClass(Enum):
    """Expressions the calibrator can learn and recognize."""
    NEUTRAL = "neutral"
    SMILE = "smile"
    SAD = "sad"

    @classmethod
    def from_name(cls, name: str) -> "ExpressionClass":
        """
        Parse an expression name case-insensitively ("smile", "SMILE", "Smile").

        Raises:
            ValueError: if the name is not a known expression
        """
        key = (name or "").strip().lower()
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(f"Unknown expression: {name!r}")


# Blendshapes compared between live samples and calibrated profiles
FEATURE_KEYS: Tuple[str, ...] = (
    "mouthSmileLeft", "mouthSmileRight",
    "mouthFrownLeft", "mouthFrownRight",
    "browDownLeft", "browDownRight",
    "browInnerUp", "browOuterUpLeft", "browOuterUpRight",
    "mouthPucker", "jawOpen", "eyeSquintLeft", "eyeSquintRight",
)

DEFAULT_CALIBRATION_DURATION = 2.0
DEFAULT_SAMPLE_INTERVAL = 0.1

# Keeps the confidence ratio finite when every distance is zero
CONFIDENCE_EPSILON = 1e-3
# Tuned for exactly three classes (no-information ratio is 1/3, not 1/2)
CONFIDENCE_SCALE = 2.0

# Float slack for timestamp comparisons (0.7 - 0.6 < 0.1 in binary floats)
_TIME_EPSILON = 1e-9

FeatureVector = Dict[str, float]


def _feature_value(sample: Mapping[str, float], key: str) -> float:
    value = float(sample.get(key, 0.0) or 0.0)
    # NaN/inf would poison every profile mean and distance
    return value if math.isfinite(value) else 0.0


def restrict_to_features(sample: Optional[Mapping[str, float]]) -> FeatureVector:
    """Snapshot a blendshape mapping onto FEATURE_KEYS; missing or non-finite values become 0.0."""
    sample = sample or {}
    return {key: _feature_value(sample, key) for key in FEATURE_KEYS}


def feature_array(sample: Optional[Mapping[str, float]]) -> np.ndarray:
    """Same as restrict_to_features but as a float64 vector in FEATURE_KEYS order."""
    sample = sample or {}
    return np.array([_feature_value(sample, key) for key in FEATURE_KEYS], dtype=np.float64)


@dataclass
class CalibrationSession:
    """In-progress recording for one expression (discarded after finalization)."""
    target: ExpressionClass
    start_time: float
    last_sample_time: Optional[float] = None
    samples: List[FeatureVector] = field(default_factory=list)
    progress: float = 0.0


class ExpressionCalibrator:
    """
    Records calibration windows and classifies samples against the resulting profiles.

    Not thread-safe: one caller owns an instance. ExpressionStateDetector wraps
    every call in a lock when it runs the loop on a background thread.
    """

    def __init__(
        self,
        calibration_duration: float = DEFAULT_CALIBRATION_DURATION,
        sample_interval: float = DEFAULT_SAMPLE_INTERVAL,
    ):
        """
        Args:
            calibration_duration: Length of one recording window in seconds (> 0)
            sample_interval: Minimum spacing between recorded samples in seconds (>= 0)
        """
        if calibration_duration <= 0:
            raise ValueError("calibration_duration must be positive")
        if sample_interval < 0:
            raise ValueError("sample_interval must not be negative")
        self.calibration_duration = float(calibration_duration)
        self.sample_interval = float(sample_interval)

        self._profiles: Dict[ExpressionClass, FeatureVector] = {}
        self._session: Optional[CalibrationSession] = None

        self._on_started: List[Callable[[ExpressionClass], None]] = []
        self._on_complete: List[Callable[[ExpressionClass], None]] = []
        self._on_all_complete: List[Callable[[], None]] = []

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------
    @property
    def is_calibrated(self) -> bool:
        return all(cls in self._profiles for cls in ExpressionClass)

    @property
    def is_calibrating(self) -> bool:
        return self._session is not None

    @property
    def calibration_progress(self) -> float:
        """Fraction of the current window elapsed (0 when idle)."""
        return self._session.progress if self._session else 0.0

    @property
    def current_calibrating_class(self) -> Optional[ExpressionClass]:
        return self._session.target if self._session else None

    @property
    def calibrated_classes(self) -> List[ExpressionClass]:
        return [cls for cls in ExpressionClass if cls in self._profiles]

    def get_profile(self, expression: ExpressionClass) -> Optional[FeatureVector]:
        """Copy of the stored profile for an expression, or None if not calibrated."""
        profile = self._profiles.get(expression)
        return dict(profile) if profile is not None else None

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------
    def add_listener(
        self,
        on_started: Optional[Callable[[ExpressionClass], None]] = None,
        on_complete: Optional[Callable[[ExpressionClass], None]] = None,
        on_all_complete: Optional[Callable[[], None]] = None,
    ) -> None:
        """Register callbacks; they run synchronously inside start_calibration()/tick()."""
        if on_started:
            self._on_started.append(on_started)
        if on_complete:
            self._on_complete.append(on_complete)
        if on_all_complete:
            self._on_all_complete.append(on_all_complete)

    def clear_listeners(self) -> None:
        self._on_started.clear()
        self._on_complete.clear()
        self._on_all_complete.clear()

    def _notify(self, listeners: List[Callable], *args) -> None:
        for callback in list(listeners):
            try:
                callback(*args)
            except Exception as e:
                logger.warning("Calibration listener failed: %s", e)

    # ------------------------------------------------------------------
    # Calibration
    # ------------------------------------------------------------------
    def start_calibration(
        self,
        target: ExpressionClass,
        face_detected: bool,
        now: Optional[float] = None,
    ) -> bool:
        """
        Begin recording a profile for target.

        Returns:
            False (and changes nothing) when no face is detected or a session
            is already recording; True once the session has started.
        """
        if not face_detected:
            logger.warning("Calibration of %s rejected: no face detected", target.value)
            return False
        if self._session is not None:
            logger.info(
                "Calibration of %s rejected: %s is still recording",
                target.value, self._session.target.value,
            )
            return False

        start = time.monotonic() if now is None else float(now)
        self._session = CalibrationSession(target=target, start_time=start)
        logger.info("Calibrating %s...", target.value)
        self._notify(self._on_started, target)
        return True

    def tick(
        self,
        now: float,
        sample: Optional[Mapping[str, float]],
        face_detected: bool,
    ) -> None:
        """
        Advance the active session: update progress, record a sample when the
        interval allows and a face is present, and finalize once the window elapses.
        No-op when idle.
        """
        session = self._session
        if session is None:
            return

        now = float(now)
        elapsed = now - session.start_time
        session.progress = max(session.progress, min(1.0, max(0.0, elapsed / self.calibration_duration)))

        due = (
            session.last_sample_time is None
            or now - session.last_sample_time >= self.sample_interval - _TIME_EPSILON
        )
        if due:
            session.last_sample_time = now
            if face_detected and sample is not None:
                session.samples.append(restrict_to_features(sample))

        if elapsed >= self.calibration_duration - _TIME_EPSILON:
            session.progress = 1.0
            self._finish_calibration()

    def _finish_calibration(self) -> None:
        session = self._session
        self._session = None
        if session is None:
            return

        if not session.samples:
            logger.info("Calibration of %s discarded: no samples recorded", session.target.value)
            return

        stacked = np.array([[s[key] for key in FEATURE_KEYS] for s in session.samples], dtype=np.float64)
        means = stacked.mean(axis=0)
        self._profiles[session.target] = {key: float(v) for key, v in zip(FEATURE_KEYS, means)}

        logger.info("%s calibrated with %d samples", session.target.value, len(session.samples))
        self._notify(self._on_complete, session.target)
        if self.is_calibrated:
            self._notify(self._on_all_complete)

    def reset_calibration(self) -> None:
        """Drop every profile and cancel any recording session."""
        self._profiles.clear()
        self._session = None

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------
    def detect_expression(
        self,
        sample: Optional[Mapping[str, float]],
        face_detected: bool,
    ) -> Tuple[ExpressionClass, float]:
        """
        Detect which calibrated expression matches the current sample.

        Returns:
            (expression, confidence in [0, 1]). Falls back to (NEUTRAL, 0.0)
            until all three expressions are calibrated, without a face, or for
            an empty sample.
        """
        if not self.is_calibrated or not face_detected or not sample:
            return ExpressionClass.NEUTRAL, 0.0

        current = feature_array(sample)
        distances = self.distances(current)

        closest = ExpressionClass.NEUTRAL
        min_distance = float("inf")
        for cls in ExpressionClass:
            if distances[cls] < min_distance:
                min_distance = distances[cls]
                closest = cls
        total_distance = sum(distances.values())

        confidence = 1.0 - (min_distance / (total_distance + CONFIDENCE_EPSILON))
        confidence = float(np.clip(confidence * CONFIDENCE_SCALE, 0.0, 1.0))
        return closest, confidence

    def distances(self, sample) -> Dict[ExpressionClass, float]:
        """Euclidean distance from sample (mapping or FEATURE_KEYS-ordered array) to each stored profile."""
        current = sample if isinstance(sample, np.ndarray) else feature_array(sample)
        return {
            cls: float(np.linalg.norm(current - feature_array(profile)))
            for cls, profile in self._profiles.items()
        }

    def is_expression(
        self,
        target: ExpressionClass,
        sample: Optional[Mapping[str, float]],
        face_detected: bool,
        threshold: float = 0.5,
    ) -> bool:
        """Check if the current sample matches target with at least threshold confidence."""
        detected, confidence = self.detect_expression(sample, face_detected)
        return detected == target and confidence >= threshold

    def get_status(self) -> dict:
        """JSON-friendly status snapshot."""
        current = self.current_calibrating_class
        return {
            "isCalibrated": self.is_calibrated,
            "isCalibrating": self.is_calibrating,
            "calibrationProgress": round(self.calibration_progress, 4),
            "currentCalibrating": current.value if current else None,
            "calibratedExpressions": [cls.value for cls in self.calibrated_classes],
        }
