"""
Synthetic blendshape generator for calibrator tests.

Produces MediaPipe-style blendshape dicts for neutral, smiling and sad faces
and drives an ExpressionCalibrator through full recording windows with
deterministic timestamps (no real clock, no camera).
"""

from typing import Dict, Mapping, Optional

from expression_engine.expression_calibrator import ExpressionCalibrator, ExpressionClass, FEATURE_KEYS


def make_neutral() -> Dict[str, float]:
    """All tracked blendshapes at rest."""
    return {key: 0.0 for key in FEATURE_KEYS}


def make_smile(level: float = 0.8) -> Dict[str, float]:
    sample = make_neutral()
    sample["mouthSmileLeft"] = level
    sample["mouthSmileRight"] = level
    return sample


def make_sad(level: float = 0.8) -> Dict[str, float]:
    sample = make_neutral()
    sample["mouthFrownLeft"] = level
    sample["mouthFrownRight"] = level
    return sample


SAMPLES_BY_CLASS = {
    ExpressionClass.NEUTRAL: make_neutral,
    ExpressionClass.SMILE: make_smile,
    ExpressionClass.SAD: make_sad,
}


def record_window(
    calibrator: ExpressionCalibrator,
    expression: ExpressionClass,
    sample: Mapping[str, float],
    start: float = 0.0,
    face_detected: bool = True,
    interval: Optional[float] = None,
) -> int:
    """
    Start a calibration at `start` and tick every `interval` seconds (defaults
    to the calibrator's sample interval) until the window closes.

    Returns:
        Number of ticks issued (0 if the calibration was rejected)
    """
    if not calibrator.start_calibration(expression, True, now=start):
        return 0
    step = interval if interval is not None else calibrator.sample_interval
    ticks = 0
    # Timestamps built as start + i * step (not by accumulation) to stay reproducible
    while calibrator.is_calibrating:
        ticks += 1
        calibrator.tick(start + ticks * step, sample, face_detected)
        if ticks > 10000:
            raise RuntimeError("calibration window never closed")
    return ticks


def calibrate_all(calibrator: ExpressionCalibrator, start: float = 0.0) -> float:
    """
    Calibrate Neutral, Smile (0.8) and Sad (0.8) back to back.

    Returns:
        Timestamp after the last window
    """
    t = start
    for expression, factory in SAMPLES_BY_CLASS.items():
        record_window(calibrator, expression, factory(), start=t)
        t += calibrator.calibration_duration + 1.0
    return t


def calibrate_detector(detector, source, start: float = 0.0) -> float:
    """
    Calibrate Neutral, Smile and Sad through ExpressionStateDetector.step()
    with frames pushed into a StaticBlendshapeSource.

    Returns:
        Next free timestamp
    """
    t = start
    for expression, factory in SAMPLES_BY_CLASS.items():
        source.set_frame(factory(), True)
        detector.start_calibration(expression, now=t)
        i = 0
        while detector.calibrator.is_calibrating:
            i += 1
            detector.step(now=t + i * 0.1)
        t += 5.0
    return t
