"""
Expression engine package.

Engine-independent logic for calibrating and recognizing facial expressions from
blendshape coefficients: the calibrator, the guided calibration flow, the
emotion gate, and the blendshape source interface.

The MediaPipe/OpenCV-backed source lives in mediapipe_blendshape_source and
video_source_handler; import those directly so that loading this package does
not pull in the heavy vision dependencies.
"""

from .expression_calibrator import (
    ExpressionCalibrator,
    ExpressionClass,
    CalibrationSession,
    FEATURE_KEYS,
    restrict_to_features,
)
from .blendshape_source_interface import (
    BlendshapeFrame,
    BlendshapeSource,
    StaticBlendshapeSource,
    PRESET_BLENDSHAPES,
)
from .calibration_flow import CalibrationFlow, FlowPhase, FlowResult
from .emotion_gate import EmotionGate, GateStatus, RuleMode

__all__ = [
    'ExpressionCalibrator',
    'ExpressionClass',
    'CalibrationSession',
    'FEATURE_KEYS',
    'restrict_to_features',
    'BlendshapeFrame',
    'BlendshapeSource',
    'StaticBlendshapeSource',
    'PRESET_BLENDSHAPES',
    'CalibrationFlow',
    'FlowPhase',
    'FlowResult',
    'EmotionGate',
    'GateStatus',
    'RuleMode',
]
