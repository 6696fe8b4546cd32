"""
Helper utility functions.

Reusable glue between config.py, the HTTP layer and the engine.
"""

import logging
import math
from typing import Any, Dict

import config
from expression_engine.blendshape_source_interface import BlendshapeSource, StaticBlendshapeSource
from expression_engine.emotion_gate import EmotionGate, RuleMode
from expression_engine.expression_calibrator import ExpressionClass, FEATURE_KEYS

logger = logging.getLogger(__name__)


def build_config_response() -> Dict[str, Any]:
    """
    Build a complete configuration response dictionary for the /config/all endpoint.

    Returns:
        dict: calibration, face source, gate and feature-key settings
    """
    return {
        "calibration": config.get_calibration_config(),
        "faceSource": config.get_face_source_config(),
        "gate": {
            "fillTimeSec": config.GATE_FILL_TIME_SEC,
            "resetWhenSafe": config.GATE_RESET_WHEN_SAFE,
        },
        "expressions": [cls.value for cls in ExpressionClass],
        "featureKeys": list(FEATURE_KEYS),
    }


def create_blendshape_source(source_type: str, source_path: str = None) -> BlendshapeSource:
    """
    Build a blendshape source by name.

    Args:
        source_type: "manual", "webcam" or "file"
        source_path: Video path (required for "file")

    Returns:
        BlendshapeSource (webcam/file sources are opened but may report
        is_available() == False when the camera or model is missing)

    Raises:
        ValueError: on an unknown source type or a missing file path
    """
    kind = (source_type or "manual").strip().lower()
    if kind == "manual":
        return StaticBlendshapeSource()
    if kind not in ("webcam", "file"):
        raise ValueError(f"Unknown source type: {source_type!r}")
    if kind == "file" and not source_path:
        raise ValueError("sourcePath is required for file sources")

    # Lazy import: defer loading OpenCV/MediaPipe until a camera source is requested
    from expression_engine.mediapipe_blendshape_source import MediaPipeBlendshapeSource
    from expression_engine.video_source_handler import VideoSourceHandler, VideoSourceType

    handler = VideoSourceHandler(
        width=config.WEBCAM_WIDTH,
        height=config.WEBCAM_HEIGHT,
        fps=config.WEBCAM_FPS,
        mirror=config.MIRROR_WEBCAM,
        flip_vertical=config.FLIP_VERTICAL,
    )
    video_type = VideoSourceType.WEBCAM if kind == "webcam" else VideoSourceType.FILE
    if not handler.initialize_source(video_type, source_path):
        logger.warning("Failed to open %s source %s", kind, source_path or "")
    return MediaPipeBlendshapeSource(
        handler,
        model_path=config.FACE_LANDMARKER_MODEL_PATH,
        min_detection_confidence=config.MIN_FACE_DETECTION_CONFIDENCE,
        min_tracking_confidence=config.MIN_TRACKING_CONFIDENCE,
        face_timeout=config.FACE_TIMEOUT_SEC,
    )


def build_gate(data: Dict[str, Any], current: EmotionGate = None) -> EmotionGate:
    """
    Apply a JSON body to an EmotionGate.

    With a current gate, its rule fields are updated in place so that its
    zone state (inside, anger, trigger) and trigger listeners survive a
    reconfiguration. Without one, a new gate is built from config defaults.
    Unspecified fields keep their current values. Nothing is changed unless
    every field is valid.

    Body keys: mode ("require_one" | "block_one"), required, blocked,
    fillTime, resetWhenSafe, name.

    Raises:
        ValueError: on unknown mode/expression names or a non-positive fillTime
    """
    gate = current or EmotionGate(
        fill_time=config.GATE_FILL_TIME_SEC,
        reset_when_safe=config.GATE_RESET_WHEN_SAFE,
    )
    mode = RuleMode(str(data["mode"]).lower()) if "mode" in data else gate.mode
    required = ExpressionClass.from_name(data["required"]) if "required" in data else gate.required
    blocked = ExpressionClass.from_name(data["blocked"]) if "blocked" in data else gate.blocked
    fill_time = float(data.get("fillTime", gate.fill_time))
    if not math.isfinite(fill_time) or fill_time <= 0:
        raise ValueError("fillTime must be positive")

    gate.mode = mode
    gate.required = required
    gate.blocked = blocked
    gate.fill_time = fill_time
    gate.reset_when_safe = bool(data.get("resetWhenSafe", gate.reset_when_safe))
    gate.name = str(data.get("name", gate.name))
    return gate
