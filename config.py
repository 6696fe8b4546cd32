"""
=============================================================================
CONFIGURATION FOR EXPRESSION CALIBRATION SERVICE (config.py)
=============================================================================

WHAT THIS FILE DOES (in plain language):
----------------------------------------
This file holds ALL configurable settings for the project in one place. Other
files read from it. Values come from the environment (your .env file or
system variables), so you can tune calibration timing or point at a different
model file without changing code.

MAIN GROUPS OF SETTINGS:
------------------------
  1. Calibration  - How long each expression is recorded and how often we sample.
  2. Detection    - How often the loop ticks and how confident a match must be.
  3. Face source  - MediaPipe model path, thresholds, webcam size, mirroring.
  4. Flow / gate  - Guided calibration test rules and emotion-gate timing.
  5. Server       - Host, port, and debug mode for the web server.

HOW VALUES ARE CHOSEN:
---------------------
  - Environment variables (e.g. CALIBRATION_DURATION_SEC) override everything.
  - If an env var is not set, we use the default shown below.
=============================================================================
"""

import os


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


# ============================================================================
# CALIBRATION (recording one expression profile)
# ============================================================================
# Each calibration records the face for CALIBRATION_DURATION_SEC seconds and
# keeps one sample every CALIBRATION_SAMPLE_INTERVAL_SEC (2.0 / 0.1 => up to 20
# samples). The samples are averaged into the profile for that expression.
# ----------------------------------------------------------------------------
CALIBRATION_DURATION_SEC: float = float(os.getenv("CALIBRATION_DURATION_SEC", "2.0"))
CALIBRATION_SAMPLE_INTERVAL_SEC: float = float(os.getenv("CALIBRATION_SAMPLE_INTERVAL_SEC", "0.1"))

# ============================================================================
# DETECTION LOOP
# ============================================================================
# Seconds between detection ticks (1/30 = 30 ticks per second).
DETECTION_INTERVAL_SEC: float = max(0.001, float(os.getenv("DETECTION_INTERVAL_SEC", str(1.0 / 30.0))))

# Minimum confidence for "is the user showing expression X?" checks (0-1).
EXPRESSION_MATCH_THRESHOLD: float = float(os.getenv("EXPRESSION_MATCH_THRESHOLD", "0.5"))

# ============================================================================
# FACE SOURCE (MediaPipe Face Landmarker + webcam)
# ============================================================================
#   "manual"  - No camera; frames are posted over HTTP (POST /expression/frame).
#   "webcam"  - Local camera through OpenCV + MediaPipe.
#   "file"    - Recorded video through OpenCV + MediaPipe.
# ----------------------------------------------------------------------------
BLENDSHAPE_SOURCE: str = os.getenv("BLENDSHAPE_SOURCE", "manual").strip().lower()

# Download from the MediaPipe model zoo (face_landmarker.task).
FACE_LANDMARKER_MODEL_PATH: str = os.getenv("FACE_LANDMARKER_MODEL_PATH", "face_landmarker.task")
MIN_FACE_DETECTION_CONFIDENCE: float = float(os.getenv("MIN_FACE_DETECTION_CONFIDENCE", "0.3"))
MIN_TRACKING_CONFIDENCE: float = float(os.getenv("MIN_TRACKING_CONFIDENCE", "0.3"))

# A face counts as lost only after this many seconds without a detection.
FACE_TIMEOUT_SEC: float = float(os.getenv("FACE_TIMEOUT_SEC", "1.5"))

WEBCAM_WIDTH: int = int(os.getenv("WEBCAM_WIDTH", "640"))
WEBCAM_HEIGHT: int = int(os.getenv("WEBCAM_HEIGHT", "480"))
WEBCAM_FPS: int = int(os.getenv("WEBCAM_FPS", "30"))
MIRROR_WEBCAM: bool = _env_bool("MIRROR_WEBCAM", "true")
FLIP_VERTICAL: bool = _env_bool("FLIP_VERTICAL", "false")

# ============================================================================
# CALIBRATION FLOW AND EMOTION GATE
# ============================================================================
# Guided flow: confidence needed to pass a test step, and how many wrong
# answers in a row send the user back to the start.
FLOW_MATCH_THRESHOLD: float = float(os.getenv("FLOW_MATCH_THRESHOLD", "0.4"))
FLOW_MAX_FAILURES: int = max(1, int(os.getenv("FLOW_MAX_FAILURES", "3")))

# Emotion gate: seconds of rule-breaking before the gate triggers.
GATE_FILL_TIME_SEC: float = float(os.getenv("GATE_FILL_TIME_SEC", "1.0"))
GATE_RESET_WHEN_SAFE: bool = _env_bool("GATE_RESET_WHEN_SAFE", "true")

# ============================================================================
# Application Configuration
# ============================================================================
FLASK_PORT: int = int(os.getenv("FLASK_PORT", "5000"))
FLASK_DEBUG: bool = _env_bool("FLASK_DEBUG", "false")
FLASK_HOST: str = os.getenv("FLASK_HOST", "0.0.0.0")

# ============================================================================
# Helper Functions
# ============================================================================

def warn_missing_config() -> None:
    """
    Print warnings for settings that will disable features. Does not raise.
    Called from app startup (app.py).
    """
    import sys
    if BLENDSHAPE_SOURCE in ("webcam", "file") and not os.path.exists(FACE_LANDMARKER_MODEL_PATH):
        print(
            f"Config warning: FACE_LANDMARKER_MODEL_PATH ({FACE_LANDMARKER_MODEL_PATH}) does not exist; "
            "webcam/file expression detection will not find faces.",
            file=sys.stderr,
        )
    if CALIBRATION_SAMPLE_INTERVAL_SEC > CALIBRATION_DURATION_SEC:
        print(
            "Config warning: CALIBRATION_SAMPLE_INTERVAL_SEC is longer than CALIBRATION_DURATION_SEC; "
            "each calibration will record a single sample.",
            file=sys.stderr,
        )


def get_calibration_config() -> dict:
    """
    Get calibration and detection timing settings.

    Returns:
        dict: durations in seconds and match thresholds
    """
    return {
        "calibrationDurationSec": CALIBRATION_DURATION_SEC,
        "sampleIntervalSec": CALIBRATION_SAMPLE_INTERVAL_SEC,
        "detectionIntervalSec": DETECTION_INTERVAL_SEC,
        "matchThreshold": EXPRESSION_MATCH_THRESHOLD,
        "flowMatchThreshold": FLOW_MATCH_THRESHOLD,
        "flowMaxFailures": FLOW_MAX_FAILURES,
    }


def get_face_source_config() -> dict:
    """
    Get face source settings (no secrets here; safe to expose to clients).

    Returns:
        dict: source type, model path and webcam options
    """
    return {
        "source": BLENDSHAPE_SOURCE,
        "modelPath": FACE_LANDMARKER_MODEL_PATH,
        "modelAvailable": os.path.exists(FACE_LANDMARKER_MODEL_PATH),
        "minDetectionConfidence": MIN_FACE_DETECTION_CONFIDENCE,
        "minTrackingConfidence": MIN_TRACKING_CONFIDENCE,
        "faceTimeoutSec": FACE_TIMEOUT_SEC,
        "webcam": {
            "width": WEBCAM_WIDTH,
            "height": WEBCAM_HEIGHT,
            "fps": WEBCAM_FPS,
            "mirror": MIRROR_WEBCAM,
            "flipVertical": FLIP_VERTICAL,
        },
    }
