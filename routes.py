"""
Flask routes for the expression calibration service.

Handles detection start/stop/state, manual frames, calibration, the guided
calibration flow, the emotion gate, and config. All responses are JSON.
"""

import math
from typing import Optional

from flask import Blueprint, Flask, jsonify, request

import config
from expression_engine import ExpressionClass, FlowResult, PRESET_BLENDSHAPES
from expression_engine.helpers import build_config_response, create_blendshape_source


# Create a blueprint for better organization
api = Blueprint('api', __name__)

# The detector owned by this web app (one per process, created on /expression/start).
# ExpressionStateDetector is imported lazily in start_expression_detection.
expression_detector = None  # type: Optional["ExpressionStateDetector"]


def _not_started():
    return jsonify({"error": "Expression detection not started"}), 404


def _json_body() -> Optional[dict]:
    """Parsed JSON object body, {} for an empty body, None if the body is not a JSON object."""
    if not request.data:
        return {}
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


# ============================================================================
# Detection
# ============================================================================

@api.route("/expression/start", methods=["POST"])
def start_expression_detection():
    """
    Start expression detection.

    Request Body:
        {
            "source": "manual" | "webcam" | "file",   (default: BLENDSHAPE_SOURCE)
            "sourcePath": "path for file sources"
        }

    Returns:
        JSON: {"success": true, "source": "<name>"}
    """
    global expression_detector
    from detector import ExpressionStateDetector

    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be a JSON object"}), 400

    source_type = str(data.get("source") or config.BLENDSHAPE_SOURCE).lower()
    try:
        source = create_blendshape_source(source_type, data.get("sourcePath"))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    try:
        if expression_detector:
            expression_detector.stop_detection()
            expression_detector = None

        detector = ExpressionStateDetector(source)
        if not detector.start_detection():
            source.close()
            return jsonify({"error": "Failed to start detection. Check the face source and model file."}), 500

        expression_detector = detector
        return jsonify({
            "success": True,
            "message": f"Expression detection started from {source_type}",
            "source": source.get_name(),
        })
    except Exception as e:
        return jsonify({"error": "Failed to start expression detection", "details": str(e)}), 500


@api.route("/expression/stop", methods=["POST"])
def stop_expression_detection():
    """Stop detection. Calibration profiles are discarded with the detector."""
    global expression_detector
    try:
        if expression_detector:
            expression_detector.stop_detection()
            expression_detector = None
        return jsonify({"success": True, "message": "Expression detection stopped"})
    except Exception as e:
        return jsonify({"error": "Failed to stop expression detection", "details": str(e)}), 500


@api.route("/expression/state", methods=["GET"])
def get_expression_state():
    """
    Get the latest detection snapshot.

    Returns:
        JSON: {
            "expression": "smile",
            "confidence": 0.92,
            "faceDetected": true,
            "isCalibrated": true,
            "isCalibrating": false,
            "calibrationProgress": 0.0,
            "currentCalibrating": null,
            "gate": null
        }
    """
    if not expression_detector:
        return _not_started()

    state = expression_detector.get_current_state()
    if not state:
        status = expression_detector.get_calibration_status()
        return jsonify({
            "expression": ExpressionClass.NEUTRAL.value,
            "confidence": 0.0,
            "faceDetected": False,
            "message": "No expression data available yet",
            **status,
        })
    return jsonify(state.to_dict())


@api.route("/expression/frame", methods=["POST"])
def post_expression_frame():
    """
    Push blendshapes into the manual source.

    Request Body:
        {"blendshapes": {"mouthSmileLeft": 0.8, ...}, "faceDetected": true}
        or {"preset": "smile" | "sad" | "neutral"}
        or {"faceDetected": false} to simulate a lost face
    """
    if not expression_detector:
        return _not_started()

    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be a JSON object"}), 400

    preset = data.get("preset")
    if preset is not None:
        key = str(preset).lower()
        if key not in PRESET_BLENDSHAPES:
            return jsonify({"error": f"Unknown preset: {preset}"}), 400
        blendshapes, face_detected = PRESET_BLENDSHAPES[key], True
    else:
        blendshapes = data.get("blendshapes") or {}
        if not isinstance(blendshapes, dict):
            return jsonify({"error": "blendshapes must be an object"}), 400
        try:
            values = {str(k): float(v) for k, v in blendshapes.items()}
        except (TypeError, ValueError):
            return jsonify({"error": "blendshape values must be numbers"}), 400
        if not all(math.isfinite(v) for v in values.values()):
            return jsonify({"error": "blendshape values must be finite"}), 400
        blendshapes = {k: min(1.0, max(0.0, v)) for k, v in values.items()}
        face_detected = bool(data.get("faceDetected", bool(blendshapes)))

    if not expression_detector.feed_manual_frame(blendshapes, face_detected):
        return jsonify({"error": "Current source does not accept frames"}), 409
    return "", 204


@api.route("/expression/check", methods=["GET"])
def check_expression():
    """
    Is the user currently showing an expression?

    Query: expression=smile&threshold=0.5
    Returns: {"expression": "smile", "matches": true, "detected": "smile", "confidence": 0.9}
    """
    if not expression_detector:
        return _not_started()
    try:
        target = ExpressionClass.from_name(request.args.get("expression", ""))
        threshold = float(request.args.get("threshold", config.EXPRESSION_MATCH_THRESHOLD))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    detected, confidence = expression_detector.detect()
    return jsonify({
        "expression": target.value,
        "threshold": threshold,
        "matches": detected == target and confidence >= threshold,
        "detected": detected.value,
        "confidence": round(confidence, 4),
    })


# ============================================================================
# Calibration
# ============================================================================

@api.route("/calibration/start", methods=["POST"])
def start_calibration():
    """
    Start recording one expression profile.

    Request Body: {"expression": "neutral" | "smile" | "sad"}
    Returns: {"success": bool, ...calibration status}. success is false when no
    face is detected or another calibration is still recording.
    """
    if not expression_detector:
        return _not_started()
    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be a JSON object"}), 400
    try:
        target = ExpressionClass.from_name(str(data.get("expression", "")))
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    started = expression_detector.start_calibration(target)
    return jsonify({"success": started, **expression_detector.get_calibration_status()})


@api.route("/calibration/reset", methods=["POST"])
def reset_calibration():
    if not expression_detector:
        return _not_started()
    expression_detector.reset_calibration()
    return jsonify({"success": True, **expression_detector.get_calibration_status()})


@api.route("/calibration/status", methods=["GET"])
def get_calibration_status():
    if not expression_detector:
        return _not_started()
    return jsonify(expression_detector.get_calibration_status())


# ============================================================================
# Guided calibration flow
# ============================================================================

@api.route("/flow/open", methods=["POST"])
def open_flow():
    """Reset calibration and start the guided flow at step 1 (Neutral)."""
    if not expression_detector:
        return _not_started()
    return jsonify(expression_detector.open_flow())


@api.route("/flow/confirm", methods=["POST"])
def confirm_flow():
    """
    Confirm the current step with the current face.

    Returns: {"result": "calibration_started" | "correct" | "wrong" | "restarted" | "ignored", "state": {...}}
    """
    if not expression_detector:
        return _not_started()
    result, state = expression_detector.confirm_flow()
    return jsonify({"result": result.value, "accepted": result != FlowResult.IGNORED, "state": state})


@api.route("/flow/close", methods=["POST"])
def close_flow():
    if not expression_detector:
        return _not_started()
    return jsonify(expression_detector.close_flow())


@api.route("/flow/state", methods=["GET"])
def get_flow_state():
    if not expression_detector:
        return _not_started()
    return jsonify(expression_detector.get_flow_state())


# ============================================================================
# Emotion gate
# ============================================================================

@api.route("/gate", methods=["GET", "PUT"])
def gate_config():
    """
    GET: current gate state ({"gate": null} when none is configured).
    PUT: create or replace the gate.
        Body: {"mode": "require_one" | "block_one", "required": "smile",
               "blocked": "sad", "fillTime": 1.0, "resetWhenSafe": true, "name": "staff"}
    """
    if not expression_detector:
        return _not_started()

    if request.method == "GET":
        return jsonify({"gate": expression_detector.with_gate(lambda gate: None)})

    data = _json_body()
    if data is None:
        return jsonify({"error": "Request must be a JSON object"}), 400
    try:
        state = expression_detector.configure_gate(data)
    except (ValueError, TypeError) as e:
        return jsonify({"error": "Invalid gate configuration", "details": str(e)}), 400
    return jsonify({"gate": state})


def _gate_action(action):
    if not expression_detector:
        return _not_started()
    state = expression_detector.with_gate(action)
    if state is None:
        return jsonify({"error": "No gate configured"}), 404
    return jsonify({"gate": state})


@api.route("/gate/enter", methods=["POST"])
def gate_enter():
    return _gate_action(lambda gate: gate.enter())


@api.route("/gate/exit", methods=["POST"])
def gate_exit():
    return _gate_action(lambda gate: gate.exit())


@api.route("/gate/rearm", methods=["POST"])
def gate_rearm():
    return _gate_action(lambda gate: gate.rearm())


# ============================================================================
# Config
# ============================================================================

@api.route("/config/all", methods=["GET"])
def get_all_config():
    return jsonify(build_config_response())


def register_routes(app: Flask) -> None:
    """Attach the API blueprint to the Flask app."""
    app.register_blueprint(api)
