import json
import logging

from flask import Blueprint, current_app, jsonify, request

from services.classifier import classify

logger = logging.getLogger(__name__)

lights_bp = Blueprint("lights", __name__)


def _queue():
    return current_app.extensions["lights_queue"]


@lights_bp.get("/v1/__health")
def health():
    key = current_app.config.get("GOVEE_API_KEY", "")
    if not key:
        return jsonify({"message": "Missing govee key."}), 400
    return jsonify({"message": f"Govee key found: {key[-4:]}"})


@lights_bp.post("/v1/govee")
def webhook():
    body = request.get_json(silent=True) or {}

    # Slack URL verification
    if body.get("challenge"):
        return jsonify({"challenge": body["challenge"]})

    # Only bot messages (CI, monitors) drive the lights
    event = body.get("event")
    if not isinstance(event, dict) or event.get("subtype") != "bot_message":
        return jsonify({"ok": True, "ignored": True})

    message = json.dumps(body).lower()
    try:
        _queue().enqueue(message)
    except RuntimeError as e:
        logger.error("Lights queue unavailable: %s", e)
        return jsonify({"error": str(e)}), 503
    return jsonify({"message": "status queued."}), 202


@lights_bp.get("/v1/status")
def status():
    q = _queue()
    run = q.last_run
    if run is None:
        return jsonify({"runs_started": q.runs_started, "last_run": None})
    return jsonify({
        "runs_started": q.runs_started,
        "last_run": {
            "id": run.id,
            "state": run.state.value,
            "intent": classify(run.message).value,
            "error": str(run.error) if run.error else None,
        },
    })
