from __future__ import annotations

import os

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text

from moodstream.database import db
from moodstream.observability.metrics import update_index_gauges

health_bp = Blueprint("health_bp", __name__)


@health_bp.route("/healthz")
def healthz():
    status = 200
    checks = {}

    try:
        db.session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:  # pragma: no cover - DB failure path
        status = 503
        checks["database"] = f"error: {exc}"

    manager = current_app.extensions.get("content_index")
    if manager is not None and os.path.isdir(manager.storage.root):
        checks["storage"] = "ok"
    else:
        status = 503
        checks["storage"] = "unavailable"

    checks["extraction"] = "ok" if current_app.extensions.get("stream_delivery") else "unavailable"

    overall = "ok" if status == 200 else "degraded"
    return jsonify({"status": overall, "checks": checks}), status


@health_bp.route("/readyz")
def readyz():
    manager = current_app.extensions.get("content_index")
    if manager is None:
        return jsonify({"status": "blocked", "reason": "content index not initialized"}), 503
    info = manager.index_info()
    update_index_gauges(info["total_size_bytes"], info["track_count"])
    ready = not info["rebuilding"]
    payload = {
        "status": "ready" if ready else "blocked",
        "track_count": info["track_count"],
        "total_size_bytes": info["total_size_bytes"],
        "rebuilding": info["rebuilding"],
    }
    return jsonify(payload), 200 if ready else 503
