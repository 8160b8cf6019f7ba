from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from trainops.db import ping_db
from trainops.utils.datetime import iso_utc_now

SERVICE_NAME = "trainops"

core_bp = Blueprint("core", __name__)


def _checks() -> dict[str, str]:
    db = current_app.extensions.get("mongo_db")
    checks = {"db": "ok" if db is not None and ping_db(db) else "error"}
    # A missing notifier only loses notifications; transitions still commit.
    checks["notifier"] = "ok" if current_app.extensions.get("notifier") is not None else "missing"
    return checks


@core_bp.get("/health")
def health():
    cfg = current_app.config["CFG"]
    checks = _checks()
    ok = checks["db"] == "ok"
    body = {
        "service": SERVICE_NAME,
        "status": "ok" if ok else "degraded",
        "time": iso_utc_now(),
        "version": cfg.APP_VERSION,
        "checks": checks,
    }
    return jsonify(body), 200 if ok else 503


@core_bp.get("/version")
def version():
    cfg = current_app.config["CFG"]
    return jsonify({"service": SERVICE_NAME, "version": cfg.APP_VERSION, "env": cfg.ENV, "time": iso_utc_now()})
