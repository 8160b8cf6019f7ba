from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from trainops.ingest.results import create_result, delete_result, get_result, ingest_results, list_results, update_result
from trainops.ingest.sheets import load_results_sheet
from trainops.reports.statistics import exam_statistics
from trainops.utils.auth import ROLE_ADMIN, ROLE_BOA, ROLE_MASTER_TRAINER, get_current_user, require_roles
from trainops.utils.errors import ApiError
from trainops.utils.serialize import public_doc
from trainops.utils.validators import parse_date_range, parse_paging, require_json

results_bp = Blueprint("results", __name__)

_WRITERS = [ROLE_ADMIN, ROLE_BOA]
_READERS = [ROLE_ADMIN, ROLE_BOA, ROLE_MASTER_TRAINER]


@results_bp.post("/validate-sheets")
@require_roles(_WRITERS)
def validate_sheets():
    cfg = current_app.config["CFG"]
    out = load_results_sheet(require_json(), timeout=cfg.SHEETS_TIMEOUT_SECONDS)
    return jsonify({"success": True, **out})


@results_bp.post("/bulk-upload")
@require_roles(_WRITERS)
def bulk_upload():
    cfg = current_app.config["CFG"]
    body = require_json()
    exam_type = str(body.get("examType") or "").strip()
    rows = body.get("results")
    if not exam_type or not isinstance(rows, list) or not rows:
        raise ApiError("BAD_REQUEST", "Exam type and results array are required", status=400)
    if len(rows) > cfg.BULK_MAX_ROWS:
        raise ApiError(
            "BAD_REQUEST", f"Too many rows (max {cfg.BULK_MAX_ROWS})", status=400, details={"rows": len(rows)}
        )

    db = current_app.extensions["mongo_db"]
    out = ingest_results(
        db, exam_type, rows, uploaded_by=get_current_user()["oid"], pass_mark=cfg.PASS_PERCENTAGE
    )
    out["results"] = [public_doc(r) for r in out["results"]]
    return jsonify(out), 201 if out["uploadedCount"] else 400


@results_bp.get("/statistics")
@require_roles(_READERS)
def statistics():
    start_dt = end_dt = None
    if request.args.get("startDate") and request.args.get("endDate"):
        start_dt, end_dt, _, _ = parse_date_range(request.args, from_key="startDate", to_key="endDate")

    db = current_app.extensions["mongo_db"]
    return jsonify({"success": True, "data": exam_statistics(db, start_dt, end_dt)})


@results_bp.get("")
def index():
    actor = get_current_user()
    page, limit = parse_paging(request.args, default_limit=50, max_limit=1000)
    db = current_app.extensions["mongo_db"]
    out = list_results(
        db,
        actor,
        exam_type=str(request.args.get("examType") or "").strip() or None,
        author_id=str(request.args.get("author_id") or "").strip() or None,
        page=page,
        limit=limit,
    )
    out["results"] = [public_doc(r) for r in out["results"]]
    return jsonify({"success": True, **out})


@results_bp.post("")
@require_roles(_WRITERS)
def create():
    cfg = current_app.config["CFG"]
    db = current_app.extensions["mongo_db"]
    result = create_result(
        db, require_json(), uploaded_by=get_current_user()["oid"], pass_mark=cfg.PASS_PERCENTAGE
    )
    return jsonify({"success": True, "message": "Result created successfully", "data": public_doc(result)}), 201


@results_bp.get("/<result_id>")
@require_roles(_READERS)
def show(result_id: str):
    db = current_app.extensions["mongo_db"]
    return jsonify({"success": True, "data": public_doc(get_result(db, result_id))})


@results_bp.put("/<result_id>")
@require_roles(_WRITERS)
def update(result_id: str):
    cfg = current_app.config["CFG"]
    db = current_app.extensions["mongo_db"]
    result = update_result(db, result_id, require_json(), pass_mark=cfg.PASS_PERCENTAGE)
    return jsonify({"success": True, "message": "Result updated successfully", "data": public_doc(result)})


@results_bp.delete("/<result_id>")
@require_roles(_WRITERS)
def destroy(result_id: str):
    db = current_app.extensions["mongo_db"]
    delete_result(db, result_id)
    return jsonify({"success": True, "message": "Result deleted successfully"})
