from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from trainops.ingest.joiners import JOINER_STATUSES, create_account, get_joiner, ingest_joiners, list_joiners, update_onboarding
from trainops.ingest.sheets import load_joiner_sheet
from trainops.utils.auth import ROLE_ADMIN, ROLE_BOA, get_current_user, require_roles
from trainops.utils.errors import ApiError
from trainops.utils.serialize import public_doc
from trainops.utils.validators import parse_paging, require_json, validate_password

joiners_bp = Blueprint("joiners", __name__)

_STAFF = [ROLE_ADMIN, ROLE_BOA]


@joiners_bp.post("/validate-sheets")
@require_roles(_STAFF)
def validate_sheets():
    cfg = current_app.config["CFG"]
    out = load_joiner_sheet(require_json(), timeout=cfg.SHEETS_TIMEOUT_SECONDS)
    return jsonify({"success": True, **out})


@joiners_bp.post("/bulk-upload")
@require_roles(_STAFF)
def bulk_upload():
    cfg = current_app.config["CFG"]
    body = require_json()
    rows = body.get("joiners_data")
    if not isinstance(rows, list) or not rows:
        raise ApiError("BAD_REQUEST", "Invalid data format. Expected non-empty array of joiners.", status=400)
    if len(rows) > cfg.BULK_MAX_ROWS:
        raise ApiError(
            "BAD_REQUEST", f"Too many rows (max {cfg.BULK_MAX_ROWS})", status=400, details={"rows": len(rows)}
        )

    db = current_app.extensions["mongo_db"]
    out = ingest_joiners(db, rows, created_by=get_current_user()["oid"])
    out["joiners"] = [public_doc(j) for j in out["joiners"]]
    return jsonify(out), 201 if out["createdCount"] else 400


@joiners_bp.get("")
@require_roles(_STAFF)
def index():
    status = str(request.args.get("status") or "").strip().lower() or None
    if status and status not in JOINER_STATUSES:
        raise ApiError("BAD_REQUEST", f"status must be one of: {', '.join(JOINER_STATUSES)}", status=400)
    department = str(request.args.get("department") or "").strip().upper() or None
    page, limit = parse_paging(request.args)

    db = current_app.extensions["mongo_db"]
    out = list_joiners(db, status=status, department=department, page=page, limit=limit)
    out["items"] = [public_doc(j) for j in out["items"]]
    return jsonify({"success": True, "data": out})


@joiners_bp.get("/<author_id>")
@require_roles(_STAFF)
def show(author_id: str):
    db = current_app.extensions["mongo_db"]
    return jsonify({"success": True, "data": public_doc(get_joiner(db, author_id))})


@joiners_bp.patch("/<author_id>/onboarding")
@require_roles(_STAFF)
def onboarding(author_id: str):
    db = current_app.extensions["mongo_db"]
    joiner = update_onboarding(db, author_id, require_json())
    return jsonify({"success": True, "message": "Onboarding checklist updated", "data": public_doc(joiner)})


@joiners_bp.post("/<author_id>/account")
@require_roles(_STAFF)
def account(author_id: str):
    body = require_json()
    password = validate_password(body.get("password"), allow_short=False)
    db = current_app.extensions["mongo_db"]
    user = create_account(db, author_id, password)
    return (
        jsonify(
            {
                "success": True,
                "message": "Account created successfully",
                "data": public_doc(user, drop=("passwordHash",)),
            }
        ),
        201,
    )
