from __future__ import annotations

from io import BytesIO
from typing import Any

from flask import Blueprint, current_app, jsonify, request, send_file

from trainops.reports.dashboard import candidate_dashboard, candidate_detail
from trainops.reports.excel import build_learning_report_bytes
from trainops.utils.auth import ROLE_ADMIN, ROLE_BOA, ROLE_MASTER_TRAINER, require_roles
from trainops.utils.errors import ApiError, not_found
from trainops.utils.validators import parse_date_range, require_json

dashboard_bp = Blueprint("dashboard", __name__)

_VIEWERS = [ROLE_ADMIN, ROLE_BOA, ROLE_MASTER_TRAINER]


def _range(source):
    return parse_date_range(source, from_key="dateFrom", to_key="dateTo", allow_inverted=True)


def _detail(source) -> tuple[dict[str, Any], str, str]:
    uid = str(source.get("uid") or "").strip()
    if not uid:
        raise ApiError("BAD_REQUEST", "uid is required", status=400)
    start_dt, end_dt, from_s, to_s = _range(source)

    cfg = current_app.config["CFG"]
    db = current_app.extensions["mongo_db"]
    detail = candidate_detail(
        db, uid, start_dt, end_dt, legacy_fortnight_count=cfg.DASHBOARD_LEGACY_FORTNIGHT_COUNT
    )
    if detail is None:
        raise not_found("Candidate")
    return detail, from_s, to_s


@dashboard_bp.post("")
@require_roles(_VIEWERS)
def summary():
    body = require_json()
    uids = body.get("uids")
    if not isinstance(uids, list) or not uids:
        raise ApiError("BAD_REQUEST", "UIDs array is required", status=400)
    start_dt, end_dt, from_s, to_s = _range(body)

    db = current_app.extensions["mongo_db"]
    uids = [str(u).strip() for u in uids if str(u or "").strip()]
    data = candidate_dashboard(db, uids, start_dt, end_dt, from_s=from_s, to_s=to_s)
    return jsonify({"success": True, "data": data})


@dashboard_bp.post("/detail")
@require_roles(_VIEWERS)
def detail():
    data, _, _ = _detail(require_json())
    return jsonify({"success": True, "data": data})


@dashboard_bp.get("/detail/export.xlsx")
@require_roles(_VIEWERS)
def export_xlsx():
    data, from_s, to_s = _detail(request.args)
    xlsx_bytes = build_learning_report_bytes(
        detail=data,
        from_s=from_s,
        to_s=to_s,
        timezone_display=current_app.config["CFG"].TIMEZONE_DISPLAY,
    )

    uid = data["personalDetails"].get("uid") or "candidate"
    filename = f"learning_report_{uid}_{from_s}_{to_s}.xlsx"
    return send_file(
        BytesIO(xlsx_bytes),
        as_attachment=True,
        download_name=filename,
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )
