from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from trainops.dayplans import workflow
from trainops.utils.auth import ROLE_ADMIN, ROLE_MASTER_TRAINER, ROLE_TRAINEE, ROLE_TRAINER, get_current_user, require_roles
from trainops.utils.serialize import public_doc
from trainops.utils.validators import parse_date_range, parse_paging, require_json

dayplans_bp = Blueprint("dayplans", __name__)


def _db():
    return current_app.extensions["mongo_db"]


@dayplans_bp.post("")
@require_roles([ROLE_TRAINEE, ROLE_TRAINER])
def create():
    plan = workflow.create_plan(_db(), get_current_user(), require_json())
    message = "Day plan submitted successfully" if plan["status"] == workflow.IN_PROGRESS else "Day plan saved as draft"
    return jsonify({"success": True, "message": message, "data": public_doc(plan)}), 201


@dayplans_bp.get("")
@require_roles([ROLE_TRAINEE, ROLE_TRAINER, ROLE_MASTER_TRAINER, ROLE_ADMIN])
def index():
    start = end = None
    if request.args.get("startDate") and request.args.get("endDate"):
        start, end, _, _ = parse_date_range(request.args, from_key="startDate", to_key="endDate")
    page, limit = parse_paging(request.args)

    out = workflow.list_plans(
        _db(),
        get_current_user(),
        status=str(request.args.get("status") or "").strip().lower() or None,
        trainee_id=str(request.args.get("traineeId") or "").strip() or None,
        start=start,
        end=end,
        page=page,
        limit=limit,
    )
    out["dayPlans"] = [public_doc(p) for p in out["dayPlans"]]
    return jsonify({"success": True, "data": out})


@dayplans_bp.get("/stats")
@require_roles([ROLE_MASTER_TRAINER, ROLE_ADMIN])
def stats():
    return jsonify({"success": True, "data": workflow.plan_stats(_db())})


@dayplans_bp.post("/eod")
@require_roles([ROLE_TRAINEE])
def submit_eod():
    plan = workflow.submit_eod(_db(), get_current_user(), require_json())
    return jsonify({"success": True, "message": "EOD update submitted successfully", "data": public_doc(plan)})


@dayplans_bp.get("/<plan_id>")
@require_roles([ROLE_TRAINEE, ROLE_TRAINER, ROLE_MASTER_TRAINER, ROLE_ADMIN])
def show(plan_id: str):
    return jsonify({"success": True, "data": public_doc(workflow.get_plan(_db(), get_current_user(), plan_id))})


@dayplans_bp.put("/<plan_id>")
@require_roles([ROLE_TRAINEE])
def update(plan_id: str):
    plan = workflow.update_plan(_db(), get_current_user(), plan_id, require_json())
    return jsonify({"success": True, "message": "Day plan updated successfully", "data": public_doc(plan)})


@dayplans_bp.post("/<plan_id>/submit")
@require_roles([ROLE_TRAINEE])
def submit(plan_id: str):
    plan = workflow.submit_plan(_db(), get_current_user(), plan_id)
    return jsonify({"success": True, "message": "Day plan submitted successfully", "data": public_doc(plan)})


@dayplans_bp.delete("/<plan_id>")
@require_roles([ROLE_TRAINEE])
def destroy(plan_id: str):
    workflow.delete_plan(_db(), get_current_user(), plan_id)
    return jsonify({"success": True, "message": "Day plan deleted successfully"})


@dayplans_bp.put("/<plan_id>/review")
@require_roles([ROLE_TRAINER])
def review(plan_id: str):
    plan = workflow.review_plan(_db(), get_current_user(), plan_id, require_json())
    return jsonify({"success": True, "message": f"Day plan {plan['status']} successfully", "data": public_doc(plan)})


@dayplans_bp.put("/<plan_id>/eod-review")
@require_roles([ROLE_TRAINER])
def review_eod(plan_id: str):
    plan = workflow.review_eod(_db(), get_current_user(), plan_id, require_json())
    return jsonify(
        {"success": True, "message": f"EOD update {plan['eodUpdate']['status']} successfully", "data": public_doc(plan)}
    )
