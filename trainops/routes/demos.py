from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from trainops.demos import service
from trainops.utils.auth import ROLE_ADMIN, ROLE_MASTER_TRAINER, ROLE_TRAINEE, ROLE_TRAINER, get_current_user, require_roles
from trainops.utils.errors import ApiError
from trainops.utils.serialize import public_doc
from trainops.utils.validators import require_json

demos_bp = Blueprint("demos", __name__)

_ALL = [ROLE_TRAINEE, ROLE_TRAINER, ROLE_MASTER_TRAINER, ROLE_ADMIN]
_MASTERS = [ROLE_MASTER_TRAINER, ROLE_ADMIN]


def _db():
    return current_app.extensions["mongo_db"]


@demos_bp.post("")
@require_roles([ROLE_TRAINEE, ROLE_TRAINER])
def upload():
    body = require_json()
    if body.get("fileUrl") is not None and not isinstance(body["fileUrl"], str):
        raise ApiError("BAD_REQUEST", "fileUrl must be a string", status=400)
    demo = service.upload_demo(_db(), get_current_user(), body)
    return jsonify({"success": True, "message": "Demo uploaded successfully", "data": public_doc(demo)}), 201


@demos_bp.get("")
@require_roles(_ALL)
def index():
    raw = str(request.args.get("status") or "")
    statuses = [s.strip().lower() for s in raw.split(",") if s.strip()]
    demos = service.list_demos(
        _db(),
        get_current_user(),
        trainee_id=str(request.args.get("traineeId") or "").strip() or None,
        statuses=statuses or None,
    )
    return jsonify({"success": True, "data": [public_doc(d) for d in demos], "count": len(demos)})


@demos_bp.post("/offline")
@require_roles([ROLE_TRAINER, ROLE_MASTER_TRAINER])
def create_offline():
    demo = service.create_offline_demo(_db(), get_current_user(), require_json())
    return (
        jsonify(
            {
                "success": True,
                "message": "Offline demo created successfully. Awaiting master trainer approval.",
                "data": public_doc(demo),
            }
        ),
        201,
    )


@demos_bp.get("/<demo_id>")
@require_roles(_ALL)
def show(demo_id: str):
    return jsonify({"success": True, "data": public_doc(service.get_demo(_db(), get_current_user(), demo_id))})


@demos_bp.put("/<demo_id>/trainer-review")
@require_roles([ROLE_TRAINER])
def trainer_review(demo_id: str):
    demo = service.trainer_review(_db(), get_current_user(), demo_id, require_json())
    return jsonify({"success": True, "message": "Demo reviewed successfully", "data": public_doc(demo)})


@demos_bp.put("/<demo_id>/master-review")
@require_roles(_MASTERS)
def master_review(demo_id: str):
    demo = service.master_review(_db(), get_current_user(), demo_id, require_json())
    return jsonify({"success": True, "message": "Demo reviewed by master trainer", "data": public_doc(demo)})


@demos_bp.delete("/<demo_id>")
@require_roles(_ALL)
def destroy(demo_id: str):
    service.delete_demo(_db(), get_current_user(), demo_id)
    return jsonify({"success": True, "message": "Demo deleted successfully"})
