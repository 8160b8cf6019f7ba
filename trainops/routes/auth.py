from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, current_app, jsonify, request
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from trainops.ingest.joiners import mark_account_created
from trainops.ingest.normalize import ONBOARDING_STEPS, new_author_id
from trainops.people import find_by_id, is_trainee
from trainops.utils.auth import (
    ROLE_ADMIN,
    ROLE_MASTER_TRAINER,
    ROLE_TRAINEE,
    ROLE_TRAINER,
    ROLES,
    create_access_token,
    get_current_user,
    hash_password,
    normalize_role,
    require_roles,
    verify_password,
)
from trainops.utils.datetime import utc_now
from trainops.utils.errors import ApiError, not_found
from trainops.utils.serialize import public_doc
from trainops.utils.validators import parse_object_id, require_json, validate_email, validate_password

log = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)

_PRIVATE = ("passwordHash",)


def _role(value: Any, default: str) -> str:
    role = normalize_role(value) or default
    if role not in ROLES:
        raise ApiError("BAD_REQUEST", f"role must be one of: {', '.join(sorted(ROLES))}", status=400)
    return role


def _new_user(body: dict[str, Any], *, email: str, password: str, role: str) -> dict[str, Any]:
    now = utc_now()
    user = {
        "name": str(body.get("name") or "").strip() or email.split("@", 1)[0],
        "email": email,
        "passwordHash": hash_password(password),
        "role": role,
        "status": "active",
        "createdAt": now,
        "updatedAt": now,
    }
    if role == ROLE_TRAINEE:
        user["author_id"] = new_author_id()
        user["employeeId"] = str(body.get("employeeId") or "").strip() or None
        user["isDeployed"] = False
    return user


def _insert_user(db, user: dict[str, Any]) -> None:
    try:
        db.users.insert_one(user)
    except DuplicateKeyError as e:
        raise ApiError("CONFLICT", "Email already exists", status=409) from e


@auth_bp.post("/bootstrap")
def bootstrap():
    cfg = current_app.config["CFG"]
    if not cfg.BOOTSTRAP_TOKEN:
        raise ApiError("FORBIDDEN", "Bootstrap is disabled", status=403)

    provided = str(request.headers.get("X-Bootstrap-Token") or "").strip()
    if not provided or provided != cfg.BOOTSTRAP_TOKEN:
        raise ApiError("FORBIDDEN", "Invalid bootstrap token", status=403)

    db = current_app.extensions["mongo_db"]
    if db.users.count_documents({}) > 0:
        raise ApiError("CONFLICT", "Bootstrap already completed", status=409)

    body = require_json()
    email = validate_email(body.get("email"))
    password = validate_password(body.get("password"), allow_short=False)
    user = _new_user(body, email=email, password=password, role=ROLE_ADMIN)
    _insert_user(db, user)

    return jsonify({"success": True, "data": {"email": email, "role": ROLE_ADMIN}}), 201


@auth_bp.post("/register")
def register():
    """Self-registration gated by a per-role invite token."""
    cfg = current_app.config["CFG"]
    body = require_json()
    role = cfg.invite_roles().get(str(body.get("inviteToken") or "").strip())
    if not role:
        raise ApiError("FORBIDDEN", "Invalid invite token", status=403)

    email = validate_email(body.get("email"))
    password = validate_password(body.get("password"), allow_short=False)
    db = current_app.extensions["mongo_db"]
    user = _new_user(body, email=email, password=password, role=role)

    # A bulk upload may already hold this trainee; the account joins that record.
    joiner = db.joiners.find_one({"email": email}) if role == ROLE_TRAINEE else None
    if joiner is not None:
        if joiner.get("accountCreated"):
            raise ApiError("CONFLICT", "Account already created for this joiner", status=409)
        user["author_id"] = joiner["author_id"]
        user["employeeId"] = user.get("employeeId") or joiner.get("employeeId")
        user["joinerId"] = joiner["_id"]
    _insert_user(db, user)

    if joiner is not None:
        mark_account_created(db, joiner["_id"], user["_id"], utc_now())
    elif role == ROLE_TRAINEE:
        now = utc_now()
        joiner = {
            "name": user["name"],
            "email": email,
            "author_id": user["author_id"],
            "employeeId": user.get("employeeId"),
            "phone_number": str(body.get("phone_number") or "").strip() or None,
            "department": str(body.get("department") or "OTHERS").strip().upper(),
            "joiningDate": now,
            "status": "active",
            "accountCreated": True,
            "accountCreatedAt": now,
            "userId": user["_id"],
            "onboardingChecklist": {step: step in {"credentialsGenerated", "accountActivated"} for step in ONBOARDING_STEPS},
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            db.joiners.insert_one(joiner)
            db.users.update_one({"_id": user["_id"]}, {"$set": {"joinerId": joiner["_id"]}})
        except DuplicateKeyError:
            # A bulk upload for this email landed between the lookup and this insert.
            log.warning("Joiner record for %s already exists; linking skipped", email)

    token = create_access_token(current_app, user)
    return (
        jsonify(
            {
                "success": True,
                "message": "Registration successful",
                "data": {"access_token": token, "token_type": "bearer", "user": public_doc(user, drop=_PRIVATE)},
            }
        ),
        201,
    )


@auth_bp.post("/login")
def login():
    body = require_json()
    email = validate_email(body.get("email"))
    password = validate_password(body.get("password"), allow_short=True)

    db = current_app.extensions["mongo_db"]
    user = db.users.find_one({"email": email})
    if not user:
        raise ApiError("AUTH_INVALID", "Invalid credentials", status=401)

    if str(user.get("status") or "active").lower() != "active":
        raise ApiError("FORBIDDEN", "User is disabled", status=403)

    if not verify_password(password, str(user.get("passwordHash") or "")):
        raise ApiError("AUTH_INVALID", "Invalid credentials", status=401)

    token = create_access_token(current_app, user)
    db.users.update_one({"_id": user["_id"]}, {"$set": {"lastLoginAt": utc_now()}})

    return jsonify(
        {
            "success": True,
            "data": {
                "access_token": token,
                "token_type": "bearer",
                "user": {
                    "id": str(user["_id"]),
                    "email": user["email"],
                    "name": user.get("name"),
                    "role": normalize_role(user.get("role")),
                    "author_id": user.get("author_id"),
                },
            },
        }
    )


@auth_bp.get("/me")
def me():
    user = get_current_user()
    return jsonify(
        {
            "success": True,
            "data": {
                "id": user["id"],
                "email": user["email"],
                "name": user["name"],
                "role": user["role"],
                "author_id": user["author_id"] or None,
            },
        }
    )


@auth_bp.post("/users")
@require_roles([ROLE_ADMIN])
def create_user():
    body = require_json()
    email = validate_email(body.get("email"))
    password = validate_password(body.get("password"), allow_short=False)
    role = _role(body.get("role"), ROLE_TRAINEE)

    db = current_app.extensions["mongo_db"]
    user = _new_user(body, email=email, password=password, role=role)
    if body.get("assignedTrainer"):
        user["assignedTrainer"] = parse_object_id(body["assignedTrainer"], what="assignedTrainer")
    _insert_user(db, user)

    return jsonify({"success": True, "data": public_doc(user, drop=_PRIVATE)}), 201


@auth_bp.patch("/users/<user_id>/trainer")
@require_roles([ROLE_ADMIN, ROLE_MASTER_TRAINER])
def assign_trainer(user_id: str):
    body = require_json()
    db = current_app.extensions["mongo_db"]
    trainee = find_by_id(db, parse_object_id(user_id, what="user id"))
    if not is_trainee(trainee):
        raise not_found("Trainee")
    trainer = find_by_id(db, parse_object_id(body.get("trainerId"), what="trainerId"))
    if not trainer or normalize_role(trainer.get("role")) != ROLE_TRAINER:
        raise not_found("Trainer")

    updated = db.users.find_one_and_update(
        {"_id": trainee["_id"]},
        {"$set": {"assignedTrainer": trainer["_id"], "updatedAt": utc_now()}},
        return_document=ReturnDocument.AFTER,
    )
    return jsonify({"success": True, "data": public_doc(updated, drop=_PRIVATE)})
