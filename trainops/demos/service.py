"""Demo reviews.

A demo is its own document in ``demos`` (keyed by ``demoId``) pointing at the
trainee through ``traineeAuthorId``. Two review tracks run on it: the
trainer's, then the master trainer's. ``status`` is always derived from the two
tracks by :func:`compose_demo_status` and written in the same update.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any

from pymongo import ReturnDocument

from trainops.notifications import notify
from trainops.people import assigned_trainees, find_by_author_id, is_assigned_trainer, is_trainee
from trainops.utils.auth import ROLE_ADMIN, ROLE_MASTER_TRAINER, ROLE_TRAINEE, ROLE_TRAINER
from trainops.utils.datetime import utc_now
from trainops.utils.errors import ApiError, forbidden, not_found

log = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline_demo"
DEMO_TYPES = (ONLINE, OFFLINE)

DEMO_STATUSES = ("under_review", "trainer_rejected", "approved", "master_trainer_rejected", "pending_approval")
ACTIONS = ("approve", "reject")

_ENTITY = "demo"


def compose_demo_status(demo: dict[str, Any]) -> str:
    trainer = demo.get("trainerStatus")
    master = demo.get("masterTrainerStatus")
    if trainer == "rejected":
        return "trainer_rejected"
    if master == "approved":
        return "approved"
    if master == "rejected":
        return "master_trainer_rejected"
    if demo.get("type") == OFFLINE:
        return "pending_approval"
    return "under_review"


def _action(body: dict[str, Any]) -> str:
    action = str(body.get("action") or "").strip().lower()
    if action not in ACTIONS:
        raise ApiError("BAD_REQUEST", "action must be approve|reject", status=400)
    return action


def _rating(value: Any) -> float:
    if value in (None, ""):
        return 0.0
    try:
        rating = float(value)
    except (TypeError, ValueError) as e:
        raise ApiError("BAD_REQUEST", "rating must be a number", status=400) from e
    if not 0 <= rating <= 5:
        raise ApiError("BAD_REQUEST", "rating must be between 0 and 5", status=400)
    return rating


def _load(db, demo_id: str) -> dict[str, Any]:
    demo = db.demos.find_one({"demoId": str(demo_id or "").strip()})
    if not demo:
        raise not_found("Demo")
    return demo


def _trainee_for(db, actor: dict[str, Any], author_id: Any) -> dict[str, Any]:
    """The trainee a demo belongs to; trainees may only act for themselves."""
    if actor["role"] == ROLE_TRAINEE:
        author_id = actor["author_id"]
    trainee = find_by_author_id(db, str(author_id or ""))
    if not is_trainee(trainee):
        raise not_found("Trainee")
    if actor["role"] == ROLE_TRAINER and not is_assigned_trainer(trainee, actor["oid"]):
        raise forbidden("Trainee is not assigned to you")
    return trainee


def _update(db, demo: dict[str, Any], guard: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    """Single-document update of one demo, re-deriving ``status`` from the merged fields."""
    changes = dict(changes)
    changes["status"] = compose_demo_status({**demo, **changes})
    changes["updatedAt"] = utc_now()
    after = db.demos.find_one_and_update(
        {"demoId": demo["demoId"], **guard}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )
    if after is None:
        raise ApiError("CONFLICT", "Demo was modified by another request", status=409)
    return after


def upload_demo(db, actor: dict[str, Any], body: dict[str, Any]) -> dict[str, Any]:
    title = str(body.get("title") or "").strip()
    description = str(body.get("description") or "").strip()
    if not title or not description:
        raise ApiError("BAD_REQUEST", "Title and description are required", status=400)
    if actor["role"] != ROLE_TRAINEE and not body.get("traineeId"):
        raise ApiError("BAD_REQUEST", "traineeId is required", status=400)
    trainee = _trainee_for(db, actor, body.get("traineeId"))

    demo_type = str(body.get("type") or ONLINE).strip().lower()
    if demo_type == "online_demo":
        demo_type = ONLINE
    if demo_type not in DEMO_TYPES:
        raise ApiError("BAD_REQUEST", f"type must be one of: {', '.join(DEMO_TYPES)}", status=400)

    now = utc_now()
    demo = {
        "demoId": uuid.uuid4().hex,
        "traineeAuthorId": trainee["author_id"],
        "traineeName": trainee.get("name") or "Trainee",
        "title": title,
        "description": description,
        "courseTag": str(body.get("courseTag") or ""),
        "type": demo_type,
        "fileName": body.get("fileName") or None,
        "fileUrl": body.get("fileUrl") or None,
        "rating": 0,
        "feedback": "",
        "trainerStatus": None,
        "masterTrainerStatus": None,
        "reviewedBy": None,
        "reviewedByName": None,
        "reviewedAt": None,
        "rejectionReason": None,
        "masterTrainerReview": None,
        "masterTrainerReviewedBy": None,
        "masterTrainerReviewedAt": None,
        "evaluationData": {},
        "createdBy": actor["oid"],
        "createdAt": now,
        "updatedAt": now,
    }
    demo["status"] = compose_demo_status(demo)
    db.demos.insert_one(demo)

    notify(
        recipient=trainee.get("assignedTrainer"),
        sender=actor["oid"],
        title="New Demo Submitted",
        message=f"{demo['traineeName']} has submitted a {demo_type} demo: {title}",
        entity_type=_ENTITY,
        entity_id=demo["demoId"],
        kind="demo_submitted",
    )
    return demo


def list_demos(
    db, actor: dict[str, Any], *, trainee_id: str | None = None, statuses: list[str] | None = None
) -> list[dict[str, Any]]:
    query: dict[str, Any] = {}
    role = actor["role"]
    if role == ROLE_TRAINEE:
        query["traineeAuthorId"] = actor["author_id"]
    elif role == ROLE_TRAINER:
        mine = [t["author_id"] for t in assigned_trainees(db, actor["oid"]) if t.get("author_id")]
        if trainee_id:
            if trainee_id not in mine:
                raise forbidden("Trainee is not assigned to you")
            query["traineeAuthorId"] = trainee_id
        else:
            query["traineeAuthorId"] = {"$in": mine}
    elif role in {ROLE_MASTER_TRAINER, ROLE_ADMIN}:
        if trainee_id:
            query["traineeAuthorId"] = trainee_id
    else:
        raise forbidden()

    if statuses:
        unknown = sorted(set(statuses) - set(DEMO_STATUSES))
        if unknown:
            raise ApiError("BAD_REQUEST", "Unknown demo status", status=400, details={"unknown": unknown})
        query["status"] = {"$in": statuses}

    return list(db.demos.find(query).sort("createdAt", -1))


def get_demo(db, actor: dict[str, Any], demo_id: str) -> dict[str, Any]:
    demo = _load(db, demo_id)
    if actor["role"] == ROLE_TRAINEE and demo.get("traineeAuthorId") != actor["author_id"]:
        raise forbidden()
    if actor["role"] == ROLE_TRAINER:
        _trainee_for(db, actor, demo.get("traineeAuthorId"))
    return demo


def trainer_review(db, actor: dict[str, Any], demo_id: str, body: dict[str, Any]) -> dict[str, Any]:
    demo = _load(db, demo_id)
    if actor["role"] == ROLE_TRAINER:
        _trainee_for(db, actor, demo.get("traineeAuthorId"))
    action = _action(body)
    if demo.get("type") == OFFLINE:
        raise ApiError("BAD_REQUEST", "Offline demos are reviewed by the master trainer only", status=400)
    if demo.get("masterTrainerStatus") in {"approved", "rejected"}:
        raise ApiError("BAD_REQUEST", "Demo already reviewed by the master trainer", status=400)

    feedback = str(body.get("feedback") or "")
    common = {"reviewedBy": actor["oid"], "reviewedByName": actor["name"], "reviewedAt": utc_now()}
    if action == "approve":
        changes = {
            **common,
            "rating": _rating(body.get("rating")),
            "feedback": feedback,
            "rejectionReason": None,
            "trainerStatus": "approved",
            "masterTrainerStatus": "pending",
        }
    else:
        changes = {
            **common,
            "rating": 0,
            "feedback": "",
            "rejectionReason": feedback,
            "trainerStatus": "rejected",
            "masterTrainerStatus": None,
        }
    demo = _update(db, demo, {"masterTrainerStatus": {"$nin": ["approved", "rejected"]}}, changes)

    verdict = "approved" if action == "approve" else "rejected"
    trainee = find_by_author_id(db, demo["traineeAuthorId"]) or {}
    notify(
        recipient=trainee.get("_id"),
        sender=actor["oid"],
        title=f"Demo {verdict.capitalize()}",
        message=f"Your demo '{demo['title']}' has been {verdict} by your trainer",
        entity_type=_ENTITY,
        entity_id=demo["demoId"],
    )
    return demo


def master_review(db, actor: dict[str, Any], demo_id: str, body: dict[str, Any]) -> dict[str, Any]:
    """Final decision. Online demos need the trainer's approval first."""
    demo = _load(db, demo_id)
    action = _action(body)
    guard: dict[str, Any]
    if demo.get("type") == OFFLINE:
        guard = {"type": OFFLINE}
    else:
        if demo.get("trainerStatus") != "approved":
            raise ApiError("BAD_REQUEST", "Demo must be approved by the trainer first", status=400)
        guard = {"trainerStatus": "approved"}

    changes = {
        "masterTrainerStatus": "approved" if action == "approve" else "rejected",
        "masterTrainerReview": str(body.get("feedback") or ""),
        "masterTrainerReviewedBy": actor["oid"],
        "masterTrainerReviewedAt": utc_now(),
    }
    demo = _update(db, demo, guard, changes)

    verdict = changes["masterTrainerStatus"]
    trainee = find_by_author_id(db, demo["traineeAuthorId"]) or {}
    notify(
        recipient=trainee.get("_id"),
        sender=actor["oid"],
        title=f"Demo {verdict.capitalize()} by Master Trainer",
        message=f"Your demo '{demo['title']}' has been {verdict} by the master trainer",
        entity_type=_ENTITY,
        entity_id=demo["demoId"],
    )
    return demo


def create_offline_demo(db, actor: dict[str, Any], body: dict[str, Any]) -> dict[str, Any]:
    feedback = str(body.get("feedback") or "").strip()
    if not body.get("traineeId") or not feedback:
        raise ApiError("BAD_REQUEST", "Trainee ID and feedback are required", status=400)
    trainee = _trainee_for(db, actor, body.get("traineeId"))
    evaluation = body.get("evaluationData") or {}
    if not isinstance(evaluation, dict):
        raise ApiError("BAD_REQUEST", "evaluationData must be an object", status=400)

    now = utc_now()
    demo = {
        "demoId": uuid.uuid4().hex,
        "traineeAuthorId": trainee["author_id"],
        "traineeName": trainee.get("name") or "Trainee",
        "title": str(body.get("title") or "Offline demo"),
        "description": "",
        "courseTag": str(body.get("courseTag") or ""),
        "type": OFFLINE,
        "fileName": None,
        "fileUrl": None,
        "rating": _rating(body.get("rating")),
        "feedback": feedback,
        "trainerStatus": "approved",
        "masterTrainerStatus": None,
        "reviewedBy": actor["oid"],
        "reviewedByName": actor["name"],
        "reviewedAt": now,
        "rejectionReason": None,
        "masterTrainerReview": None,
        "masterTrainerReviewedBy": None,
        "masterTrainerReviewedAt": None,
        "evaluationData": evaluation,
        "createdBy": actor["oid"],
        "createdAt": now,
        "updatedAt": now,
    }
    demo["status"] = compose_demo_status(demo)
    db.demos.insert_one(demo)
    log.info("Offline demo %s created for %s", demo["demoId"], trainee["author_id"])
    return demo


def delete_demo(db, actor: dict[str, Any], demo_id: str) -> None:
    demo = get_demo(db, actor, demo_id)
    db.demos.delete_one({"demoId": demo["demoId"]})
