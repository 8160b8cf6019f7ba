r"""Trainee day-plan workflow.

    draft -> in_progress -> approved -> pending -> completed
                         \-> rejected          \-> rejected

Every transition is a compare-and-set on ``(_id, status)``: a plan that moved
on between the read and the write is reported as a conflict and left as is.
Notifications go out after the write and never undo it.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from trainops.notifications import notify
from trainops.people import assigned_trainee_ids, find_by_id, is_assigned_trainer, is_trainee
from trainops.utils.auth import ROLE_ADMIN, ROLE_MASTER_TRAINER, ROLE_TRAINEE, ROLE_TRAINER
from trainops.utils.datetime import utc_now
from trainops.utils.errors import ApiError, forbidden, not_found
from trainops.utils.validators import parse_day, parse_object_id

log = logging.getLogger(__name__)

DRAFT = "draft"
IN_PROGRESS = "in_progress"
APPROVED = "approved"
REJECTED = "rejected"
PENDING = "pending"
COMPLETED = "completed"

STATUSES = (DRAFT, IN_PROGRESS, APPROVED, REJECTED, PENDING, COMPLETED)
TASK_STATUSES = ("completed", "in_progress", "pending")
REVIEW_DECISIONS = ("approved", "rejected")

_ENTITY = "trainee_day_plan"


def _day_text(plan: dict[str, Any]) -> str:
    return plan["date"].strftime("%d/%m/%Y")


def _load(db, plan_id: Any) -> dict[str, Any]:
    plan = db.trainee_day_plans.find_one({"_id": parse_object_id(plan_id, what="day plan id")})
    if not plan:
        raise not_found("Day plan")
    return plan


def _require_owner(plan: dict[str, Any], actor: dict[str, Any]) -> None:
    if plan.get("trainee") != actor["oid"]:
        raise forbidden()


def _require_reviewer(db, plan: dict[str, Any], actor: dict[str, Any]) -> dict[str, Any]:
    trainee = find_by_id(db, plan.get("trainee"))
    if not is_assigned_trainer(trainee, actor["oid"]):
        raise forbidden()
    return trainee


def _require_status(plan: dict[str, Any], expected: tuple[str, ...], message: str) -> None:
    if plan.get("status") not in expected:
        raise ApiError(
            "BAD_REQUEST",
            message,
            status=400,
            details={"status": plan.get("status"), "expected": list(expected)},
        )


def _compare_and_set(db, plan: dict[str, Any], expected: tuple[str, ...], update: dict[str, Any]) -> dict[str, Any]:
    """Apply ``update`` only if the plan still has one of ``expected`` statuses."""
    update = dict(update)
    update.setdefault("$set", {})["updatedAt"] = utc_now()
    after = db.trainee_day_plans.find_one_and_update(
        {"_id": plan["_id"], "status": {"$in": list(expected)}},
        update,
        return_document=ReturnDocument.AFTER,
    )
    if after is None:
        log.info("Day plan %s changed concurrently; expected %s", plan["_id"], expected)
        raise ApiError("CONFLICT", "Day plan was modified by another request", status=409)
    return after


def _clean_tasks(tasks: Any) -> list[dict[str, Any]]:
    if tasks is None:
        return []
    if not isinstance(tasks, list):
        raise ApiError("BAD_REQUEST", "tasks must be a list", status=400)
    out = []
    for t in tasks:
        if not isinstance(t, dict):
            raise ApiError("BAD_REQUEST", "each task must be an object", status=400)
        out.append(
            {
                "id": str(t.get("id") or f"task_{uuid.uuid4().hex[:12]}"),
                "title": str(t.get("title") or "").strip(),
                "timeAllocation": str(t.get("timeAllocation") or "").strip(),
                "description": str(t.get("description") or "").strip(),
                "status": t.get("status") if t.get("status") in TASK_STATUSES else None,
                "remarks": str(t.get("remarks") or ""),
                "updatedAt": None,
            }
        )
    return out


def _incomplete_tasks(tasks: list[dict[str, Any]]) -> bool:
    return any(
        not str(t.get("title") or "").strip()
        or not str(t.get("timeAllocation") or "").strip()
        or not str(t.get("description") or "").strip()
        for t in tasks
    )


def _decision(body: dict[str, Any]) -> str:
    status = str(body.get("status") or "").strip().lower()
    if status not in REVIEW_DECISIONS:
        raise ApiError("BAD_REQUEST", "Invalid status. Must be 'approved' or 'rejected'", status=400)
    return status


# -- create / read -----------------------------------------------------------------------------


def create_plan(db, actor: dict[str, Any], body: dict[str, Any]) -> dict[str, Any]:
    trainee_id = body.get("traineeId")
    if trainee_id:
        if actor["role"] != ROLE_TRAINER:
            raise forbidden("Only trainers can create day plans for other trainees")
        trainee = find_by_id(db, parse_object_id(trainee_id, what="traineeId"))
        if not is_trainee(trainee):
            raise not_found("Trainee")
        if not is_assigned_trainer(trainee, actor["oid"]):
            raise forbidden("Trainee is not assigned to you")
        created_by = "trainer"
    else:
        if actor["role"] != ROLE_TRAINEE:
            raise ApiError("BAD_REQUEST", "traineeId is required", status=400)
        trainee = find_by_id(db, actor["oid"])
        created_by = "trainee"

    requested = str(body.get("status") or "submitted").strip().lower()
    if requested not in {"submitted", DRAFT}:
        raise ApiError("BAD_REQUEST", "status must be submitted|draft", status=400)
    submitted = requested == "submitted"

    tasks = _clean_tasks(body.get("tasks"))
    if submitted and _incomplete_tasks(tasks):
        raise ApiError("BAD_REQUEST", "Please fill in all task details before submitting", status=400)

    day = parse_day(body.get("date"))
    if db.trainee_day_plans.count_documents({"trainee": trainee["_id"], "date": day}, limit=1):
        raise ApiError(
            "CONFLICT",
            "Day plan already exists for this date. Please update the existing plan instead.",
            status=409,
        )

    now = utc_now()
    plan = {
        "trainee": trainee["_id"],
        "title": str(body.get("title") or ""),
        "date": day,
        "tasks": tasks,
        "topics": body.get("topics") or [],
        "checkboxes": body.get("checkboxes") or {},
        "status": IN_PROGRESS if submitted else DRAFT,
        "createdBy": created_by,
        "submittedAt": now if submitted else None,
        "reviewedBy": None,
        "reviewedAt": None,
        "reviewComments": "",
        "approvedBy": None,
        "approvedAt": None,
        "eodUpdate": None,
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        db.trainee_day_plans.insert_one(plan)
    except DuplicateKeyError as e:
        raise ApiError(
            "CONFLICT",
            "Day plan already exists for this date. Please update the existing plan instead.",
            status=409,
        ) from e

    if submitted:
        by_trainer = created_by == "trainer"
        notify(
            recipient=trainee.get("assignedTrainer"),
            sender=actor["oid"],
            title="Day Plan Assigned" if by_trainer else "New Day Plan Submission",
            message=(
                f"A day plan has been assigned to {trainee.get('name')} for {_day_text(plan)}"
                if by_trainer
                else f"{trainee.get('name')} has submitted a day plan for {_day_text(plan)}"
            ),
            entity_type=_ENTITY,
            entity_id=plan["_id"],
            kind=_ENTITY,
        )
    return plan


def _attach_trainees(db, plans: list[dict[str, Any]]) -> list[dict[str, Any]]:
    ids = list({p["trainee"] for p in plans if isinstance(p.get("trainee"), ObjectId)})
    people = {
        u["_id"]: {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email"), "employeeId": u.get("employeeId")}
        for u in db.users.find({"_id": {"$in": ids}}, {"name": 1, "email": 1, "employeeId": 1})
    } if ids else {}
    for p in plans:
        p["traineeInfo"] = people.get(p.get("trainee"))
    return plans


def list_plans(
    db,
    actor: dict[str, Any],
    *,
    status: str | None = None,
    trainee_id: str | None = None,
    start=None,
    end=None,
    page: int = 1,
    limit: int = 20,
) -> dict[str, Any]:
    query: dict[str, Any] = {}
    role = actor["role"]
    if role == ROLE_TRAINEE:
        query["trainee"] = actor["oid"]
    elif role == ROLE_TRAINER:
        mine = assigned_trainee_ids(db, actor["oid"])
        if trainee_id:
            wanted = parse_object_id(trainee_id, what="traineeId")
            if wanted not in mine:
                raise forbidden("Trainee is not assigned to you")
            query["trainee"] = wanted
        else:
            query["trainee"] = {"$in": mine}
    elif role in {ROLE_MASTER_TRAINER, ROLE_ADMIN}:
        if trainee_id:
            query["trainee"] = parse_object_id(trainee_id, what="traineeId")
    else:
        raise forbidden()

    if status:
        if status not in STATUSES:
            raise ApiError("BAD_REQUEST", f"status must be one of: {', '.join(STATUSES)}", status=400)
        query["status"] = status
    if start is not None and end is not None:
        query["date"] = {"$gte": start, "$lt": end}

    total = db.trainee_day_plans.count_documents(query)
    plans = list(
        db.trainee_day_plans.find(query)
        .sort([("date", -1), ("submittedAt", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return {
        "dayPlans": _attach_trainees(db, plans),
        "total": total,
        "currentPage": page,
        "totalPages": -(-total // limit),
    }


def plan_stats(db) -> dict[str, int]:
    plans = db.trainee_day_plans
    return {
        "totalPlans": plans.count_documents({}),
        "published": plans.count_documents({"status": APPROVED}),
        "completed": plans.count_documents({"status": COMPLETED, "eodUpdate.status": "approved"}),
        "draft": plans.count_documents({"status": {"$in": [DRAFT, IN_PROGRESS]}}),
    }


def get_plan(db, actor: dict[str, Any], plan_id: str) -> dict[str, Any]:
    plan = _load(db, plan_id)
    role = actor["role"]
    if role == ROLE_TRAINEE:
        _require_owner(plan, actor)
    elif role == ROLE_TRAINER:
        _require_reviewer(db, plan, actor)
    elif role not in {ROLE_MASTER_TRAINER, ROLE_ADMIN}:
        raise forbidden()
    return _attach_trainees(db, [plan])[0]


# -- trainee actions ---------------------------------------------------------------------------


def update_plan(db, actor: dict[str, Any], plan_id: str, body: dict[str, Any]) -> dict[str, Any]:
    plan = _load(db, plan_id)
    _require_owner(plan, actor)
    editable = (DRAFT, IN_PROGRESS)
    _require_status(
        plan, editable, "Cannot update day plan. Only draft or in_progress day plans can be updated."
    )

    changes: dict[str, Any] = {}
    if body.get("tasks") is not None:
        changes["tasks"] = _clean_tasks(body["tasks"])
    if body.get("checkboxes") is not None:
        if not isinstance(body["checkboxes"], dict):
            raise ApiError("BAD_REQUEST", "checkboxes must be an object", status=400)
        changes["checkboxes"] = body["checkboxes"]
    if "title" in body:
        changes["title"] = str(body.get("title") or "")
    if not changes:
        return plan
    return _compare_and_set(db, plan, editable, {"$set": changes})


def submit_plan(db, actor: dict[str, Any], plan_id: str) -> dict[str, Any]:
    plan = _load(db, plan_id)
    _require_owner(plan, actor)
    _require_status(plan, (DRAFT,), "Day plan is already submitted")
    if _incomplete_tasks(plan.get("tasks") or []):
        raise ApiError("BAD_REQUEST", "Please fill in all task details before submitting", status=400)

    plan = _compare_and_set(db, plan, (DRAFT,), {"$set": {"status": IN_PROGRESS, "submittedAt": utc_now()}})

    trainee = find_by_id(db, plan["trainee"]) or {}
    notify(
        recipient=trainee.get("assignedTrainer"),
        sender=actor["oid"],
        title="Day Plan Submitted",
        message=f"{trainee.get('name')} has submitted a day plan for {_day_text(plan)}",
        entity_type=_ENTITY,
        entity_id=plan["_id"],
        kind=_ENTITY,
    )
    return plan


def _apply_task_updates(tasks: list[dict[str, Any]], updates: Any) -> list[dict[str, Any]]:
    if updates is None:
        return tasks
    if not isinstance(updates, list):
        raise ApiError("BAD_REQUEST", "tasks must be a list", status=400)
    now = utc_now()
    tasks = [dict(t) for t in tasks]
    for u in updates:
        if not isinstance(u, dict):
            continue
        try:
            idx = int(u.get("taskIndex"))
        except (TypeError, ValueError):
            continue
        if not 0 <= idx < len(tasks):
            continue
        status = u.get("status")
        if status not in TASK_STATUSES:
            raise ApiError("BAD_REQUEST", f"task status must be one of: {', '.join(TASK_STATUSES)}", status=400)
        tasks[idx]["status"] = status
        tasks[idx]["remarks"] = str(u.get("remarks") or "")
        tasks[idx]["updatedAt"] = now
    return tasks


def _apply_checkbox_updates(checkboxes: dict[str, Any], updates: Any) -> dict[str, Any]:
    """Tick/untick checkboxes; groups are keyed by task id and hold a list or a map of boxes."""
    if not isinstance(updates, list) or not isinstance(checkboxes, dict):
        return checkboxes
    now = utc_now()
    for u in updates:
        if not isinstance(u, dict):
            continue
        task_id, box_id = str(u.get("taskId") or ""), str(u.get("checkboxId") or "")
        group = checkboxes.get(task_id)
        if not task_id or not box_id or group is None:
            continue
        if isinstance(group, list):
            boxes = [b for b in group if isinstance(b, dict) and str(b.get("id")) == box_id]
        elif isinstance(group, dict):
            boxes = [group[box_id]] if isinstance(group.get(box_id), dict) else []
        else:
            boxes = []
        for box in boxes:
            box["checked"] = bool(u.get("checked"))
            box["updatedAt"] = now
    return checkboxes


def submit_eod(db, actor: dict[str, Any], body: dict[str, Any]) -> dict[str, Any]:
    day = parse_day(body.get("date"))
    plan = db.trainee_day_plans.find_one({"trainee": actor["oid"], "date": day})
    if not plan:
        raise ApiError("NOT_FOUND", "No day plan found for this date. Please submit a day plan first.", status=404)
    _require_status(plan, (APPROVED,), "Day plan must be approved by trainer before submitting EOD update.")

    tasks = _apply_task_updates(plan.get("tasks") or [], body.get("tasks"))
    checkboxes = _apply_checkbox_updates(plan.get("checkboxes") or {}, body.get("checkboxes"))
    plan = _compare_and_set(
        db,
        plan,
        (APPROVED,),
        {
            "$set": {
                "tasks": tasks,
                "checkboxes": checkboxes,
                "status": PENDING,
                "eodUpdate": {
                    "submittedAt": utc_now(),
                    "overallRemarks": str(body.get("overallRemarks") or ""),
                    "status": "submitted",
                    "reviewedAt": None,
                    "reviewedBy": None,
                    "reviewComments": "",
                },
            }
        },
    )

    trainee = find_by_id(db, actor["oid"]) or {}
    notify(
        recipient=trainee.get("assignedTrainer"),
        sender=actor["oid"],
        title="EOD Update Received",
        message=f"{trainee.get('name')} has submitted their end-of-day update for {_day_text(plan)}",
        entity_type=_ENTITY,
        entity_id=plan["_id"],
        kind=_ENTITY,
    )
    return plan


def delete_plan(db, actor: dict[str, Any], plan_id: str) -> None:
    plan = _load(db, plan_id)
    _require_owner(plan, actor)
    _require_status(plan, (DRAFT,), "Cannot delete submitted day plan")
    res = db.trainee_day_plans.delete_one({"_id": plan["_id"], "status": DRAFT})
    if res.deleted_count == 0:
        raise ApiError("CONFLICT", "Day plan was modified by another request", status=409)


# -- trainer actions ---------------------------------------------------------------------------


def review_plan(db, actor: dict[str, Any], plan_id: str, body: dict[str, Any]) -> dict[str, Any]:
    plan = _load(db, plan_id)
    _require_reviewer(db, plan, actor)
    decision = _decision(body)
    _require_status(plan, (IN_PROGRESS,), "Only day plans with 'in_progress' status can be reviewed")

    now = utc_now()
    changes: dict[str, Any] = {
        "status": APPROVED if decision == "approved" else REJECTED,
        "reviewedBy": actor["oid"],
        "reviewedAt": now,
        "reviewComments": str(body.get("reviewComments") or ""),
    }
    if decision == "approved":
        changes["approvedBy"] = actor["oid"]
        changes["approvedAt"] = now
    plan = _compare_and_set(db, plan, (IN_PROGRESS,), {"$set": changes})

    notify(
        recipient=plan["trainee"],
        sender=actor["oid"],
        title=f"Day Plan {decision.capitalize()}",
        message=f"Your day plan for {_day_text(plan)} has been {decision}",
        entity_type=_ENTITY,
        entity_id=plan["_id"],
    )
    return plan


def review_eod(db, actor: dict[str, Any], plan_id: str, body: dict[str, Any]) -> dict[str, Any]:
    plan = _load(db, plan_id)
    _require_reviewer(db, plan, actor)
    _require_status(plan, (PENDING,), "Only day plans with pending EOD updates can be reviewed")
    decision = _decision(body)

    plan = _compare_and_set(
        db,
        plan,
        (PENDING,),
        {
            "$set": {
                "status": COMPLETED if decision == "approved" else REJECTED,
                "eodUpdate.status": decision,
                "eodUpdate.reviewedAt": utc_now(),
                "eodUpdate.reviewedBy": actor["oid"],
                "eodUpdate.reviewComments": str(body.get("reviewComments") or ""),
            }
        },
    )

    notify(
        recipient=plan["trainee"],
        sender=actor["oid"],
        title=f"EOD Update {decision.capitalize()}",
        message=f"Your end-of-day update for {_day_text(plan)} has been {decision}",
        entity_type=_ENTITY,
        entity_id=plan["_id"],
    )
    return plan
