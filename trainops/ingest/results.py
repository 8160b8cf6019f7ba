from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Any

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from trainops.ingest.dedup import bulk_insert
from trainops.ingest.normalize import (
    EXAM_FAMILIES,
    cell_text,
    compute_percentage,
    normalize_exam_type,
    parse_score,
    parse_total_marks,
    result_name,
    result_status,
    row_error,
    sort_row_errors,
)
from trainops.people import find_by_author_id, find_by_id, is_trainee, names_by_ids, users_by_author_ids
from trainops.utils.auth import ROLE_TRAINEE
from trainops.utils.datetime import parse_datetime_maybe, utc_now
from trainops.utils.errors import ApiError, not_found
from trainops.utils.validators import parse_object_id

log = logging.getLogger(__name__)


def _stored_counts(db, exam_types: set[str]) -> Counter:
    """Stored result count per exam type; one aggregate for the whole batch."""
    if not exam_types:
        return Counter()
    pipe = [
        {"$match": {"exam_type": {"$in": sorted(exam_types)}}},
        {"$group": {"_id": "$exam_type", "count": {"$sum": 1}}},
    ]
    return Counter({row["_id"]: int(row["count"]) for row in db.results.aggregate(pipe)})


def _trainer_name(db, user: dict[str, Any]) -> str:
    return names_by_ids(db, [user.get("assignedTrainer")]).get(user.get("assignedTrainer"), "")


def _result_record(
    row: dict[str, Any], user: dict[str, Any], exam_type: str, *, uploaded_by: Any, trainer_name: str, pass_mark: int
) -> dict[str, Any]:
    score = parse_score(row.get("score"))
    total_marks = parse_total_marks(row.get("total_marks"))
    percentage = compute_percentage(score, total_marks)
    return {
        "author_id": user["author_id"],
        "trainee_name": cell_text(row.get("trainee_name")) or user.get("name") or "",
        "email": (cell_text(row.get("email")) or user.get("email") or "").lower(),
        "exam_type": exam_type,
        "score": score,
        "total_marks": total_marks,
        "percentage": percentage,
        "status": result_status(percentage, pass_mark),
        "remarks": cell_text(row.get("remarks")),
        "department": cell_text(row.get("department")) or user.get("department") or "",
        "trainer_name": cell_text(row.get("trainer_name")) or trainer_name,
        "batch_name": cell_text(row.get("batch_name")),
        "uploaded_by": uploaded_by,
        "uploaded_at": utc_now(),
    }


def ingest_results(db, exam_type: str, rows: list[Any], *, uploaded_by: Any, pass_mark: int = 60) -> dict[str, Any]:
    """Store a batch of exam result rows for trainees, one per (author_id, exam type)."""
    author_ids = {cell_text(r.get("author_id")).lower() for r in rows if isinstance(r, dict)} - {""}
    users = users_by_author_ids(db, author_ids)
    taken = {
        (doc["author_id"], doc["exam_type"])
        for doc in db.results.find({"author_id": {"$in": sorted(author_ids)}}, {"author_id": 1, "exam_type": 1})
    } if author_ids else set()
    trainer_names = names_by_ids(db, (u.get("assignedTrainer") for u in users.values()))

    errors: list[str] = []
    records: list[dict[str, Any]] = []
    row_numbers: list[int] = []
    for i, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            errors.append(row_error(i, "row must be an object"))
            continue
        author_id = cell_text(row.get("author_id")).lower()
        if not author_id:
            errors.append(row_error(i, "author_id is required"))
            continue
        user = users.get(author_id)
        if not user:
            errors.append(row_error(i, f"User with author_id {author_id} not found"))
            continue
        if not is_trainee(user):
            errors.append(
                row_error(i, f"author_id {author_id} did not match with trainee role (current role: {user.get('role')})")
            )
            continue

        final_type = normalize_exam_type(row.get("exam_type"), exam_type)
        if (author_id, final_type) in taken:
            errors.append(row_error(i, f"For author_id {author_id}, {final_type} is already added"))
            continue

        raw_date = cell_text(row.get("exam_date"))
        exam_date = parse_datetime_maybe(raw_date) if raw_date else utc_now()
        if exam_date is None:
            errors.append(row_error(i, f"Invalid exam_date: {raw_date}"))
            continue

        taken.add((author_id, final_type))
        record = _result_record(
            row,
            user,
            final_type,
            uploaded_by=uploaded_by,
            trainer_name=trainer_names.get(user.get("assignedTrainer"), ""),
            pass_mark=pass_mark,
        )
        record["exam_date"] = exam_date
        records.append(record)
        row_numbers.append(i)

    counts = _stored_counts(db, {r["exam_type"] for r in records})
    for record in records:
        counts[record["exam_type"]] += 1
        record["result_name"] = result_name(record["exam_type"], counts[record["exam_type"]])

    created, insert_errors = bulk_insert(db.results, records, row_numbers)
    errors = sort_row_errors(errors + insert_errors)
    log.info("Result upload (%s): %s of %s rows stored, %s errors", exam_type, len(created), len(rows), len(errors))

    if created and errors:
        message = f"Successfully uploaded {len(created)} results. {len(errors)} errors occurred."
    elif created:
        message = f"Successfully uploaded {len(created)} results"
    elif errors:
        message = f"Upload failed. {len(errors)} errors occurred."
    else:
        message = "No results to upload"

    return {
        "success": bool(created),
        "message": message,
        "uploadedCount": len(created),
        "errorCount": len(errors),
        "errors": errors,
        "results": created,
    }


def create_result(db, body: dict[str, Any], *, uploaded_by: Any, pass_mark: int = 60) -> dict[str, Any]:
    author_id = cell_text(body.get("author_id")).lower()
    if not author_id:
        raise ApiError("BAD_REQUEST", "author_id is required", status=400)
    user = find_by_author_id(db, author_id)
    if not user:
        raise not_found("Trainee")
    if not is_trainee(user):
        raise ApiError("BAD_REQUEST", f"author_id {author_id} is not a trainee", status=400)

    exam_type = normalize_exam_type(body.get("exam_type"), body.get("exam_type"))
    raw_date = cell_text(body.get("exam_date"))
    exam_date = parse_datetime_maybe(raw_date) if raw_date else utc_now()
    if exam_date is None:
        raise ApiError("BAD_REQUEST", "Invalid exam_date", status=400)

    record = _result_record(
        body, user, exam_type, uploaded_by=uploaded_by, trainer_name=_trainer_name(db, user), pass_mark=pass_mark
    )
    record["exam_date"] = exam_date
    record["result_name"] = result_name(exam_type, db.results.count_documents({"exam_type": exam_type}) + 1)
    try:
        db.results.insert_one(record)
    except DuplicateKeyError as e:
        raise ApiError("CONFLICT", f"For author_id {author_id}, {exam_type} is already added", status=409) from e
    return record


def update_result(db, result_id: str, body: dict[str, Any], *, pass_mark: int = 60) -> dict[str, Any]:
    """Administrative correction. Percentage and status always follow score/total_marks."""
    oid = parse_object_id(result_id, what="result id")
    current = db.results.find_one({"_id": oid})
    if not current:
        raise not_found("Result")

    update: dict[str, Any] = {}
    if "remarks" in body:
        update["remarks"] = cell_text(body.get("remarks"))
    if "score" in body or "total_marks" in body:
        score = parse_score(body["score"]) if "score" in body else float(current.get("score") or 0)
        total = parse_total_marks(body["total_marks"]) if "total_marks" in body else float(current.get("total_marks") or 0)
        percentage = compute_percentage(score, total)
        update.update(
            {"score": score, "total_marks": total, "percentage": percentage, "status": result_status(percentage, pass_mark)}
        )
    elif "status" in body:
        status = cell_text(body.get("status")).lower()
        if status not in {"passed", "failed"}:
            raise ApiError("BAD_REQUEST", "status must be passed|failed", status=400)
        update["status"] = status

    if not update:
        return current
    update["updatedAt"] = utc_now()
    return db.results.find_one_and_update({"_id": oid}, {"$set": update}, return_document=ReturnDocument.AFTER)


def get_result(db, result_id: str) -> dict[str, Any]:
    doc = db.results.find_one({"_id": parse_object_id(result_id, what="result id")})
    if not doc:
        raise not_found("Result")
    return doc


def delete_result(db, result_id: str) -> None:
    res = db.results.delete_one({"_id": parse_object_id(result_id, what="result id")})
    if res.deleted_count == 0:
        raise not_found("Result")


def list_results(db, actor: dict[str, Any], *, exam_type: str | None, author_id: str | None, page: int, limit: int) -> dict[str, Any]:
    query: dict[str, Any] = {}
    if actor["role"] == ROLE_TRAINEE:
        me = find_by_id(db, actor["oid"]) or {}
        if me.get("author_id"):
            query["author_id"] = me["author_id"]
        elif me.get("email"):
            query["email"] = str(me["email"]).lower()
        else:
            return {"results": [], "total": 0, "currentPage": page, "totalPages": 0}
        # Trainees always get their full history.
        page, limit = 1, 1000
    elif author_id:
        query["author_id"] = author_id.strip().lower()

    if exam_type:
        family = exam_type.strip().lower()
        if family in EXAM_FAMILIES:
            query["exam_type"] = {"$regex": f"^{re.escape(family)}"}
        else:
            query["exam_type"] = family

    total = db.results.count_documents(query)
    results = list(db.results.find(query).sort("uploaded_at", -1).skip((page - 1) * limit).limit(limit))

    missing = {r["author_id"] for r in results if not r.get("trainer_name")}
    if missing:
        owners = users_by_author_ids(db, missing)
        names = names_by_ids(db, (u.get("assignedTrainer") for u in owners.values()))
        for r in results:
            if not r.get("trainer_name"):
                owner = owners.get(r["author_id"]) or {}
                r["trainer_name"] = names.get(owner.get("assignedTrainer")) or "N/A"

    return {"results": results, "total": total, "currentPage": page, "totalPages": -(-total // limit)}
