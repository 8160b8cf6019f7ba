from __future__ import annotations

import logging
from typing import Any

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from trainops.ingest.dedup import bulk_insert, lookup_map
from trainops.ingest.normalize import ONBOARDING_STEPS, normalize_joiners, row_error, sort_row_errors
from trainops.utils.auth import ROLE_TRAINEE, hash_password
from trainops.utils.datetime import utc_now
from trainops.utils.errors import ApiError, not_found

log = logging.getLogger(__name__)

JOINER_STATUSES = ("pending", "active", "inactive")


def _duplicate_message(record: dict[str, Any], by_email: dict, by_author: dict) -> str | None:
    """Row error naming the key that collided, or None when the record is new."""
    existing = by_email.get(record["email"])
    if existing:
        return f"Joiner with email {record['email']} already exists (author_id {existing['author_id']})"
    existing = by_author.get(record["author_id"])
    if existing:
        return f"Joiner with author_id {record['author_id']} already exists (email {existing['email']})"
    return None


def ingest_joiners(db, rows: list[Any], *, created_by: Any = None) -> dict[str, Any]:
    """Normalize, dedupe and insert a batch of joiner rows.

    Rows that fail validation, collide with a stored joiner, or collide with an
    earlier row of the same batch are reported as ``"Row N: ..."`` and skipped.
    """
    batch = normalize_joiners(rows, created_by=created_by)

    by_email = lookup_map(db.joiners, "email", (r["email"] for r in batch.records), projection={"email": 1, "author_id": 1})
    by_author = lookup_map(
        db.joiners, "author_id", (r["author_id"] for r in batch.records), projection={"email": 1, "author_id": 1}
    )

    errors = list(batch.errors)
    accepted: list[dict[str, Any]] = []
    accepted_rows: list[int] = []
    for record, row_no in zip(batch.records, batch.rows):
        duplicate = _duplicate_message(record, by_email, by_author)
        if duplicate:
            errors.append(row_error(row_no, duplicate))
            continue
        accepted.append(record)
        accepted_rows.append(row_no)
        # Later rows of the same batch see this one as already present.
        by_email[record["email"]] = record
        by_author[record["author_id"]] = record

    created, insert_errors = bulk_insert(db.joiners, accepted, accepted_rows)
    errors = sort_row_errors(errors + insert_errors)

    log.info("Joiner upload: %s of %s rows created, %s errors", len(created), len(rows), len(errors))

    if created and errors:
        message = f"Created {len(created)} joiners. {len(errors)} rows skipped."
    elif created:
        message = "Bulk upload successful"
    elif errors:
        message = "Validation errors found"
    else:
        message = "No joiners to upload"

    return {
        "success": bool(created),
        "message": message,
        "createdCount": len(created),
        "totalCount": len(rows),
        "errors": errors,
        "warnings": sort_row_errors(batch.warnings),
        "joiners": created,
    }


def list_joiners(db, *, status: str | None, department: str | None, page: int, limit: int) -> dict[str, Any]:
    query: dict[str, Any] = {}
    if status:
        query["status"] = status.lower()
    if department:
        query["department"] = department

    total = db.joiners.count_documents(query)
    items = list(db.joiners.find(query).sort("createdAt", -1).skip((page - 1) * limit).limit(limit))
    return {"items": items, "total": total, "page": page, "limit": limit, "totalPages": -(-total // limit)}


def get_joiner(db, author_id: str) -> dict[str, Any]:
    joiner = db.joiners.find_one({"author_id": str(author_id or "").strip().lower()})
    if not joiner:
        raise not_found("Joiner")
    return joiner


def update_onboarding(db, author_id: str, steps: dict[str, Any]) -> dict[str, Any]:
    unknown = sorted(set(steps) - set(ONBOARDING_STEPS))
    if unknown:
        raise ApiError("BAD_REQUEST", "Unknown onboarding steps", status=400, details={"unknown": unknown})
    if not steps:
        raise ApiError("BAD_REQUEST", "No onboarding steps given", status=400)

    update = {f"onboardingChecklist.{k}": bool(v) for k, v in steps.items()}
    update["updatedAt"] = utc_now()
    joiner = db.joiners.find_one_and_update(
        {"author_id": str(author_id or "").strip().lower()},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not joiner:
        raise not_found("Joiner")
    return joiner


def create_account(db, author_id: str, password: str) -> dict[str, Any]:
    """Trainee login for a joiner; the user keeps the joiner's author id."""
    joiner = get_joiner(db, author_id)
    if joiner.get("accountCreated"):
        raise ApiError("CONFLICT", "Account already created for this joiner", status=409)

    now = utc_now()
    user = {
        "name": joiner["name"],
        "email": joiner["email"],
        "passwordHash": hash_password(password),
        "role": ROLE_TRAINEE,
        "status": "active",
        "author_id": joiner["author_id"],
        "employeeId": joiner.get("employeeId"),
        "phone": joiner.get("phone"),
        "phone_number": joiner.get("phone_number"),
        "department": joiner.get("department"),
        "joiningDate": joiner.get("joiningDate"),
        "joinerId": joiner["_id"],
        "isDeployed": False,
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        db.users.insert_one(user)
    except DuplicateKeyError as e:
        raise ApiError("CONFLICT", "A user with this email already exists", status=409) from e

    mark_account_created(db, joiner["_id"], user["_id"], now)
    return user


def mark_account_created(db, joiner_id: Any, user_id: Any, now) -> None:
    db.joiners.update_one(
        {"_id": joiner_id},
        {
            "$set": {
                "accountCreated": True,
                "accountCreatedAt": now,
                "userId": user_id,
                "status": "active",
                "onboardingChecklist.credentialsGenerated": True,
                "onboardingChecklist.accountActivated": True,
                "updatedAt": now,
            }
        },
    )
