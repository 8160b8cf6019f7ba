from __future__ import annotations

from typing import Any, Iterable

from bson import ObjectId

from trainops.utils.auth import ROLE_TRAINEE, normalize_role
from trainops.utils.validators import looks_like_object_id

# Fields a dashboard uid may refer to, in lookup order.
IDENTIFIER_FIELDS = ("employeeId", "author_id", "phone", "phone_number", "email")


def identifier_query(term: str) -> dict[str, Any]:
    term = str(term or "").strip()
    clauses: list[dict[str, Any]] = [{field: term} for field in IDENTIFIER_FIELDS]
    if "@" in term:
        clauses.append({"email": term.lower()})
    if looks_like_object_id(term):
        clauses.append({"_id": ObjectId(term)})
    return {"$or": clauses}


def find_person(db, term: str) -> dict[str, Any] | None:
    if not str(term or "").strip():
        return None
    return db.users.find_one(identifier_query(term))


def find_by_id(db, user_id: Any) -> dict[str, Any] | None:
    if isinstance(user_id, str):
        if not looks_like_object_id(user_id):
            return None
        user_id = ObjectId(user_id)
    return db.users.find_one({"_id": user_id})


def find_by_author_id(db, author_id: str) -> dict[str, Any] | None:
    author_id = str(author_id or "").strip().lower()
    if not author_id:
        return None
    return db.users.find_one({"author_id": author_id})


def users_by_author_ids(db, author_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
    keys = sorted({str(a).strip().lower() for a in author_ids if str(a or "").strip()})
    if not keys:
        return {}
    return {u["author_id"]: u for u in db.users.find({"author_id": {"$in": keys}})}


def names_by_ids(db, ids: Iterable[ObjectId]) -> dict[ObjectId, str]:
    keys = list({i for i in ids if isinstance(i, ObjectId)})
    if not keys:
        return {}
    return {u["_id"]: str(u.get("name") or "") for u in db.users.find({"_id": {"$in": keys}}, {"name": 1})}


def is_trainee(user: dict[str, Any] | None) -> bool:
    return bool(user) and normalize_role(user.get("role")) == ROLE_TRAINEE


def is_assigned_trainer(trainee: dict[str, Any] | None, trainer_id: ObjectId) -> bool:
    return bool(trainee) and trainee.get("assignedTrainer") == trainer_id


def assigned_trainee_ids(db, trainer_id: ObjectId) -> list[ObjectId]:
    cursor = db.users.find({"assignedTrainer": trainer_id, "role": ROLE_TRAINEE}, {"_id": 1})
    return [u["_id"] for u in cursor]


def assigned_trainees(db, trainer_id: ObjectId) -> list[dict[str, Any]]:
    return list(
        db.users.find(
            {"assignedTrainer": trainer_id, "role": ROLE_TRAINEE},
            {"name": 1, "email": 1, "author_id": 1, "employeeId": 1},
        )
    )
