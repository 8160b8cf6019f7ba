from __future__ import annotations

import threading
from datetime import timezone

from flask import Flask
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError


_client: MongoClient | None = None
_client_lock = threading.Lock()


def _create_client(mongodb_uri: str, *, server_selection_timeout_ms: int) -> MongoClient:
    if mongodb_uri.startswith("mongomock://"):
        import mongomock  # type: ignore[import-not-found]

        return mongomock.MongoClient(tz_aware=True)

    return MongoClient(
        mongodb_uri,
        serverSelectionTimeoutMS=server_selection_timeout_ms,
        tz_aware=True,
        tzinfo=timezone.utc,
        retryWrites=True,
    )


def get_client(app: Flask) -> MongoClient:
    global _client
    cfg = app.config["CFG"]
    with _client_lock:
        if _client is None:
            _client = _create_client(cfg.MONGODB_URI, server_selection_timeout_ms=cfg.MONGO_SERVER_SELECTION_TIMEOUT_MS)
    return _client


def get_db(app: Flask):
    cfg = app.config["CFG"]
    return get_client(app)[cfg.DB_NAME]


def ping_db(db) -> bool:
    try:
        db.command("ping")
        return True
    except Exception:
        try:
            # Fallback for test doubles (e.g. mongomock) and restricted environments.
            _ = db.list_collection_names()
            return True
        except PyMongoError:
            return False


def ensure_indexes(db) -> None:
    db.users.create_index([("email", ASCENDING)], unique=True, name="users_email_unique")
    db.users.create_index([("author_id", ASCENDING)], name="users_author_id")
    db.users.create_index([("assignedTrainer", ASCENDING)], name="users_assignedTrainer")

    db.joiners.create_index([("email", ASCENDING)], unique=True, name="joiners_email_unique")
    db.joiners.create_index([("author_id", ASCENDING)], unique=True, name="joiners_author_id_unique")
    db.joiners.create_index([("status", ASCENDING), ("createdAt", DESCENDING)], name="joiners_status_createdAt")

    db.results.create_index(
        [("author_id", ASCENDING), ("exam_type", ASCENDING)], unique=True, name="results_author_exam_unique"
    )
    db.results.create_index([("exam_date", DESCENDING)], name="results_exam_date_desc")

    # One plan per trainee per calendar day; the existence check in the workflow is only advisory.
    db.trainee_day_plans.create_index(
        [("trainee", ASCENDING), ("date", ASCENDING)], unique=True, name="trainee_day_plans_trainee_date_unique"
    )
    db.trainee_day_plans.create_index(
        [("status", ASCENDING), ("submittedAt", DESCENDING)], name="trainee_day_plans_status_submittedAt"
    )

    db.demos.create_index([("demoId", ASCENDING)], unique=True, name="demos_demoId_unique")
    db.demos.create_index([("traineeAuthorId", ASCENDING), ("createdAt", DESCENDING)], name="demos_trainee_createdAt")

    db.notifications.create_index([("recipient", ASCENDING), ("createdAt", DESCENDING)], name="notifications_recipient")


def init_mongo(app: Flask) -> None:
    db = get_db(app)
    app.extensions["mongo_db"] = db
    ensure_indexes(db)


def reset_client_for_tests() -> None:
    global _client
    with _client_lock:
        _client = None
