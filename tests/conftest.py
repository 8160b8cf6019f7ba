import uuid
from datetime import datetime, timezone

import pytest


@pytest.fixture()
def app_client(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("ENV", "testing")
    monkeypatch.setenv("MONGODB_URI", "mongomock://localhost")
    monkeypatch.setenv("DB_NAME", "trainops_test")
    monkeypatch.setenv("BOOTSTRAP_TOKEN", "test-bootstrap")
    monkeypatch.setenv("TRAINEE_INVITE_TOKEN", "join-as-trainee")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")

    # Prevent accidental pollution from any existing env config.
    monkeypatch.delenv("CORS_ORIGINS", raising=False)
    monkeypatch.delenv("DASHBOARD_LEGACY_FORTNIGHT_COUNT", raising=False)
    monkeypatch.delenv("EXPOSE_ERROR_DETAILS", raising=False)

    from trainops import create_app
    from trainops.db import reset_client_for_tests

    reset_client_for_tests()

    app = create_app()
    app.testing = True

    with app.test_client() as client:
        yield app, client

    reset_client_for_tests()


@pytest.fixture()
def db(app_client):
    app, _client = app_client
    return app.extensions["mongo_db"]


@pytest.fixture()
def make_user(db):
    """Insert a user straight into the store; password hashing is skipped."""
    counter = {"n": 0}

    def _make(role: str, **fields):
        counter["n"] += 1
        n = counter["n"]
        user = {
            "name": f"{role.title()} {n}",
            "email": f"{role}{n}@example.com",
            "passwordHash": "",
            "role": role,
            "status": "active",
            "createdAt": datetime(2026, 1, 1, tzinfo=timezone.utc),
        }
        if role == "trainee":
            user["author_id"] = str(uuid.uuid4())
        user.update(fields)
        db.users.insert_one(user)
        return user

    return _make


@pytest.fixture()
def auth(app_client):
    """Bearer headers for a stored user."""
    app, _client = app_client

    from trainops.utils.auth import create_access_token

    def _auth(user) -> dict:
        return {"Authorization": f"Bearer {create_access_token(app, user)}"}

    return _auth
