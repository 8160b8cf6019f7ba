from __future__ import annotations

import pytest

from trainops.ingest import joiners
from trainops.ingest.dedup import bulk_insert
from trainops.ingest.joiners import ingest_joiners
from trainops.ingest.normalize import is_uuid4

ROW = {
    "candidate_name": "Asha Rao",
    "candidate_personal_mail_id": "asha.rao@example.com",
    "phone_number": "98765 43210",
    "role_assign": "SDM",
    "date_of_joining": "2026-01-05",
}


@pytest.fixture()
def boa_headers(make_user, auth):
    return auth(make_user("boa"))


def test_single_row_upload(app_client, db, boa_headers):
    _app, client = app_client
    res = client.post("/api/v1/joiners/bulk-upload", headers=boa_headers, json={"joiners_data": [ROW]})
    assert res.status_code == 201
    body = res.get_json()
    assert body["createdCount"] == 1
    assert body["errors"] == []

    stored = list(db.joiners.find({}))
    assert len(stored) == 1
    assert is_uuid4(stored[0]["author_id"])
    assert stored[0]["phone_number"] == "9876543210"
    assert body["joiners"][0]["author_id"] == stored[0]["author_id"]


def test_resubmitting_same_row_creates_nothing(app_client, db, boa_headers):
    _app, client = app_client
    first = client.post("/api/v1/joiners/bulk-upload", headers=boa_headers, json={"joiners_data": [ROW]})
    author_id = first.get_json()["joiners"][0]["author_id"]

    res = client.post("/api/v1/joiners/bulk-upload", headers=boa_headers, json={"joiners_data": [ROW]})
    assert res.status_code == 400
    body = res.get_json()
    assert body["success"] is False
    assert body["createdCount"] == 0
    assert len(body["errors"]) == 1
    assert body["errors"][0].startswith("Row 1:")
    assert "asha.rao@example.com" in body["errors"][0]
    assert author_id in body["errors"][0]
    assert db.joiners.count_documents({}) == 1


def test_committed_equals_input_minus_excluded(db):
    rows = [
        ROW,
        {**ROW, "candidate_personal_mail_id": "ASHA.RAO@example.com"},  # same email, other case
        {**ROW, "candidate_personal_mail_id": "bad"},
        {**ROW, "candidate_name": "Ravi", "candidate_personal_mail_id": "ravi@example.com"},
        "not a row",
    ]
    out = ingest_joiners(db, rows)
    assert out["totalCount"] == 5
    assert out["createdCount"] == 2
    assert out["createdCount"] == out["totalCount"] - len(out["errors"])
    assert [e.split(":", 1)[0] for e in out["errors"]] == ["Row 2", "Row 3", "Row 5"]
    assert db.joiners.count_documents({}) == 2


def test_bulk_upload_rejects_empty_payload(app_client, boa_headers):
    _app, client = app_client
    res = client.post("/api/v1/joiners/bulk-upload", headers=boa_headers, json={"joiners_data": []})
    assert res.status_code == 400
    assert res.get_json()["error"]["code"] == "BAD_REQUEST"


def test_bulk_upload_requires_staff_role(app_client, make_user, auth):
    _app, client = app_client
    res = client.post(
        "/api/v1/joiners/bulk-upload", headers=auth(make_user("trainee")), json={"joiners_data": [ROW]}
    )
    assert res.status_code == 403


def test_list_onboarding_and_account(app_client, db, boa_headers):
    _app, client = app_client
    client.post("/api/v1/joiners/bulk-upload", headers=boa_headers, json={"joiners_data": [ROW]})
    author_id = db.joiners.find_one({})["author_id"]

    res = client.get("/api/v1/joiners?status=pending", headers=boa_headers)
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["total"] == 1
    assert data["items"][0]["author_id"] == author_id

    res = client.patch(
        f"/api/v1/joiners/{author_id}/onboarding", headers=boa_headers, json={"welcomeEmailSent": True}
    )
    assert res.status_code == 200
    assert res.get_json()["data"]["onboardingChecklist"]["welcomeEmailSent"] is True

    res = client.patch(f"/api/v1/joiners/{author_id}/onboarding", headers=boa_headers, json={"bogus": True})
    assert res.status_code == 400

    res = client.post(f"/api/v1/joiners/{author_id}/account", headers=boa_headers, json={"password": "password123"})
    assert res.status_code == 201
    user = db.users.find_one({"email": "asha.rao@example.com"})
    assert user["author_id"] == author_id
    assert user["role"] == "trainee"

    joiner = db.joiners.find_one({"author_id": author_id})
    assert joiner["accountCreated"] is True
    assert joiner["status"] == "active"
    assert joiner["onboardingChecklist"]["credentialsGenerated"] is True

    res = client.post(f"/api/v1/joiners/{author_id}/account", headers=boa_headers, json={"password": "password123"})
    assert res.status_code == 409


def test_store_rejections_are_reported_per_row(db, monkeypatch):
    db.joiners.insert_one({"email": "asha.rao@example.com", "author_id": "stored-1"})
    # Skip the pre-insert lookup so the unique index has to reject the row.
    monkeypatch.setattr(joiners, "lookup_map", lambda *a, **k: {})

    rows = [
        {**ROW, "candidate_personal_mail_id": "bad"},
        {**ROW, "candidate_name": "Ravi", "candidate_personal_mail_id": "ravi@example.com"},
        ROW,
    ]
    out = ingest_joiners(db, rows)
    assert out["createdCount"] == 1
    assert out["createdCount"] == out["totalCount"] - len(out["errors"])
    assert out["errors"][0].startswith("Row 1:")
    assert out["errors"][1].startswith("Row 3: Duplicate record rejected by the database")
    assert [j["email"] for j in out["joiners"]] == ["ravi@example.com"]
    assert db.joiners.count_documents({}) == 2


def test_bulk_insert_maps_write_errors_to_rows(db):
    db.joiners.insert_one({"email": "dup@example.com", "author_id": "a-1"})
    created, errors = bulk_insert(
        db.joiners,
        [{"email": "dup@example.com", "author_id": "a-2"}, {"email": "new@example.com", "author_id": "a-3"}],
        [4, 7],
    )
    assert [c["email"] for c in created] == ["new@example.com"]
    assert len(errors) == 1
    assert errors[0].startswith("Row 4: Duplicate record rejected by the database")


def test_author_id_collision_names_author_id(db):
    author_id = "4b8e2c1a-2f3d-4e5f-9a6b-7c8d9e0f1a2b"
    db.joiners.insert_one({"email": "first@example.com", "author_id": author_id})

    out = ingest_joiners(db, [{**ROW, "author_id": author_id.upper()}])
    assert out["createdCount"] == 0
    assert out["errors"] == [f"Row 1: Joiner with author_id {author_id} already exists (email first@example.com)"]
