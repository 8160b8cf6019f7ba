from __future__ import annotations

from datetime import datetime, timezone

import pytest


@pytest.fixture()
def staff(make_user, auth):
    return auth(make_user("boa"))


def _upload(client, headers, exam_type, rows):
    return client.post("/api/v1/results/bulk-upload", headers=headers, json={"examType": exam_type, "results": rows})


def test_bulk_upload_computes_percentage_and_status(app_client, db, make_user, staff):
    _app, client = app_client
    trainer = make_user("trainer", name="Priya")
    t1 = make_user("trainee", assignedTrainer=trainer["_id"])
    t2 = make_user("trainee")

    res = _upload(
        client,
        staff,
        "fortnight",
        [
            {"author_id": t1["author_id"], "score": "45", "total_marks": "60", "exam_type": "Fortnight 2"},
            {"author_id": t2["author_id"], "score": "5", "total_marks": "0", "exam_type": "Fortnight 2"},
        ],
    )
    assert res.status_code == 201
    body = res.get_json()
    assert body["uploadedCount"] == 2
    assert body["errorCount"] == 0

    r1 = db.results.find_one({"author_id": t1["author_id"]})
    assert r1["exam_type"] == "fortnight2"
    assert r1["percentage"] == 75
    assert r1["status"] == "passed"
    assert r1["trainer_name"] == "Priya"
    assert r1["result_name"] == "Fortnight2Results1"

    r2 = db.results.find_one({"author_id": t2["author_id"]})
    assert r2["percentage"] == 0
    assert r2["status"] == "failed"
    assert r2["result_name"] == "Fortnight2Results2"


def test_bulk_upload_row_errors(app_client, db, make_user, staff):
    _app, client = app_client
    trainee = make_user("trainee")
    trainer = make_user("trainer", author_id="4b8e2c1a-2f3d-4e5f-9a6b-7c8d9e0f1a2b")

    rows = [
        {"author_id": trainee["author_id"], "score": 80, "exam_type": "Daily 1"},
        {"author_id": trainee["author_id"], "score": 70, "exam_type": "Daily 1"},
        {"author_id": "missing", "score": 10},
        {"author_id": trainer["author_id"], "score": 10},
        {"score": 10},
        {"author_id": trainee["author_id"], "score": 10, "exam_type": "Daily 2", "exam_date": "garbage"},
    ]
    res = _upload(client, staff, "daily", rows)
    assert res.status_code == 201
    body = res.get_json()
    assert body["uploadedCount"] == 1
    assert body["errorCount"] == 5
    errors = body["errors"]
    assert errors[0] == f"Row 2: For author_id {trainee['author_id']}, daily1 is already added"
    assert errors[1] == "Row 3: User with author_id missing not found"
    assert "did not match with trainee role (current role: trainer)" in errors[2]
    assert errors[3] == "Row 5: author_id is required"
    assert errors[4].startswith("Row 6: Invalid exam_date")

    res = _upload(client, staff, "daily", rows[:1])
    assert res.status_code == 400
    assert res.get_json()["uploadedCount"] == 0
    assert db.results.count_documents({}) == 1


def test_update_recomputes_percentage(app_client, db, make_user, staff):
    _app, client = app_client
    trainee = make_user("trainee")
    _upload(client, staff, "course", [{"author_id": trainee["author_id"], "score": 30, "total_marks": 100}])
    result = db.results.find_one({})
    assert result["status"] == "failed"

    res = client.put(f"/api/v1/results/{result['_id']}", headers=staff, json={"score": 59.5})
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["percentage"] == 60
    assert data["status"] == "passed"

    res = client.put(f"/api/v1/results/{result['_id']}", headers=staff, json={"status": "bogus"})
    assert res.status_code == 400


def test_create_and_delete_result(app_client, make_user, staff):
    _app, client = app_client
    trainee = make_user("trainee")
    body = {"author_id": trainee["author_id"], "exam_type": "daily3", "score": 8, "total_marks": 10}
    res = client.post("/api/v1/results", headers=staff, json=body)
    assert res.status_code == 201
    result_id = res.get_json()["data"]["id"]

    res = client.post("/api/v1/results", headers=staff, json=body)
    assert res.status_code == 409

    res = client.delete(f"/api/v1/results/{result_id}", headers=staff)
    assert res.status_code == 200
    res = client.get(f"/api/v1/results/{result_id}", headers=staff)
    assert res.status_code == 404


def test_trainee_sees_only_own_results(app_client, make_user, auth, staff):
    _app, client = app_client
    me = make_user("trainee")
    other = make_user("trainee")
    _upload(
        client,
        staff,
        "daily",
        [{"author_id": me["author_id"], "score": 9, "total_marks": 10}, {"author_id": other["author_id"], "score": 9}],
    )

    res = client.get("/api/v1/results", headers=auth(me))
    assert res.status_code == 200
    body = res.get_json()
    assert body["total"] == 1
    assert body["results"][0]["author_id"] == me["author_id"]
    assert body["results"][0]["trainer_name"] == "N/A"


def test_statistics(app_client, db, staff):
    _app, client = app_client
    when = datetime(2026, 2, 10, tzinfo=timezone.utc)
    db.results.insert_many(
        [
            {"author_id": "a", "trainee_name": "A", "exam_type": "daily1", "percentage": 90, "status": "passed", "exam_date": when},
            {"author_id": "b", "trainee_name": "B", "exam_type": "daily1", "percentage": 40, "status": "failed", "exam_date": when},
            {"author_id": "a", "trainee_name": "A", "exam_type": "fortnight1", "percentage": 71, "status": "passed", "exam_date": when},
        ]
    )

    res = client.get("/api/v1/results/statistics?startDate=2026-02-01&endDate=2026-02-28", headers=staff)
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["overall"]["totalAttempts"] == 3
    assert data["overall"]["totalPassed"] == 2
    assert data["overall"]["overallPassRate"] == 67
    assert data["overall"]["overallAverageScore"] == 67
    daily = data["byExamType"]["dailyQuizzes"]
    assert daily[0]["examType"] == "daily1"
    assert daily[0]["passRate"] == 50
    assert data["topPerformers"][0]["name"] == "A"

    res = client.get("/api/v1/results/statistics?startDate=2025-01-01&endDate=2025-01-31", headers=staff)
    assert res.get_json()["data"]["overall"]["totalAttempts"] == 0


def test_author_ids_match_case_insensitively(app_client, db, make_user, staff):
    _app, client = app_client
    trainee = make_user("trainee")
    shouted = trainee["author_id"].upper()

    res = _upload(client, staff, "daily", [{"author_id": shouted, "score": 7, "total_marks": 10}])
    assert res.status_code == 201
    assert res.get_json()["errors"] == []
    assert db.results.find_one({})["author_id"] == trainee["author_id"]

    res = client.post(
        "/api/v1/results", headers=staff, json={"author_id": shouted, "exam_type": "daily2", "score": 5, "total_marks": 10}
    )
    assert res.status_code == 201
    assert res.get_json()["data"]["author_id"] == trainee["author_id"]
