from __future__ import annotations

import pytest

from trainops.demos.service import compose_demo_status


@pytest.fixture()
def people(make_user, auth):
    trainer = make_user("trainer")
    trainee = make_user("trainee", assignedTrainer=trainer["_id"])
    return {
        "trainer": trainer,
        "trainee": trainee,
        "trainee_h": auth(trainee),
        "trainer_h": auth(trainer),
        "stranger_h": auth(make_user("trainer")),
        "master_h": auth(make_user("master_trainer")),
    }


def _upload(client, people, **extra):
    body = {
        "title": "Flexbox walkthrough",
        "description": "Recorded session",
        "courseTag": "Responsive",
        "fileUrl": "https://storage.example.com/demos/flex.mp4",
        **extra,
    }
    res = client.post("/api/v1/demos", headers=people["trainee_h"], json=body)
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]


@pytest.mark.parametrize(
    "demo, expected",
    [
        ({"type": "online"}, "under_review"),
        ({"type": "online", "trainerStatus": "approved", "masterTrainerStatus": "pending"}, "under_review"),
        ({"type": "online", "trainerStatus": "rejected"}, "trainer_rejected"),
        ({"type": "online", "trainerStatus": "approved", "masterTrainerStatus": "approved"}, "approved"),
        ({"type": "online", "trainerStatus": "approved", "masterTrainerStatus": "rejected"}, "master_trainer_rejected"),
        ({"type": "offline_demo", "trainerStatus": "approved"}, "pending_approval"),
        ({"type": "offline_demo", "masterTrainerStatus": "approved"}, "approved"),
    ],
)
def test_compose_demo_status(demo, expected):
    assert compose_demo_status(demo) == expected


def test_upload_and_two_track_review(app_client, db, people):
    _app, client = app_client
    demo = _upload(client, people)
    assert demo["status"] == "under_review"
    assert demo["traineeAuthorId"] == people["trainee"]["author_id"]
    assert db.notifications.count_documents({"recipient": people["trainer"]["_id"]}) == 1

    res = client.put(
        f"/api/v1/demos/{demo['demoId']}/master-review", headers=people["master_h"], json={"action": "approve"}
    )
    assert res.status_code == 400

    res = client.put(
        f"/api/v1/demos/{demo['demoId']}/trainer-review",
        headers=people["trainer_h"],
        json={"action": "approve", "rating": 4, "feedback": "clear"},
    )
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["trainerStatus"] == "approved"
    assert data["masterTrainerStatus"] == "pending"
    assert data["status"] == "under_review"
    assert data["rating"] == 4

    res = client.put(
        f"/api/v1/demos/{demo['demoId']}/master-review",
        headers=people["master_h"],
        json={"action": "approve", "feedback": "well done"},
    )
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["status"] == "approved"
    assert data["masterTrainerReview"] == "well done"

    res = client.put(
        f"/api/v1/demos/{demo['demoId']}/trainer-review", headers=people["trainer_h"], json={"action": "reject"}
    )
    assert res.status_code == 400


def test_trainer_rejection(app_client, db, people):
    _app, client = app_client
    demo = _upload(client, people)
    res = client.put(
        f"/api/v1/demos/{demo['demoId']}/trainer-review",
        headers=people["trainer_h"],
        json={"action": "reject", "feedback": "audio missing"},
    )
    assert res.status_code == 200
    stored = db.demos.find_one({"demoId": demo["demoId"]})
    assert stored["status"] == "trainer_rejected"
    assert stored["rejectionReason"] == "audio missing"
    assert stored["rating"] == 0


def test_unassigned_trainer_cannot_review(app_client, people):
    _app, client = app_client
    demo = _upload(client, people)
    res = client.put(
        f"/api/v1/demos/{demo['demoId']}/trainer-review", headers=people["stranger_h"], json={"action": "approve"}
    )
    assert res.status_code == 403


def test_upload_validation(app_client, people):
    _app, client = app_client
    res = client.post("/api/v1/demos", headers=people["trainee_h"], json={"title": "x"})
    assert res.status_code == 400
    res = client.post(
        "/api/v1/demos", headers=people["trainee_h"], json={"title": "x", "description": "y", "fileUrl": 12}
    )
    assert res.status_code == 400


def test_offline_demo_flow(app_client, people):
    _app, client = app_client
    res = client.post(
        "/api/v1/demos/offline",
        headers=people["trainer_h"],
        json={
            "traineeId": people["trainee"]["author_id"],
            "feedback": "confident delivery",
            "rating": 4,
            "evaluationData": {"clarity": 4},
        },
    )
    assert res.status_code == 201
    demo = res.get_json()["data"]
    assert demo["status"] == "pending_approval"
    assert demo["type"] == "offline_demo"

    res = client.put(
        f"/api/v1/demos/{demo['demoId']}/master-review", headers=people["master_h"], json={"action": "reject"}
    )
    assert res.status_code == 200
    assert res.get_json()["data"]["status"] == "master_trainer_rejected"


def test_list_filters(app_client, people):
    _app, client = app_client
    first = _upload(client, people)
    _upload(client, people, title="Grid walkthrough")
    client.put(
        f"/api/v1/demos/{first['demoId']}/trainer-review", headers=people["trainer_h"], json={"action": "reject"}
    )

    res = client.get("/api/v1/demos", headers=people["trainer_h"])
    assert res.get_json()["count"] == 2

    res = client.get("/api/v1/demos?status=trainer_rejected,approved", headers=people["master_h"])
    body = res.get_json()
    assert body["count"] == 1
    assert body["data"][0]["demoId"] == first["demoId"]

    res = client.get("/api/v1/demos", headers=people["stranger_h"])
    assert res.get_json()["count"] == 0

    res = client.get("/api/v1/demos?status=bogus", headers=people["master_h"])
    assert res.status_code == 400


def test_delete(app_client, db, people):
    _app, client = app_client
    demo = _upload(client, people)
    res = client.delete(f"/api/v1/demos/{demo['demoId']}", headers=people["stranger_h"])
    assert res.status_code == 403
    res = client.delete(f"/api/v1/demos/{demo['demoId']}", headers=people["trainee_h"])
    assert res.status_code == 200
    assert db.demos.count_documents({}) == 0
