from __future__ import annotations

from datetime import datetime, timezone
from io import BytesIO

import pytest
from openpyxl import load_workbook
from pymongo.errors import PyMongoError

from trainops.reports import dashboard
from trainops.reports.dashboard import (
    daily_average,
    extract_subject,
    grooming_rating,
    learning_report,
    months_between,
    total_learning_hours,
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "grooming, expected",
    [
        ({"dressCode": "good", "neatness": "needs_improvement", "punctuality": "good"}, "Average"),
        ({"dressCode": "excellent", "neatness": "good", "punctuality": "good"}, "Good"),
        ({"dressCode": "average", "neatness": "good", "punctuality": "good"}, "Average"),
        ({"dressCode": "good", "neatness": "", "punctuality": "good"}, "Good"),
        ({"dressCode": "average", "neatness": "needs_improvement", "punctuality": "excellent"}, "Average"),
        ({}, None),
        (None, None),
    ],
)
def test_grooming_rating(grooming, expected):
    assert grooming_rating(grooming) == expected


def test_extract_subject():
    assert extract_subject("fortnight1") == "Static"
    assert extract_subject("Fortnight 10") == "Mini projects"
    assert extract_subject("fortnight11", "x") is None
    assert extract_subject(None, "Modern Responsive Layouts") == "Modern Responsive"
    assert extract_subject("node js basics") == "Node JS"
    assert extract_subject("intro to javascript") == "JS"
    assert extract_subject("") is None


def test_months_between_covers_range():
    assert months_between(_utc(2025, 11, 20), _utc(2026, 2, 1)) == ["NOV'25", "DEC'25", "JAN'26"]
    assert months_between(_utc(2026, 1, 1), _utc(2026, 1, 1)) == []


def test_hours_and_daily_average():
    total = total_learning_hours([{"timeSpent": 90}, {"timeSpent": 30}], [{"timeSpent": 3600}])
    assert total == 3.0
    assert daily_average(total, _utc(2026, 1, 1), _utc(2026, 1, 4)) == 1.0
    assert daily_average(total, _utc(2026, 1, 4), _utc(2026, 1, 1)) == 0.0


def _metric(report, label):
    return next(m["values"] for m in report["metrics"] if m["label"] == label)


def test_learning_report_counts_fortnight_attempts():
    results = [
        {"exam_type": "fortnight1", "percentage": 70},
        {"exam_type": "fortnight1", "percentage": 81},
        {"exam_type": "course1", "result_name": "Course1Results1", "percentage": 50},
    ]
    demos = [
        {"courseTag": "Static", "type": "online", "rating": 4},
        {"courseTag": "Static", "type": "offline_demo", "rating": 3},
        {"courseTag": "Python", "type": "online", "rating": 5},
    ]
    report = learning_report(results, demos)
    assert len(report["metrics"]) == 14
    assert _metric(report, "Fort night exam counts")["Static"] == 1
    assert _metric(report, "Fort night exam attempts counts")["Static"] == 2
    assert _metric(report, "Fort night exam score Average")["Static"] == 76  # 75.5
    assert _metric(report, "Fort night exam attempts counts")["Python"] == ""
    assert _metric(report, "Online demo counts")["Static"] == 1
    assert _metric(report, "Offline demo ratings Average")["Static"] == 3
    assert _metric(report, "Online demo ratings Average")["Python"] == 5
    assert _metric(report, "Daily Quiz score Average in %")["SQL"] == ""

    legacy = learning_report(results, demos, legacy_fortnight_count=True)
    assert _metric(legacy, "Fort night exam attempts counts")["Static"] == 1
    assert _metric(legacy, "Fort night exam attempts counts")["Python"] == 1


@pytest.fixture()
def viewer(make_user, auth):
    return auth(make_user("master_trainer"))


def _seed_candidate(db, make_user):
    trainee = make_user("trainee", name="Asha", employeeId="E100", isDeployed=False)
    db.joiners.insert_one(
        {"author_id": trainee["author_id"], "email": trainee["email"], "phone_number": "9876543210", "state": "KA"}
    )
    db.assignments.insert_many(
        [
            {"assignedTo": trainee["_id"], "title": "HTML", "status": "completed", "createdAt": _utc(2026, 1, 2)},
            {"assignedTo": trainee["_id"], "title": "CSS", "status": "in_progress", "createdAt": _utc(2026, 1, 3)},
        ]
    )
    db.day_plans.insert_one({"userId": trainee["_id"], "date": _utc(2026, 1, 2), "timeSpent": 120})
    db.observations.insert_many(
        [
            {
                "trainee": trainee["_id"],
                "date": _utc(2026, 1, 5),
                "observation": "Attentive",
                "notes": "ok",
                "grooming": {"dressCode": "good", "neatness": "needs_improvement", "punctuality": "good"},
            },
            {
                "trainee": trainee["_id"],
                "date": _utc(2026, 2, 3),
                "grooming": {"dressCode": "good", "neatness": "excellent", "punctuality": "good"},
            },
        ]
    )
    db.results.insert_one(
        {
            "author_id": trainee["author_id"],
            "email": trainee["email"],
            "exam_type": "fortnight2",
            "percentage": 64,
            "exam_date": _utc(2026, 1, 20),
        }
    )
    return trainee


def test_candidate_summary(app_client, db, make_user, viewer):
    _app, client = app_client
    _seed_candidate(db, make_user)

    res = client.post(
        "/api/v1/admin/candidate-dashboard",
        headers=viewer,
        json={"uids": ["E100", "nobody"], "dateFrom": "2026-01-01", "dateTo": "2026-01-31"},
    )
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["totalCandidates"] == 1
    c = data["candidates"][0]
    assert c["name"] == "Asha"
    assert c["learningStatus"] == "1/2 assignments completed (50%)"
    assert c["currentCourse"] == "CSS"
    assert c["fortnightExams"] == "0 exams completed (0% average)"
    assert c["totalHours"] == "2.0"
    assert c["dailyAverage"] == "0.1"
    assert c["observations"].startswith("Attentive - ok (05/01/2026)")


def test_candidate_summary_requires_uids(app_client, viewer):
    _app, client = app_client
    res = client.post(
        "/api/v1/admin/candidate-dashboard", headers=viewer, json={"uids": [], "dateFrom": "2026-01-01", "dateTo": "2026-01-31"}
    )
    assert res.status_code == 400


def test_candidate_detail(app_client, db, make_user, viewer):
    _app, client = app_client
    trainee = _seed_candidate(db, make_user)

    res = client.post(
        "/api/v1/admin/candidate-dashboard/detail",
        headers=viewer,
        json={"uid": trainee["email"], "dateFrom": "2026-01-01", "dateTo": "2026-02-28"},
    )
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["personalDetails"]["phoneNumber"] == "9876543210"
    assert data["personalDetails"]["state"] == "KA"
    assert _metric(data["learningReport"], "Fort night exam score Average")["Responsive"] == 64

    grooming = data["groomingReport"]
    assert grooming["months"] == ["JAN'26", "FEB'26"]
    assert grooming["dailyObservations"]["JAN'26"][0]["rating"] == "Average"
    assert grooming["dailyObservations"]["FEB'26"][0]["rating"] == "Good"

    res = client.post(
        "/api/v1/admin/candidate-dashboard/detail",
        headers=viewer,
        json={"uid": "nobody", "dateFrom": "2026-01-01", "dateTo": "2026-02-28"},
    )
    assert res.status_code == 404


def test_detail_results_fall_back_to_any_date(app_client, db, make_user, viewer):
    _app, client = app_client
    trainee = _seed_candidate(db, make_user)

    res = client.post(
        "/api/v1/admin/candidate-dashboard/detail",
        headers=viewer,
        json={"uid": trainee["author_id"], "dateFrom": "2025-06-01", "dateTo": "2025-06-30"},
    )
    assert res.status_code == 200
    report = res.get_json()["data"]["learningReport"]
    assert _metric(report, "Fort night exam attempts counts")["Responsive"] == 1


def test_detail_export_xlsx(app_client, db, make_user, viewer):
    _app, client = app_client
    trainee = _seed_candidate(db, make_user)

    res = client.get(
        f"/api/v1/admin/candidate-dashboard/detail/export.xlsx?uid={trainee['author_id']}&dateFrom=2026-01-01&dateTo=2026-02-28",
        headers=viewer,
    )
    assert res.status_code == 200
    wb = load_workbook(BytesIO(res.data))
    assert wb.sheetnames == ["Meta", "Learning Report", "Grooming"]
    assert wb["Learning Report"]["A1"].value == "Metric"
    assert wb["Grooming"].max_row == 3


class _DownCollection:
    def __getattr__(self, _name):
        def _fail(*_a, **_k):
            raise PyMongoError("store down")

        return _fail


class _DownDB:
    def __getattr__(self, _name):
        return _DownCollection()


def test_read_failures_degrade_to_empty():
    db = _DownDB()
    user = {"_id": "x", "author_id": "a1", "email": "a@example.com"}
    start, end = _utc(2026, 1, 1), _utc(2026, 2, 1)

    assert dashboard._observations(db, user, start, end) == []
    assert dashboard._results_for(db, user, start, end) == []
    assert dashboard._mcq_attempts(db, user, start, end) == (0, [])
    assert dashboard._joiner_for(db, user) == {}

    out = dashboard.candidate_dashboard(db, ["a1"], start, end, from_s="2026-01-01", to_s="2026-01-31")
    assert out["candidates"] == []
    assert dashboard.candidate_detail(db, "a1", start, end) is None


def test_inverted_range_reports_zeros(app_client, db, make_user, viewer):
    _app, client = app_client
    trainee = _seed_candidate(db, make_user)

    res = client.post(
        "/api/v1/admin/candidate-dashboard",
        headers=viewer,
        json={"uids": ["E100"], "dateFrom": "2026-02-10", "dateTo": "2026-02-01"},
    )
    assert res.status_code == 200
    data = res.get_json()["data"]
    assert data["totalCandidates"] == 1
    assert data["candidates"][0]["dailyAverage"] == "0.0"

    res = client.post(
        "/api/v1/admin/candidate-dashboard/detail",
        headers=viewer,
        json={"uid": trainee["author_id"], "dateFrom": "2026-02-10", "dateTo": "2026-02-01"},
    )
    assert res.status_code == 200
    assert res.get_json()["data"]["groomingReport"]["months"] == []

    res = client.post(
        "/api/v1/admin/candidate-dashboard",
        headers=viewer,
        json={"uids": ["E100"], "dateFrom": "not a date", "dateTo": "2026-02-01"},
    )
    assert res.status_code == 400
