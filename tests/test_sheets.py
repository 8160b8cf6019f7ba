from __future__ import annotations

import json

import pytest
import requests

from trainops.ingest import sheets

SHEET_URL = "https://script.google.com/macros/s/abc/exec"


class _FakeResponse:
    def __init__(self, payload=None, *, text=None, status_code=200):
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        return json.loads(self.text)


@pytest.fixture()
def staff(make_user, auth):
    return auth(make_user("boa"))


@pytest.fixture()
def sheet_source(monkeypatch):
    calls = []

    def install(response):
        def fake_get(url, params=None, timeout=None):
            calls.append({"url": url, "params": params, "timeout": timeout})
            if isinstance(response, Exception):
                raise response
            return response

        monkeypatch.setattr(sheets.requests, "get", fake_get)
        return calls

    return install


def _joiner_body(**extra):
    body = {"spread_sheet_name": "Joiners Jan", "data_sets_to_be_loaded": ["Joiners"], "google_sheet_url": SHEET_URL}
    body.update(extra)
    return body


def test_joiner_sheet_rows_get_phone_number(app_client, staff, sheet_source):
    _app, client = app_client
    calls = sheet_source(
        _FakeResponse(
            {
                "spread_sheet_name": "Joiners Jan",
                "data_sets_to_be_loaded": ["Joiners"],
                "data": [
                    {"candidate_name": "A", "Mobile": "9876543210"},
                    {"candidate_name": "B", "phone_number": 9123456789},
                ],
            }
        )
    )

    res = client.post("/api/v1/joiners/validate-sheets", headers=staff, json=_joiner_body())
    assert res.status_code == 200
    body = res.get_json()
    assert body["message"] == "Google Sheets validation successful"
    assert body["data"]["total_rows"] == 2
    assert [r["phone_number"] for r in body["data"]["data"]] == ["9876543210", "9123456789"]
    assert calls[0]["url"] == SHEET_URL
    assert calls[0]["timeout"]


def test_manual_mode_without_url(app_client, staff, sheet_source):
    _app, client = app_client
    calls = sheet_source(AssertionError("no fetch expected"))
    res = client.post("/api/v1/joiners/validate-sheets", headers=staff, json=_joiner_body(google_sheet_url=""))
    assert res.status_code == 200
    body = res.get_json()
    assert body["message"] == "Configuration validated (Manual mode)"
    assert body["data"]["data"] == []
    assert calls == []


def test_missing_fields(app_client, staff):
    _app, client = app_client
    res = client.post("/api/v1/joiners/validate-sheets", headers=staff, json={"google_sheet_url": SHEET_URL})
    assert res.status_code == 400
    assert "spread_sheet_name" in res.get_json()["message"]


def test_html_response_is_upstream_error(app_client, staff, sheet_source):
    _app, client = app_client
    sheet_source(_FakeResponse(text="<!DOCTYPE html><html><body>Sign in</body></html>"))

    res = client.post("/api/v1/joiners/validate-sheets", headers=staff, json=_joiner_body())
    assert res.status_code == 502
    body = res.get_json()
    assert body["error"]["code"] == "UPSTREAM_ERROR"
    assert "HTML instead of JSON" in body["message"]


def test_network_error_carries_reason(app_client, staff, sheet_source):
    _app, client = app_client
    sheet_source(requests.ConnectionError("connection refused"))

    res = client.post("/api/v1/joiners/validate-sheets", headers=staff, json=_joiner_body())
    assert res.status_code == 502
    assert "connection refused" in res.get_json()["error"]["details"]["reason"]


def test_sheet_name_mismatch(app_client, staff, sheet_source):
    _app, client = app_client
    sheet_source(_FakeResponse({"spread_sheet_name": "Other", "data_sets_to_be_loaded": ["Joiners"], "data": []}))

    res = client.post("/api/v1/joiners/validate-sheets", headers=staff, json=_joiner_body())
    assert res.status_code == 400
    assert res.get_json()["error"]["details"] == {"expected": "Joiners Jan", "actual": "Other"}


def test_results_sheet_rows_are_transformed(app_client, staff, sheet_source):
    _app, client = app_client
    calls = sheet_source(
        _FakeResponse(
            {
                "spread_sheet_name": "Results",
                "data_sets_to_be_loaded": ["FortnightExamResults"],
                "data": [{"Author_id": "abc", "Date": "2026-01-10", "Type": "Fortnight 1", "FortnightEaxmResults": 42}],
            }
        )
    )

    res = client.post(
        "/api/v1/results/validate-sheets",
        headers=staff,
        json={
            "spread_sheet_name": "Results",
            "data_sets_to_be_loaded": ["FortnightExamResults"],
            "googleSheetUrl": SHEET_URL,
        },
    )
    assert res.status_code == 200
    body = res.get_json()
    assert body["examType"] == "fortnight"
    assert body["data"][0]["author_id"] == "abc"
    assert body["data"][0]["score"] == 42
    assert body["data"][0]["total_marks"] == 100
    assert calls[0]["params"] == {"subsheet": "FortnightExamResults", "examType": "fortnight"}


def test_blank_dataset_names_are_missing_fields(app_client, staff, sheet_source):
    _app, client = app_client
    calls = sheet_source(AssertionError("no fetch expected"))
    res = client.post(
        "/api/v1/results/validate-sheets",
        headers=staff,
        json={"spread_sheet_name": "S", "data_sets_to_be_loaded": ["", "  "], "googleSheetUrl": SHEET_URL},
    )
    assert res.status_code == 400
    assert "data_sets_to_be_loaded" in res.get_json()["message"]
    assert calls == []
