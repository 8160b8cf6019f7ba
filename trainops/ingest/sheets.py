"""Spreadsheet source: a JSON export of a sheet published over HTTP.

The endpoint answers ``{spread_sheet_name, data_sets_to_be_loaded, data}``.
A misdeployed script answers with an HTML page instead, which is reported as
an upstream error rather than parsed.
"""
from __future__ import annotations

import logging
from typing import Any

import requests

from trainops.ingest.normalize import cell_text, exam_family, resolve_phone, sheet_row_to_result
from trainops.utils.errors import ApiError

log = logging.getLogger(__name__)

_HTML_MARKERS = ("<!doctype html", "<html")


def _looks_like_html(text: str) -> bool:
    head = str(text or "").lstrip()[:200].lower()
    return any(m in head for m in _HTML_MARKERS)


def sheet_request(body: dict[str, Any], *, url_key: str) -> tuple[str, list[str], str]:
    """``(spread_sheet_name, data_sets_to_be_loaded, url)`` from a request body."""
    name = cell_text(body.get("spread_sheet_name"))
    datasets = body.get("data_sets_to_be_loaded")
    if isinstance(datasets, str):
        datasets = [datasets]
    datasets = [cell_text(d) for d in datasets if cell_text(d)] if isinstance(datasets, list) else []
    if not name or not datasets:
        raise ApiError(
            "BAD_REQUEST", "Missing required fields: spread_sheet_name, data_sets_to_be_loaded", status=400
        )
    return name, datasets, cell_text(body.get(url_key))


def fetch_sheet(url: str, *, timeout: float, params: dict[str, str] | None = None) -> dict[str, Any]:
    try:
        resp = requests.get(url, params=params, timeout=timeout)
    except requests.RequestException as e:
        log.warning("Sheet fetch failed: %s", e)
        raise ApiError(
            "UPSTREAM_ERROR", "Failed to fetch data from Google Sheets", status=502, details={"reason": str(e)}
        ) from e

    raw_text = str(resp.text or "")
    if _looks_like_html(raw_text):
        raise ApiError(
            "UPSTREAM_ERROR",
            "Google Sheets URL returned HTML instead of JSON. Please check your Apps Script deployment.",
            status=502,
            details={"received": "HTML", "httpStatus": resp.status_code},
        )

    if resp.status_code >= 400:
        raise ApiError(
            "UPSTREAM_ERROR",
            f"Google Sheets request failed (HTTP {resp.status_code})",
            status=502,
            details={"httpStatus": resp.status_code, "body": raw_text.strip()[:500]},
        )

    try:
        payload = resp.json()
    except ValueError as e:
        raise ApiError(
            "UPSTREAM_ERROR", "Invalid response from Google Sheets. Expected JSON object.", status=502
        ) from e
    if not isinstance(payload, dict):
        raise ApiError(
            "UPSTREAM_ERROR",
            "Invalid response from Google Sheets. Expected JSON object.",
            status=502,
            details={"received": type(payload).__name__},
        )
    return payload


def check_envelope(payload: dict[str, Any], name: str, datasets: list[str]) -> list[dict[str, Any]]:
    """Rows of ``payload`` after checking it is the sheet the caller asked for."""
    if payload.get("spread_sheet_name") != name:
        raise ApiError(
            "BAD_REQUEST",
            "Spreadsheet name does not match",
            status=400,
            details={"expected": name, "actual": payload.get("spread_sheet_name")},
        )
    available = payload.get("data_sets_to_be_loaded")
    if not isinstance(available, list) or not all(d in available for d in datasets):
        raise ApiError(
            "BAD_REQUEST",
            "Data sets do not match",
            status=400,
            details={"expected": datasets, "actual": available},
        )
    rows = payload.get("data") or []
    if not isinstance(rows, list):
        raise ApiError("UPSTREAM_ERROR", "Sheet data must be a list of rows", status=502)
    return [r for r in rows if isinstance(r, dict)]


def fix_joiner_phones(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Copy the first phone-like cell into ``phone_number`` when that column came back empty."""
    for i, row in enumerate(rows, start=1):
        if cell_text(row.get("phone_number")):
            row["phone_number"] = cell_text(row["phone_number"])
            continue
        raw, source = resolve_phone(row)
        if raw is None:
            log.warning("Sheet row %s: no phone number in any column", i)
            continue
        log.debug("Sheet row %s: phone_number taken from %r", i, source)
        row["phone_number"] = raw
    return rows


def load_joiner_sheet(body: dict[str, Any], *, timeout: float) -> dict[str, Any]:
    name, datasets, url = sheet_request(body, url_key="google_sheet_url")
    if not url:
        return {
            "message": "Configuration validated (Manual mode)",
            "data": {
                "spread_sheet_name": name,
                "data_sets_to_be_loaded": datasets,
                "data": [],
                "headers": [],
                "total_rows": 0,
            },
        }

    payload = fetch_sheet(url, timeout=timeout)
    rows = fix_joiner_phones(check_envelope(payload, name, datasets))
    log.info("Joiner sheet %r: %s rows", name, len(rows))
    return {
        "message": "Google Sheets validation successful",
        "data": {**payload, "data": rows, "total_rows": len(rows)},
    }


def results_exam_type(dataset: str) -> str:
    """'FortnightExamResults' -> 'fortnight'; unknown names keep their lowercase stem."""
    family = exam_family(dataset)
    if family:
        return family
    return dataset.lower().replace("results", "").replace("exam", "")


def load_results_sheet(body: dict[str, Any], *, timeout: float) -> dict[str, Any]:
    name, datasets, url = sheet_request(body, url_key="googleSheetUrl")
    if not url:
        return {
            "message": "Configuration validated (Manual mode)",
            "spread_sheet_name": name,
            "data_sets_to_be_loaded": datasets,
            "data": [],
        }

    subsheet = datasets[0]
    exam_type = results_exam_type(subsheet)
    payload = fetch_sheet(url, timeout=timeout, params={"subsheet": subsheet, "examType": exam_type})
    family = exam_family(subsheet)
    rows = [sheet_row_to_result(r, family) for r in check_envelope(payload, name, [subsheet])]
    log.info("Results sheet %r/%s: %s rows", name, subsheet, len(rows))
    return {
        "message": "Configuration validated successfully!",
        "spread_sheet_name": name,
        "data_sets_to_be_loaded": datasets,
        "examType": exam_type,
        "data": rows,
    }
