from __future__ import annotations

from datetime import datetime, timezone
from io import BytesIO
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Font
from openpyxl.utils import get_column_letter

from trainops.utils.datetime import to_display_tz


def _auto_fit(ws) -> None:
    for col in ws.columns:
        max_len = 0
        col_letter = get_column_letter(col[0].column)
        for cell in col:
            v = "" if cell.value is None else str(cell.value)
            max_len = max(max_len, len(v))
        ws.column_dimensions[col_letter].width = min(max(12, max_len + 2), 60)


def _write_table(ws, headers: list[str], rows: list[list[Any]]) -> None:
    ws.append(headers)
    for r in rows:
        ws.append(r)

    ws.freeze_panes = "A2"
    ws.auto_filter.ref = ws.dimensions

    header_font = Font(bold=True)
    for cell in ws[1]:
        cell.font = header_font
        cell.alignment = Alignment(horizontal="center")

    _auto_fit(ws)


def build_learning_report_bytes(*, detail: dict[str, Any], from_s: str, to_s: str, timezone_display: str) -> bytes:
    """Workbook with the candidate's details, learning report and grooming days."""
    wb = Workbook()
    wb.remove(wb.active)

    person = detail["personalDetails"]
    meta = wb.create_sheet("Meta")
    _write_table(
        meta,
        ["key", "value"],
        [
            ["uid", person.get("uid")],
            ["name", person.get("name")],
            ["email", person.get("email")],
            ["employeeId", person.get("employeeId")],
            ["from", from_s],
            ["to", to_s],
            ["generatedAt", to_display_tz(datetime.now(timezone.utc), timezone_display)],
        ],
    )

    report = detail["learningReport"]
    subjects = list(report["subjects"])
    learning = wb.create_sheet("Learning Report")
    _write_table(
        learning,
        ["Metric", *subjects],
        [[m["label"], *[m["values"].get(s, "") for s in subjects]] for m in report["metrics"]],
    )

    grooming = detail["groomingReport"]
    rows: list[list[Any]] = []
    for month in grooming["months"]:
        for day in grooming["dailyObservations"].get(month, []):
            rows.append([month, day["date"], day["rating"], day["dressCode"], day["neatness"], day["punctuality"]])
    ws = wb.create_sheet("Grooming")
    _write_table(ws, ["month", "date", "rating", "dressCode", "neatness", "punctuality"], rows)

    with BytesIO() as bio:
        wb.save(bio)
        return bio.getvalue()
