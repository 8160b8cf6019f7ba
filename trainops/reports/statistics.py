from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pymongo.errors import PyMongoError

from trainops.ingest.normalize import round_half_up

log = logging.getLogger(__name__)

_GROUPS = (("dailyQuizzes", "daily"), ("fortnightExams", "fortnight"), ("courseLevelExams", "course"))


def _match(start_dt: datetime | None, end_dt: datetime | None) -> dict[str, Any]:
    if start_dt is None or end_dt is None:
        return {}
    return {"exam_date": {"$gte": start_dt, "$lt": end_dt}}


def _pct(part: float, whole: float) -> int:
    return round_half_up(part / whole * 100) if whole else 0


def _mean(total: float, n: int) -> int:
    return round_half_up(total / n) if n else 0


def exam_type_stats(db, start_dt: datetime | None, end_dt: datetime | None) -> list[dict[str, Any]]:
    pipe = [
        {"$match": _match(start_dt, end_dt)},
        {
            "$group": {
                "_id": {"exam_type": "$exam_type", "status": "$status"},
                "count": {"$sum": 1},
                "percentage": {"$sum": "$percentage"},
            }
        },
    ]
    by_type: dict[str, dict[str, Any]] = {}
    for row in db.results.aggregate(pipe):
        exam_type = str(row["_id"].get("exam_type") or "")
        stats = by_type.setdefault(
            exam_type,
            {"examType": exam_type, "totalAttempts": 0, "totalScore": 0.0, "passedAttempts": 0, "failedAttempts": 0},
        )
        stats["totalAttempts"] += int(row["count"])
        stats["totalScore"] += float(row["percentage"] or 0)
        if row["_id"].get("status") == "passed":
            stats["passedAttempts"] += int(row["count"])
        else:
            stats["failedAttempts"] += int(row["count"])

    out = []
    for exam_type in sorted(by_type):
        stats = by_type[exam_type]
        stats["averageScore"] = _mean(stats["totalScore"], stats["totalAttempts"])
        stats["passRate"] = _pct(stats["passedAttempts"], stats["totalAttempts"])
        out.append(stats)
    return out


def top_performers(db, start_dt: datetime | None, end_dt: datetime | None, *, limit: int = 10) -> list[dict[str, Any]]:
    pipe = [
        {"$match": _match(start_dt, end_dt)},
        {
            "$group": {
                "_id": "$trainee_name",
                "totalAttempts": {"$sum": 1},
                "totalScore": {"$sum": "$percentage"},
            }
        },
    ]
    rows = [
        {
            "name": row["_id"],
            "totalAttempts": int(row["totalAttempts"]),
            "totalScore": float(row["totalScore"] or 0),
            "averageScore": _mean(float(row["totalScore"] or 0), int(row["totalAttempts"])),
        }
        for row in db.results.aggregate(pipe)
    ]
    rows.sort(key=lambda r: (-r["averageScore"], str(r["name"] or "")))
    return rows[:limit]


def _summary(items: list[dict[str, Any]]) -> dict[str, int]:
    return {
        "totalTypes": len(items),
        "totalAttempts": sum(i["totalAttempts"] for i in items),
        "averageScore": _mean(sum(i["averageScore"] for i in items), len(items)),
        "passRate": _mean(sum(i["passRate"] for i in items), len(items)),
    }


def exam_statistics(db, start_dt: datetime | None, end_dt: datetime | None) -> dict[str, Any]:
    try:
        per_type = exam_type_stats(db, start_dt, end_dt)
        performers = top_performers(db, start_dt, end_dt)
    except PyMongoError as e:
        log.error("Exam statistics read failed: %s", e)
        per_type, performers = [], []

    by_group = {
        key: [s for s in per_type if s["examType"].startswith(prefix)] for key, prefix in _GROUPS
    }
    total = sum(s["totalAttempts"] for s in per_type)
    passed = sum(s["passedAttempts"] for s in per_type)
    score = sum(s["totalScore"] for s in per_type)

    return {
        "overall": {
            "totalAttempts": total,
            "totalPassed": passed,
            "overallPassRate": _pct(passed, total),
            "overallAverageScore": _mean(score, total),
        },
        "byExamType": by_group,
        "topPerformers": performers,
        "summary": {key: _summary(items) for key, items in by_group.items()},
    }
