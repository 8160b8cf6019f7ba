"""Candidate dashboard: per-person rollups over results, assignments,
observations, day-plan activity, mcq deployments and demos.

Every collection read goes through :func:`_read`, so a failing collection
turns into empty data (and a log line) instead of failing the report.
"""
from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timedelta
from typing import Any, Callable, TypeVar

from pymongo.errors import PyMongoError

from trainops.ingest.normalize import round_half_up
from trainops.people import find_person
from trainops.utils.datetime import month_label

log = logging.getLogger(__name__)

_T = TypeVar("_T")

SUBJECTS = (
    "Static",
    "Responsive",
    "Modern Responsive",
    "Dynamic",
    "Python",
    "SQL",
    "JS",
    "Node JS",
    "React JS",
    "Mini projects",
)
FORTNIGHT_SUBJECTS = {i: subject for i, subject in enumerate(SUBJECTS, start=1)}

METRICS = (
    "Daily Quiz counts",
    "Daily Quiz attempts count",
    "Daily Quiz score Average in %",
    "Fort night exam counts",
    "Fort night exam attempts counts",
    "Fort night exam score Average",
    "Course exam attempts",
    "Course exam score in %",
    "Online demo counts",
    "Online demo ratings Average",
    "Offline demo counts",
    "Offline demo ratings Average",
    "No.of weeks expected complete the course",
    "No.of weeks taken complete the course",
)

_FORTNIGHT_RE = re.compile(r"fortnight\s*(\d+)")
_GOOD = {"excellent", "good"}
# Longest names first so "Modern Responsive" wins over "Responsive".
_BY_LENGTH = sorted(SUBJECTS, key=len, reverse=True)


def _read(what: str, fn: Callable[[], _T], default: _T) -> _T:
    try:
        return fn()
    except PyMongoError as e:
        log.error("Dashboard read of %s failed: %s", what, e)
        return default


# -- rules -------------------------------------------------------------------------------------


def extract_subject(*texts: Any) -> str | None:
    """Subject a result/demo belongs to: fortnight ordinal first, then name matching."""
    text = next((str(t) for t in texts if t), "").lower()
    m = _FORTNIGHT_RE.search(text)
    if m and int(m.group(1)) in FORTNIGHT_SUBJECTS:
        return FORTNIGHT_SUBJECTS[int(m.group(1))]

    for subject in _BY_LENGTH:
        if subject.lower() in text:
            return subject
    if "static" in text:
        return "Static"
    if "responsive" in text:
        return "Modern Responsive" if "modern" in text else "Responsive"
    if "dynamic" in text:
        return "Dynamic"
    if "python" in text:
        return "Python"
    if "sql" in text:
        return "SQL"
    if "javascript" in text or "js" in text:
        if "node" in text:
            return "Node JS"
        if "react" in text:
            return "React JS"
        return "JS"
    if "react" in text:
        return "React JS"
    if "node" in text:
        return "Node JS"
    if "mini" in text or "project" in text:
        return "Mini projects"
    return None


def grooming_rating(grooming: dict[str, Any] | None) -> str | None:
    """Day rating from the three grooming sub-ratings. Rules apply in this order."""
    if not grooming:
        return None
    values = [str(grooming.get(k) or "") for k in ("dressCode", "neatness", "punctuality")]
    if "needs_improvement" in values:
        return "Average"
    if all(v in _GOOD for v in values):
        return "Good"
    if "average" in values:
        return "Average"
    return "Good"


def total_learning_hours(day_plans: list[dict[str, Any]], mcq_attempts: list[dict[str, Any]]) -> float:
    minutes = sum(float(p.get("timeSpent") or 0) for p in day_plans)
    seconds = sum(float(a.get("timeSpent") or 0) for a in mcq_attempts)
    return minutes / 60 + seconds / 3600


def daily_average(total_hours: float, start: datetime, end: datetime) -> float:
    """``end`` is exclusive; a range covering N calendar days divides by N."""
    days = math.ceil((end - start).total_seconds() / 86400)
    return total_hours / days if days > 0 else 0.0


def months_between(start: datetime, end: datetime) -> list[str]:
    """``MMM'YY`` labels from ``start`` through the day before ``end``."""
    last = end - timedelta(microseconds=1)
    if last < start:
        return []
    labels = []
    year, month = start.year, start.month
    while (year, month) <= (last.year, last.month):
        labels.append(month_label(datetime(year, month, 1)))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return labels


def _avg(values: list[float]) -> int | str:
    if not values:
        return ""
    return round_half_up(sum(values) / len(values))


def _percentages(rows: list[dict[str, Any]]) -> list[float]:
    return [float(x.get("percentage") or 0) for x in rows]


def _ratings(rows: list[dict[str, Any]]) -> list[float]:
    return [float(x.get("rating") or 0) for x in rows]


def _count(n: int) -> int | str:
    return n or ""


def _fmt(dt: Any, pattern: str) -> str:
    return dt.strftime(pattern) if isinstance(dt, datetime) else "N/A"


# -- reads -------------------------------------------------------------------------------------


def _assignments(db, user, start, end) -> list[dict[str, Any]]:
    return _read(
        "assignments",
        lambda: list(
            db.assignments.find(
                {"assignedTo": user["_id"], "createdAt": {"$gte": start, "$lt": end}},
                {"title": 1, "status": 1, "createdAt": 1},
            ).sort("createdAt", 1)
        ),
        [],
    )


def _observations(db, user, start, end) -> list[dict[str, Any]]:
    return _read(
        "observations",
        lambda: list(db.observations.find({"trainee": user["_id"], "date": {"$gte": start, "$lt": end}}).sort("date", 1)),
        [],
    )


def _day_plan_activity(db, user, start, end) -> list[dict[str, Any]]:
    return _read(
        "day_plans",
        lambda: list(
            db.day_plans.find({"userId": user["_id"], "date": {"$gte": start, "$lt": end}}, {"date": 1, "timeSpent": 1})
        ),
        [],
    )


def _mcq_attempts(db, user, start, end) -> tuple[int, list[dict[str, Any]]]:
    """(deployments taken, this person's attempts inside the range)."""
    author_id = user.get("author_id")
    if not author_id:
        return 0, []
    window = {"$gte": start, "$lt": end}
    deployments = _read(
        "mcq_deployments",
        lambda: list(
            db.mcq_deployments.find(
                {"results": {"$elemMatch": {"traineeId": author_id, "completedAt": window}}}, {"name": 1, "results": 1}
            )
        ),
        [],
    )
    attempts = []
    for dep in deployments:
        for r in dep.get("results") or []:
            done = r.get("completedAt")
            if r.get("traineeId") == author_id and isinstance(done, datetime) and start <= done < end:
                attempts.append(r)
    return len(deployments), attempts


def _results_for(db, user, start, end) -> list[dict[str, Any]]:
    """Within the range by author id, else any date by author id, else by email."""
    author_id = user.get("author_id")
    if author_id:
        found = _read(
            "results",
            lambda: list(db.results.find({"author_id": author_id, "exam_date": {"$gte": start, "$lt": end}}).sort("exam_date", 1)),
            [],
        )
        if found:
            return found
        found = _read("results", lambda: list(db.results.find({"author_id": author_id}).sort("exam_date", -1)), [])
        if found:
            return found
    email = str(user.get("email") or "").lower()
    if email:
        return _read("results", lambda: list(db.results.find({"email": email}).sort("exam_date", -1)), [])
    return []


def _demos_for(db, user) -> list[dict[str, Any]]:
    author_id = user.get("author_id")
    if not author_id:
        return []
    return _read("demos", lambda: list(db.demos.find({"traineeAuthorId": author_id})), [])


def _joiner_for(db, user) -> dict[str, Any]:
    clauses: list[dict[str, Any]] = []
    if user.get("author_id"):
        clauses.append({"author_id": user["author_id"]})
    if user.get("email"):
        clauses.append({"email": str(user["email"]).lower()})
    if user.get("employeeId"):
        clauses.append({"employeeId": user["employeeId"]})
    if not clauses:
        return {}
    return _read("joiners", lambda: db.joiners.find_one({"$or": clauses}) or {}, {})


# -- summary -----------------------------------------------------------------------------------


def learning_status(assignments: list[dict[str, Any]]) -> str:
    if not assignments:
        return "No assignments"
    done = sum(1 for a in assignments if a.get("status") == "completed")
    return f"{done}/{len(assignments)} assignments completed ({round_half_up(done / len(assignments) * 100)}%)"


def current_course(assignments: list[dict[str, Any]]) -> str:
    for a in assignments:
        if a.get("status") in {"in_progress", "pending"}:
            return a.get("title") or "Active Course"
    return "No active courses"


def fortnight_exams_text(deployments: int, attempts: list[dict[str, Any]]) -> str:
    total = sum(float(a.get("totalScore") or 0) for a in attempts)
    average = round_half_up(total / deployments) if deployments else 0
    return f"{deployments} exams completed ({average}% average)"


def observations_text(observations: list[dict[str, Any]]) -> str:
    parts = [
        f"{o.get('observation') or ''} - {o.get('notes') or ''} ({_fmt(o.get('date') or o.get('createdAt'), '%d/%m/%Y')})"
        for o in observations
    ]
    return "; ".join(parts) or "No observations available"


def candidate_summary(db, user: dict[str, Any], start: datetime, end: datetime, *, from_s: str, to_s: str) -> dict[str, Any]:
    assignments = _assignments(db, user, start, end)
    deployments, attempts = _mcq_attempts(db, user, start, end)
    day_plans = _day_plan_activity(db, user, start, end)
    total = total_learning_hours(day_plans, attempts)
    return {
        "uid": user.get("employeeId") or user.get("author_id") or str(user["_id"]),
        "name": user.get("name") or "Unknown",
        "email": user.get("email") or "N/A",
        "dateOfJoining": _fmt(user.get("joiningDate") or user.get("createdAt"), "%d/%m/%Y"),
        "dateRange": f"{from_s} to {to_s}",
        "learningStatus": learning_status(assignments),
        "currentCourse": current_course(assignments),
        "fortnightExams": fortnight_exams_text(deployments, attempts),
        "observations": observations_text(_observations(db, user, start, end)),
        "totalHours": f"{total:.1f}",
        "dailyAverage": f"{daily_average(total, start, end):.1f}",
        "deploymentStatus": bool(user.get("isDeployed")),
        "nativeState": user.get("state") or "Not specified",
    }


def candidate_dashboard(db, uids: list[str], start: datetime, end: datetime, *, from_s: str, to_s: str) -> dict[str, Any]:
    candidates = []
    for uid in uids:
        user = _read("users", lambda: find_person(db, uid), None)
        if not user:
            log.info("Candidate dashboard: no person for uid %r", uid)
            continue
        candidates.append(candidate_summary(db, user, start, end, from_s=from_s, to_s=to_s))
    return {"candidates": candidates, "totalCandidates": len(candidates), "dateRange": {"from": from_s, "to": to_s}}


# -- detail ------------------------------------------------------------------------------------


def personal_details(user: dict[str, Any], joiner: dict[str, Any]) -> dict[str, Any]:
    def pick(*keys: str) -> Any:
        for source in (user, joiner):
            for k in keys:
                if source.get(k):
                    return source[k]
        return None

    return {
        "uid": user.get("author_id") or str(user["_id"]),
        "name": pick("name", "candidate_name") or "Unknown",
        "phoneNumber": pick("phone_number", "phone") or "N/A",
        "email": pick("email", "candidate_personal_mail_id") or "N/A",
        "employeeId": pick("employeeId") or "N/A",
        "doj": _fmt(pick("date_of_joining", "joiningDate"), "%d-%b-%Y"),
        "state": pick("state") or "N/A",
        "highestQualification": pick("qualification") or "N/A",
        "specialization": pick("specialization") or "N/A",
        "yearOfPassout": pick("yearOfPassout") or "N/A",
        "workingStatus": "Working" if user.get("isDeployed") else (joiner.get("workingStatus") or "Not Working"),
    }


def learning_report(results: list[dict[str, Any]], demos: list[dict[str, Any]], *, legacy_fortnight_count: bool = False) -> dict[str, Any]:
    buckets: dict[str, dict[str, list[dict[str, Any]]]] = {
        s: {"daily": [], "fortnight": [], "course": [], "online": [], "offline": []} for s in SUBJECTS
    }

    for r in results:
        subject = extract_subject(r.get("exam_type"), r.get("result_name"))
        if not subject:
            continue
        exam_type = str(r.get("exam_type") or "").lower()
        for family in ("daily", "fortnight", "course"):
            if exam_type.startswith(family):
                buckets[subject][family].append(r)
                break

    for d in demos:
        subject = extract_subject(d.get("courseTag"), d.get("title"))
        if not subject:
            continue
        kind = "online" if str(d.get("type") or "").lower() in {"online", "online_demo"} else "offline"
        buckets[subject][kind].append(d)

    values: dict[str, dict[str, Any]] = {m: {} for m in METRICS}
    for subject in SUBJECTS:
        b = buckets[subject]

        values["Daily Quiz counts"][subject] = _count(len({x.get("exam_type") for x in b["daily"]}))
        values["Daily Quiz attempts count"][subject] = _count(len(b["daily"]))
        values["Daily Quiz score Average in %"][subject] = _avg(_percentages(b["daily"]))
        if legacy_fortnight_count:
            values["Fort night exam counts"][subject] = 1
            values["Fort night exam attempts counts"][subject] = 1
        else:
            values["Fort night exam counts"][subject] = _count(len({x.get("exam_type") for x in b["fortnight"]}))
            values["Fort night exam attempts counts"][subject] = _count(len(b["fortnight"]))
        values["Fort night exam score Average"][subject] = _avg(_percentages(b["fortnight"]))
        values["Course exam attempts"][subject] = _count(len(b["course"]))
        values["Course exam score in %"][subject] = _avg(_percentages(b["course"]))
        values["Online demo counts"][subject] = _count(len(b["online"]))
        values["Online demo ratings Average"][subject] = _avg(_ratings(b["online"]))
        values["Offline demo counts"][subject] = _count(len(b["offline"]))
        values["Offline demo ratings Average"][subject] = _avg(_ratings(b["offline"]))
        # No course-duration data is tracked yet.
        values["No.of weeks expected complete the course"][subject] = ""
        values["No.of weeks taken complete the course"][subject] = ""

    return {"subjects": list(SUBJECTS), "metrics": [{"label": m, "values": values[m]} for m in METRICS]}


def grooming_report(observations: list[dict[str, Any]], start: datetime, end: datetime) -> dict[str, Any]:
    months = months_between(start, end)
    by_month: dict[str, list[dict[str, Any]]] = {m: [] for m in months}
    for o in observations:
        day = o.get("date")
        if not isinstance(day, datetime):
            continue
        key = month_label(day)
        if key not in by_month:
            continue
        grooming = o.get("grooming") or {}
        by_month[key].append(
            {
                "date": day.strftime("%Y-%m-%d"),
                "day": day.strftime("%d"),
                "rating": grooming_rating(grooming) or "N/A",
                "dressCode": grooming.get("dressCode") or "N/A",
                "neatness": grooming.get("neatness") or "N/A",
                "punctuality": grooming.get("punctuality") or "N/A",
            }
        )
    for rows in by_month.values():
        rows.sort(key=lambda x: x["date"])
    return {"months": months, "dailyObservations": by_month}


def candidate_detail(db, uid: str, start: datetime, end: datetime, *, legacy_fortnight_count: bool = False) -> dict[str, Any] | None:
    user = _read("users", lambda: find_person(db, uid), None)
    if not user:
        return None
    return {
        "personalDetails": personal_details(user, _joiner_for(db, user)),
        "learningReport": learning_report(
            _results_for(db, user, start, end), _demos_for(db, user), legacy_fortnight_count=legacy_fortnight_count
        ),
        "groomingReport": grooming_report(_observations(db, user, start, end), start, end),
    }
