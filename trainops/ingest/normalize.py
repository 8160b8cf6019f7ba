"""Row-level cleanup for spreadsheet uploads.

Everything here is pure: rows in, records and ``"Row N: ..."`` messages out.
Lookups against the store happen in :mod:`trainops.ingest.dedup`.
"""
from __future__ import annotations

import math
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from trainops.utils.datetime import parse_datetime_maybe, utc_now
from trainops.utils.validators import EMAIL_RE

UUID_V4_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)

PHONE_FIELDS = (
    "phone_number",
    "Phone_number",
    "PhoneNumber",
    "phoneNumber",
    "Phone Number",
    "Phone_Number",
    "PHONE_NUMBER",
    "phone",
    "Phone",
    "PHONE",
    "mobile",
    "Mobile",
    "MOBILE",
    "contact_number",
    "Contact_Number",
    "CONTACT_NUMBER",
)
_PHONE_SHAPE_RE = re.compile(r"^\+?[0-9]{10,15}$")
# Only cells made of phone punctuation are scanned; keeps timestamps and ids out.
_PHONE_CHARS_RE = re.compile(r"^[\d\s+().\-]+$")

ROLE_ASSIGN_VALUES = ("SDM", "SDI", "SDF", "OTHER")
DEFAULT_DEPARTMENT = "OTHERS"
DEFAULT_TOTAL_MARKS = 100.0

EXAM_FAMILIES = ("daily", "fortnight", "course")

ONBOARDING_STEPS = (
    "welcomeEmailSent",
    "credentialsGenerated",
    "accountActivated",
    "trainingAssigned",
    "documentsSubmitted",
)

_SCORE_COLUMNS = {
    "daily": (
        "DailyQuizzesResults",
        "dailyquizzesresults",
        "DailyQuizResults",
        "dailyquizresults",
        "DailyQuizzes",
        "dailyquizzes",
        "DailyQuizResult",
        "dailyquizresult",
        "DailyQuiz",
        "dailyquiz",
        "DailyResults",
        "dailyresults",
        "DailyExams",
        "dailyexams",
        "QuizResults",
        "quizresults",
    ),
    "course": (
        "CourseLevelExamResults",
        "courselevelexamresults",
        "CourseLevelResults",
        "courselevelresults",
        "CourseLevelExams",
        "courselevelexams",
        "CourseLevelExamResult",
        "courselevelexamresult",
        "CourseResults",
        "courseresults",
        "CourseExams",
        "courseexams",
    ),
    # "Eaxm" and "Fornight" are spellings found in real sheets.
    "fortnight": (
        "FortnightEaxmResults",
        "FortnightExamResults",
        "FornightEaxmResults",
        "FornightExamResults",
        "fortnightexamresults",
    ),
}


@dataclass
class NormalizedBatch:
    records: list[dict[str, Any]] = field(default_factory=list)
    rows: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add(self, row_no: int, record: dict[str, Any]) -> None:
        self.records.append(record)
        self.rows.append(row_no)

    def reject(self, row_no: int, message: str) -> None:
        self.errors.append(row_error(row_no, message))


def row_error(row_no: int, message: str) -> str:
    return f"Row {row_no}: {message}"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def cell_text(value: Any) -> str:
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def _blank_to_none(value: Any) -> str | None:
    s = cell_text(value)
    return s or None


# -- phone -----------------------------------------------------------------------------------


def clean_phone(raw: Any) -> str:
    """Digits only, keeping one leading '+'."""
    s = cell_text(raw)
    digits = re.sub(r"\D", "", s)
    if s.startswith("+") and digits:
        return "+" + digits
    return digits


def is_valid_phone(phone: str) -> bool:
    return bool(_PHONE_SHAPE_RE.match(phone or ""))


def resolve_phone(row: dict[str, Any]) -> tuple[str | None, str | None]:
    """Find the phone cell of a row: ``(raw value, key it came from)``."""
    for key in PHONE_FIELDS:
        text = cell_text(row.get(key))
        if text:
            return text, key

    for key, value in row.items():
        text = cell_text(value)
        if not text or not _PHONE_CHARS_RE.match(text):
            continue
        if is_valid_phone(re.sub(r"[^\d+]", "", text)):
            return text, key
    return None, None


# -- identifiers -------------------------------------------------------------------------------


def new_author_id() -> str:
    return str(uuid.uuid4())


def is_uuid4(value: Any) -> bool:
    return bool(UUID_V4_RE.match(str(value or "").strip()))


def resolve_author_id(row: dict[str, Any]) -> tuple[str, str | None]:
    """Caller supplied id when it is a UUID v4, else a fresh one plus a warning text."""
    supplied = cell_text(row.get("author_id"))
    if not supplied:
        return new_author_id(), None
    if is_uuid4(supplied):
        return supplied.lower(), None
    return new_author_id(), f"invalid author_id {supplied!r} replaced with a generated one"


# -- joiners -----------------------------------------------------------------------------------


def _capitalize(value: str | None) -> str | None:
    if not value:
        return None
    return value[:1].upper() + value[1:].lower()


def normalize_joiner_row(row: Any, row_no: int, batch: NormalizedBatch, *, created_by: Any = None) -> None:
    if not isinstance(row, dict):
        batch.reject(row_no, "row must be an object")
        return

    name = cell_text(row.get("candidate_name"))
    if not name:
        batch.reject(row_no, "candidate_name is required")
        return

    raw_email = cell_text(row.get("candidate_personal_mail_id"))
    if not raw_email:
        batch.reject(row_no, "candidate_personal_mail_id is required")
        return
    if not EMAIL_RE.match(raw_email):
        batch.reject(row_no, f"Invalid email format: {raw_email}")
        return

    raw_phone, _source = resolve_phone(row)
    if raw_phone is None:
        batch.reject(row_no, "phone_number is required")
        return
    phone = clean_phone(raw_phone)
    if not is_valid_phone(phone):
        batch.reject(row_no, f"Invalid phone format: {raw_phone} (cleaned: {phone})")
        return

    role_assign = cell_text(row.get("role_assign")).upper() or "OTHER"
    if role_assign not in ROLE_ASSIGN_VALUES:
        batch.reject(
            row_no,
            f"Invalid role_assign value: {row.get('role_assign')}. Must be one of: {', '.join(ROLE_ASSIGN_VALUES)}",
        )
        return

    raw_doj = cell_text(row.get("date_of_joining"))
    date_of_joining = parse_datetime_maybe(raw_doj) if raw_doj else None
    if raw_doj and date_of_joining is None:
        batch.reject(row_no, f"Invalid date_of_joining: {raw_doj}")
        return

    author_id, warning = resolve_author_id(row)
    if warning:
        batch.warnings.append(row_error(row_no, warning))

    now = utc_now()
    department = _blank_to_none(row.get("top_department_name_as_per_darwinbox"))
    batch.add(
        row_no,
        {
            "name": name,
            "email": raw_email.lower(),
            "phone": phone,
            "department": department or DEFAULT_DEPARTMENT,
            "role": "trainee",
            "joiningDate": date_of_joining or now,
            "candidate_name": name,
            "candidate_personal_mail_id": raw_email,
            "phone_number": phone,
            "top_department_name_as_per_darwinbox": department,
            "department_name_as_per_darwinbox": _blank_to_none(row.get("department_name_as_per_darwinbox")),
            "date_of_joining": date_of_joining,
            "joining_status": (cell_text(row.get("joining_status")) or "pending").lower(),
            "role_type": _blank_to_none(row.get("role_type")),
            "role_assign": role_assign,
            "qualification": _blank_to_none(row.get("qualification")),
            "author_id": author_id,
            "employeeId": _blank_to_none(row.get("employee_id") or row.get("employeeId")),
            "genre": _capitalize(_blank_to_none(row.get("genre"))),
            "status": "pending",
            "accountCreated": False,
            "accountCreatedAt": None,
            "createdBy": created_by,
            "createdAt": now,
            "updatedAt": now,
            "onboardingChecklist": {step: False for step in ONBOARDING_STEPS},
        },
    )


def normalize_joiners(rows: list[Any], *, created_by: Any = None) -> NormalizedBatch:
    batch = NormalizedBatch()
    for i, row in enumerate(rows, start=1):
        normalize_joiner_row(row, i, batch, created_by=created_by)
    return batch


# -- exam results ------------------------------------------------------------------------------


def exam_family(text: Any) -> str | None:
    s = str(text or "").strip().lower()
    if "fortnight" in s or "fornight" in s:
        return "fortnight"
    if "daily" in s or "quiz" in s:
        return "daily"
    if "course" in s:
        return "course"
    return None


def normalize_exam_type(raw: Any, requested: Any) -> str:
    """'Fornight 3' -> 'fortnight3'; ordinal defaults to 1."""
    text = cell_text(raw) or cell_text(requested)
    family = exam_family(text) or exam_family(requested)
    m = re.search(r"\d+", text)
    number = str(int(m.group(0))) if m else "1"
    if family:
        return f"{family}{number}"
    base = re.sub(r"[^a-z]", "", str(requested or "").lower()) or "exam"
    return f"{base}1"


def parse_score(value: Any) -> float:
    s = cell_text(value)
    if not s:
        return 0.0
    try:
        score = float(s)
    except ValueError:
        return 0.0
    return 0.0 if math.isnan(score) else score


def parse_total_marks(value: Any) -> float:
    s = cell_text(value)
    if not s:
        return DEFAULT_TOTAL_MARKS
    try:
        total = float(s)
    except ValueError:
        return DEFAULT_TOTAL_MARKS
    if math.isnan(total) or total < 0:
        return DEFAULT_TOTAL_MARKS
    return total


def compute_percentage(score: float, total_marks: float) -> int:
    if not total_marks:
        return 0
    return round_half_up(float(score) / float(total_marks) * 100)


def result_status(percentage: int, pass_mark: int = 60) -> str:
    return "passed" if percentage >= pass_mark else "failed"


def plain_number(value: float) -> float | int:
    return int(value) if float(value).is_integer() else value


def result_name(exam_type: str, ordinal: int) -> str:
    return f"{exam_type[:1].upper()}{exam_type[1:]}Results{ordinal}"


def _first_numeric(row: dict[str, Any], columns: tuple[str, ...]) -> Any:
    for col in columns:
        text = cell_text(row.get(col))
        if not text:
            continue
        try:
            float(text)
        except ValueError:
            continue
        return row[col]
    return None


def sheet_score(row: dict[str, Any], family: str | None) -> float:
    columns: tuple[str, ...] = ()
    if family:
        columns = _SCORE_COLUMNS.get(family, ())
    else:
        for fam in EXAM_FAMILIES:
            if any(row.get(c) not in (None, "") for c in _SCORE_COLUMNS[fam]):
                columns = _SCORE_COLUMNS[fam]
                break

    value = _first_numeric(row, columns + ("score", "Score"))
    if value is None and family:
        for key in row:
            k = str(key).lower()
            if family in k and "result" in k:
                value = row[key]
                break
    return parse_score(value)


def sheet_row_to_result(row: dict[str, Any], family: str | None) -> dict[str, Any]:
    """Map a results-sheet row (Author_id / Date / Type / <family> score columns) to upload shape."""
    return {
        "author_id": cell_text(row.get("Author_id") or row.get("author_id") or row.get("AuthorId")),
        "score": plain_number(sheet_score(row, family)),
        "total_marks": plain_number(
            parse_total_marks(row["total_marks"] if "total_marks" in row else row.get("TotalMarks"))
        ),
        "exam_date": cell_text(row.get("Date") or row.get("date") or row.get("exam_date")),
        "exam_type": cell_text(row.get("Type") or row.get("type") or row.get("ExamType") or row.get("exam_type"))
        or (family or ""),
        "remarks": "",
        "department": "",
        "trainer_name": "",
        "batch_name": "",
    }


_ROW_NO_RE = re.compile(r"^Row (\d+):")


def sort_row_errors(errors: list[str]) -> list[str]:
    def _key(msg: str) -> int:
        m = _ROW_NO_RE.match(msg)
        return int(m.group(1)) if m else 0

    return sorted(errors, key=_key)
