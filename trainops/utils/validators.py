from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId
from dateutil import parser as dt_parser
from flask import request

from trainops.utils.errors import ApiError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


def require_json() -> dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ApiError("BAD_REQUEST", "JSON body must be an object", status=400)
    return body


def validate_email(value: Any) -> str:
    email = str(value or "").strip().lower()
    if not email or not EMAIL_RE.match(email):
        raise ApiError("BAD_REQUEST", "Invalid email", status=400)
    return email


def validate_password(value: Any, *, allow_short: bool) -> str:
    password = str(value or "")
    if not password:
        raise ApiError("BAD_REQUEST", "Password required", status=400)
    if not allow_short and len(password) < 8:
        raise ApiError("BAD_REQUEST", "Password must be at least 8 characters", status=400)
    return password


def looks_like_object_id(value: Any) -> bool:
    return bool(_OBJECT_ID_RE.match(str(value or "").strip()))


def parse_object_id(value: Any, *, what: str = "id") -> ObjectId:
    try:
        return ObjectId(str(value or "").strip())
    except (InvalidId, TypeError) as e:
        raise ApiError("BAD_REQUEST", f"Invalid {what}", status=400) from e


def parse_day(value: Any, *, field: str = "date") -> datetime:
    """Calendar day of ``value`` as an aware UTC midnight."""
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value or "").strip()
        if not s:
            raise ApiError("BAD_REQUEST", f"{field} is required", status=400)
        try:
            dt = dt_parser.parse(s)
        except (ValueError, OverflowError) as e:
            raise ApiError("BAD_REQUEST", f"Invalid {field}", status=400) from e
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return datetime(dt.year, dt.month, dt.day, tzinfo=timezone.utc)


def parse_date_range(
    args, *, from_key: str = "from", to_key: str = "to", allow_inverted: bool = False
) -> tuple[datetime, datetime, str, str]:
    """Both days are required; ``allow_inverted`` lets an empty range through for callers that report zeros."""
    from_s = str(args.get(from_key) or "").strip()
    to_s = str(args.get(to_key) or "").strip()
    if not from_s or not to_s:
        raise ApiError("BAD_REQUEST", f"{from_key} and {to_key} are required (YYYY-MM-DD)", status=400)

    start_dt = parse_day(from_s, field=from_key)
    end_dt = parse_day(to_s, field=to_key) + timedelta(days=1)
    if end_dt <= start_dt and not allow_inverted:
        raise ApiError("BAD_REQUEST", "Invalid date range", status=400)
    return start_dt, end_dt, from_s, to_s


def parse_paging(args, *, default_limit: int = 20, max_limit: int = 200) -> tuple[int, int]:
    try:
        page = max(1, int(args.get("page") or 1))
        limit = int(args.get("limit") or default_limit)
    except (TypeError, ValueError) as e:
        raise ApiError("BAD_REQUEST", "page and limit must be integers", status=400) from e
    return page, max(1, min(max_limit, limit))
