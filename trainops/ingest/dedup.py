from __future__ import annotations

import logging
from typing import Any, Iterable

from pymongo.errors import BulkWriteError

from trainops.ingest.normalize import row_error

log = logging.getLogger(__name__)

_DUPLICATE_KEY = 11000


def lookup_map(collection, field: str, keys: Iterable[str], *, projection: dict[str, int] | None = None) -> dict[str, dict[str, Any]]:
    """One ``$in`` query; returns key -> stored document."""
    wanted = sorted({k for k in keys if k})
    if not wanted:
        return {}
    cursor = collection.find({field: {"$in": wanted}}, projection)
    return {doc[field]: doc for doc in cursor if doc.get(field)}


def _write_error_message(err: dict[str, Any]) -> str:
    if int(err.get("code") or 0) == _DUPLICATE_KEY:
        return f"Duplicate record rejected by the database ({err.get('errmsg') or 'duplicate key'})"
    return f"Insert failed: {err.get('errmsg') or 'write error'}"


def bulk_insert(collection, records: list[dict[str, Any]], rows: list[int]) -> tuple[list[dict[str, Any]], list[str]]:
    """Unordered insert of ``records`` (``rows`` holds their 1-based row numbers).

    Returns the committed documents and one error string per failed row.
    """
    if not records:
        return [], []
    try:
        collection.insert_many(records, ordered=False)
    except BulkWriteError as e:
        details = e.details or {}
        failed: dict[int, str] = {}
        for w in details.get("writeErrors", []):
            idx = int(w.get("index", -1))
            if 0 <= idx < len(rows):
                failed[idx] = row_error(rows[idx], _write_error_message(w))
        log.warning(
            "Bulk insert into %s: %s inserted, %s failed", collection.name, details.get("nInserted"), len(failed)
        )
        committed = [r for i, r in enumerate(records) if i not in failed]
        return committed, [failed[i] for i in sorted(failed)]
    return records, []
