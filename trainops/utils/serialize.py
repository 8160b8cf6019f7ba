from __future__ import annotations

from datetime import datetime
from typing import Any

from bson import ObjectId
from flask.json.provider import DefaultJSONProvider

from trainops.utils.datetime import to_iso_utc


class MongoJSONProvider(DefaultJSONProvider):
    """jsonify() support for documents straight out of PyMongo."""

    @staticmethod
    def default(o: Any) -> Any:
        if isinstance(o, ObjectId):
            return str(o)
        if isinstance(o, datetime):
            return to_iso_utc(o)
        return DefaultJSONProvider.default(o)


def public_doc(doc: dict[str, Any] | None, *, drop: tuple[str, ...] = ()) -> dict[str, Any] | None:
    if doc is None:
        return None
    out = {k: v for k, v in doc.items() if k not in drop}
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out
