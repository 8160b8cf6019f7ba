from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from flask import current_app, has_app_context


@dataclass(frozen=True)
class ApiError(Exception):
    code: str
    message: str
    status: int = 400
    details: Any | None = None


def diagnostic_details(err: BaseException) -> dict[str, Any] | None:
    """Raw exception detail for a response body, only when the config allows it."""
    if not has_app_context():
        return None
    cfg = current_app.config.get("CFG")
    if not getattr(cfg, "EXPOSE_ERROR_DETAILS", False):
        return None
    return {"type": type(err).__name__, "error": str(err)}


def not_found(what: str) -> ApiError:
    return ApiError("NOT_FOUND", f"{what} not found", status=404)


def forbidden(message: str = "Access denied") -> ApiError:
    return ApiError("FORBIDDEN", message, status=403)
