from __future__ import annotations

import logging
from typing import Any

from flask import Flask, g, jsonify
from pymongo.errors import DuplicateKeyError, PyMongoError
from werkzeug.exceptions import HTTPException

from trainops.utils.errors import ApiError, diagnostic_details

log = logging.getLogger("trainops")


def _payload(code: str, message: str, details: Any = None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "success": False,
        "message": message,
        "error": {"code": code, "message": message, "details": details},
    }
    if getattr(g, "request_id", None):
        payload["request_id"] = g.request_id
    return payload


def init_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(err: ApiError):
        return jsonify(_payload(err.code, err.message, err.details)), err.status

    @app.errorhandler(HTTPException)
    def _http_error(err: HTTPException):
        code = f"HTTP_{int(err.code or 500)}"
        return jsonify(_payload(code, str(err.description or "HTTP error"))), int(err.code or 500)

    @app.errorhandler(DuplicateKeyError)
    def _duplicate(err: DuplicateKeyError):
        log.warning("Duplicate key request_id=%s: %s", getattr(g, "request_id", ""), err)
        return jsonify(_payload("CONFLICT", "Record already exists", diagnostic_details(err))), 409

    @app.errorhandler(PyMongoError)
    def _store_error(err: PyMongoError):
        log.exception("Database error request_id=%s", getattr(g, "request_id", ""))
        return jsonify(_payload("INTERNAL", "Database operation failed", diagnostic_details(err))), 500

    @app.errorhandler(Exception)
    def _unhandled(err: Exception):
        log.exception("Unhandled exception request_id=%s", getattr(g, "request_id", ""))
        return jsonify(_payload("INTERNAL", "Unexpected error", diagnostic_details(err))), 500
