from __future__ import annotations

from flask import Flask, request

from trainops.utils.rate_limiter import InMemoryRateLimiter

_limiter = InMemoryRateLimiter()

# Bulk uploads are heavy; they get their own bucket on top of the global one.
_BULK_SUFFIXES = ("/bulk-upload", "/validate-sheets")


def client_ip() -> str:
    ip = request.headers.get("X-Forwarded-For", request.remote_addr or "")
    if ip and "," in ip:
        ip = ip.split(",", 1)[0].strip()
    return ip


def init_rate_limiting(app: Flask) -> None:
    cfg = app.config["CFG"]
    if cfg.TESTING:
        _limiter.reset()

    @app.before_request
    def _rate_limit():
        path = request.path or ""
        if path in {"/health", "/version"}:
            return None

        ip = client_ip() if cfg.TRUST_PROXY_HEADERS else (request.remote_addr or "")

        if path.startswith("/api/v1/auth/login"):
            _limiter.check(f"{ip}:LOGIN", cfg.RATE_LIMIT_LOGIN)
            return None

        if path.startswith("/api/v1/"):
            _limiter.check(f"{ip}:GLOBAL", cfg.RATE_LIMIT_GLOBAL)
            if path.endswith(_BULK_SUFFIXES):
                _limiter.check(f"{ip}:BULK", cfg.RATE_LIMIT_BULK)
            else:
                _limiter.check(f"{ip}:PATH:{path}", cfg.RATE_LIMIT_DEFAULT)
            return None

        return None
