from __future__ import annotations

import os
from dataclasses import dataclass


def _csv(value: str) -> list[str]:
    items: list[str] = []
    for part in (value or "").split(","):
        item = part.strip()
        if item:
            items.append(item)
    return items


def _env_str(name: str, default: str) -> str:
    return str(os.getenv(name, default) or default)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class BaseConfig:
    ENV: str = "development"
    DEBUG: bool = False
    TESTING: bool = False

    APP_VERSION: str = "dev"
    TIMEZONE_DISPLAY: str = "Asia/Kolkata"

    MONGODB_URI: str = "mongodb://localhost:27017"
    DB_NAME: str = "trainops"
    MONGO_SERVER_SELECTION_TIMEOUT_MS: int = 5000

    JWT_SECRET: str = "dev-secret"
    JWT_EXP_MINUTES: int = 720

    CORS_ORIGINS: list[str] | str = (
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000"
    )
    CORS_ALLOW_CREDENTIALS: bool = False

    LOG_LEVEL: str = "INFO"
    # Stack/store detail in error bodies. Off unless asked for outside development.
    EXPOSE_ERROR_DETAILS: bool = False

    RATE_LIMIT_GLOBAL: str = "1200 per minute"
    RATE_LIMIT_DEFAULT: str = "300 per minute"
    RATE_LIMIT_LOGIN: str = "30 per minute"
    RATE_LIMIT_BULK: str = "20 per minute"

    TRUST_PROXY_HEADERS: bool = True

    SHEETS_TIMEOUT_SECONDS: float = 20.0
    BULK_MAX_ROWS: int = 5000

    PASS_PERCENTAGE: int = 60
    DASHBOARD_LEGACY_FORTNIGHT_COUNT: bool = False

    BOOTSTRAP_TOKEN: str = ""
    ADMIN_INVITE_TOKEN: str = ""
    MASTER_TRAINER_INVITE_TOKEN: str = ""
    TRAINER_INVITE_TOKEN: str = ""
    TRAINEE_INVITE_TOKEN: str = ""
    BOA_INVITE_TOKEN: str = ""

    def __post_init__(self) -> None:
        for name in (
            "APP_VERSION",
            "TIMEZONE_DISPLAY",
            "MONGODB_URI",
            "DB_NAME",
            "JWT_SECRET",
            "RATE_LIMIT_GLOBAL",
            "RATE_LIMIT_DEFAULT",
            "RATE_LIMIT_LOGIN",
            "RATE_LIMIT_BULK",
        ):
            object.__setattr__(self, name, _env_str(name, getattr(self, name)))

        for name in (
            "BOOTSTRAP_TOKEN",
            "ADMIN_INVITE_TOKEN",
            "MASTER_TRAINER_INVITE_TOKEN",
            "TRAINER_INVITE_TOKEN",
            "TRAINEE_INVITE_TOKEN",
            "BOA_INVITE_TOKEN",
        ):
            object.__setattr__(self, name, str(os.getenv(name, getattr(self, name)) or "").strip())

        object.__setattr__(
            self,
            "MONGO_SERVER_SELECTION_TIMEOUT_MS",
            _env_int("MONGO_SERVER_SELECTION_TIMEOUT_MS", self.MONGO_SERVER_SELECTION_TIMEOUT_MS),
        )
        object.__setattr__(self, "JWT_EXP_MINUTES", _env_int("JWT_EXP_MINUTES", self.JWT_EXP_MINUTES))
        object.__setattr__(self, "BULK_MAX_ROWS", _env_int("BULK_MAX_ROWS", self.BULK_MAX_ROWS))
        object.__setattr__(self, "PASS_PERCENTAGE", _env_int("PASS_PERCENTAGE", self.PASS_PERCENTAGE))
        object.__setattr__(
            self, "SHEETS_TIMEOUT_SECONDS", _env_float("SHEETS_TIMEOUT_SECONDS", self.SHEETS_TIMEOUT_SECONDS)
        )

        cors_raw = os.getenv("CORS_ORIGINS")
        if cors_raw is not None:
            cors_raw = str(cors_raw or "").strip()
            if cors_raw == "*":
                object.__setattr__(self, "CORS_ORIGINS", "*")
            else:
                object.__setattr__(self, "CORS_ORIGINS", _csv(cors_raw))
        else:
            object.__setattr__(self, "CORS_ORIGINS", _csv(str(self.CORS_ORIGINS)))

        object.__setattr__(
            self, "CORS_ALLOW_CREDENTIALS", _env_bool("CORS_ALLOW_CREDENTIALS", self.CORS_ALLOW_CREDENTIALS)
        )
        object.__setattr__(self, "LOG_LEVEL", _env_str("LOG_LEVEL", self.LOG_LEVEL).upper())
        object.__setattr__(
            self, "EXPOSE_ERROR_DETAILS", _env_bool("EXPOSE_ERROR_DETAILS", self.EXPOSE_ERROR_DETAILS)
        )
        object.__setattr__(self, "TRUST_PROXY_HEADERS", _env_bool("TRUST_PROXY_HEADERS", self.TRUST_PROXY_HEADERS))
        object.__setattr__(
            self,
            "DASHBOARD_LEGACY_FORTNIGHT_COUNT",
            _env_bool("DASHBOARD_LEGACY_FORTNIGHT_COUNT", self.DASHBOARD_LEGACY_FORTNIGHT_COUNT),
        )

    @property
    def IS_PRODUCTION(self) -> bool:
        return str(self.ENV or "").lower() == "production"

    def invite_roles(self) -> dict[str, str]:
        """Invite token -> role, skipping unset tokens."""
        pairs = [
            (self.ADMIN_INVITE_TOKEN, "admin"),
            (self.MASTER_TRAINER_INVITE_TOKEN, "master_trainer"),
            (self.TRAINER_INVITE_TOKEN, "trainer"),
            (self.TRAINEE_INVITE_TOKEN, "trainee"),
            (self.BOA_INVITE_TOKEN, "boa"),
        ]
        return {token: role for token, role in pairs if token}

    def validate(self) -> None:
        if self.IS_PRODUCTION and str(self.JWT_SECRET or "").strip() in {"", "dev-secret"}:
            raise RuntimeError("JWT_SECRET must be set in production")
        if self.IS_PRODUCTION and (not str(self.MONGODB_URI or "").strip() or not str(self.DB_NAME or "").strip()):
            raise RuntimeError("MONGODB_URI and DB_NAME must be set in production")
        if not 0 <= self.PASS_PERCENTAGE <= 100:
            raise RuntimeError("PASS_PERCENTAGE must be between 0 and 100")


@dataclass(frozen=True)
class DevelopmentConfig(BaseConfig):
    ENV: str = "development"
    DEBUG: bool = True
    EXPOSE_ERROR_DETAILS: bool = True


@dataclass(frozen=True)
class ProductionConfig(BaseConfig):
    ENV: str = "production"
    DEBUG: bool = False


@dataclass(frozen=True)
class TestingConfig(BaseConfig):
    ENV: str = "testing"
    TESTING: bool = True
    JWT_SECRET: str = "test-secret"
    MONGODB_URI: str = "mongomock://localhost"
    DB_NAME: str = "trainops_test"


def get_config() -> BaseConfig:
    env = str(os.getenv("ENV") or os.getenv("APP_ENV") or "development").strip().lower()
    if env in {"prod", "production"}:
        cfg: BaseConfig = ProductionConfig()
    elif env in {"test", "testing"}:
        cfg = TestingConfig()
    else:
        cfg = DevelopmentConfig()

    cfg.validate()
    return cfg
