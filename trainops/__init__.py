from __future__ import annotations

from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS

from trainops.config import get_config
from trainops.db import init_mongo
from trainops.middlewares.error_handler import init_error_handlers
from trainops.middlewares.logging import init_request_logging
from trainops.middlewares.rate_limit import init_rate_limiting
from trainops.middlewares.request_id import init_request_id
from trainops.middlewares.security_headers import init_security_headers
from trainops.notifications import init_notifier
from trainops.routes.auth import auth_bp
from trainops.routes.core import core_bp
from trainops.routes.dashboard import dashboard_bp
from trainops.routes.dayplans import dayplans_bp
from trainops.routes.demos import demos_bp
from trainops.routes.joiners import joiners_bp
from trainops.routes.results import results_bp
from trainops.utils.logging import setup_logging
from trainops.utils.serialize import MongoJSONProvider


def create_app() -> Flask:
    load_dotenv()

    cfg = get_config()
    setup_logging(cfg.LOG_LEVEL)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.json = MongoJSONProvider(app)

    CORS(
        app,
        origins=cfg.CORS_ORIGINS,
        supports_credentials=cfg.CORS_ALLOW_CREDENTIALS,
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        max_age=3600,
    )

    init_request_id(app)
    init_security_headers(app)
    init_rate_limiting(app)
    init_request_logging(app)
    init_error_handlers(app)

    init_mongo(app)
    init_notifier(app)

    app.register_blueprint(core_bp)
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")
    app.register_blueprint(joiners_bp, url_prefix="/api/v1/joiners")
    app.register_blueprint(results_bp, url_prefix="/api/v1/results")
    app.register_blueprint(dashboard_bp, url_prefix="/api/v1/admin/candidate-dashboard")
    app.register_blueprint(dayplans_bp, url_prefix="/api/v1/trainee-dayplans")
    app.register_blueprint(demos_bp, url_prefix="/api/v1/demos")

    return app
