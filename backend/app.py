import logging
import os
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from dotenv import load_dotenv
from flask import Flask, current_app, g, jsonify, request
from flask_jwt_extended import JWTManager
from werkzeug.exceptions import HTTPException

from auth_routes import auth_bp
from config import Config, ConfigurationError, load_config
from pipeline import build_pipeline
from rate_limit import MemoryWindowStore
from response_utils import error_response, not_found

API_VERSION = "1.0.0"

# 10 MiB request body limit
MAX_CONTENT_LENGTH = 10 * 1024 * 1024

jwt = JWTManager()
logger = logging.getLogger(__name__)


def create_app(
    config: Optional[Config] = None,
    *,
    rate_limit_store: Optional[MemoryWindowStore] = None,
    clock: Optional[Callable[[], float]] = None,
) -> Flask:
    """
    Application factory: validates configuration, then wires JWT, the request
    admission pipeline, error handlers and blueprints.

    Raises ConfigurationError before anything is installed if the environment
    is invalid.
    """
    if config is None:
        load_dotenv()
        config = load_config(os.environ)

    app = Flask(__name__)
    app.config["LIBRARY_CONFIG"] = config
    app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH

    # JWT configuration comes from the validated config only
    app.config["JWT_SECRET_KEY"] = config.jwt_secret
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = config.token_lifetime
    jwt.init_app(app)

    # Request ID + timing (registered first so it wraps the pipeline)
    @app.before_request
    def _attach_request_id():
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        g.request_id = rid
        g.request_started = time.perf_counter()

    @app.after_request
    def _inject_response_headers(resp):
        if getattr(g, "request_id", None):
            resp.headers["X-Request-ID"] = g.request_id
        started = getattr(g, "request_started", None)
        duration_ms = (time.perf_counter() - started) * 1000 if started else 0.0
        current_app.logger.info(
            "%s %s %s %.1fms client=%s",
            request.method,
            request.path,
            resp.status_code,
            duration_ms,
            request.remote_addr,
        )
        return resp

    # cors -> rate_limit -> security_headers -> sanitize
    pipeline = build_pipeline(config, store=rate_limit_store, clock=clock)
    pipeline.install(app)

    @app.get("/")
    def index():
        return (
            jsonify(
                {
                    "message": "Welcome to Library Management System API",
                    "version": API_VERSION,
                    "endpoints": {
                        "health": "/api/health",
                        "me": "/api/me",
                        "library_policy": "/api/library/policy",
                    },
                }
            ),
            200,
        )

    @app.get("/api/health")
    def health():
        return (
            jsonify(
                {
                    "status": "ok",
                    "environment": config.env,
                    "version": API_VERSION,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            ),
            200,
        )

    @app.get("/api/library/policy")
    def library_policy():
        policy = config.library
        return (
            jsonify(
                {
                    "fine_per_day": policy.fine_per_day,
                    "max_borrow_days": policy.max_borrow_days,
                    "max_books_per_user": policy.max_books_per_user,
                }
            ),
            200,
        )

    # JWT error handlers (unified JSON errors)
    @jwt.invalid_token_loader
    def _invalid_token(reason: str):
        return error_response("unauthorized", "Missing or invalid token.", status=401)

    @jwt.unauthorized_loader
    def _missing_token(reason: str):
        return error_response("unauthorized", "Missing or invalid token.", status=401)

    @jwt.expired_token_loader
    def _expired_token(jwt_header, jwt_payload):
        return error_response("token_expired", "Token expired.", status=401)

    @app.errorhandler(404)
    def handle_404(e):
        return not_found()

    @app.errorhandler(405)
    def handle_405(e):
        return error_response("method_not_allowed", "Method not allowed.", status=405)

    @app.errorhandler(413)
    def handle_413(e):
        return error_response("payload_too_large", "Request body too large.", status=413)

    # Catch-all exception handler, behavior depends on debug mode
    @app.errorhandler(Exception)
    def handle_exception(e):
        debug_mode = current_app.debug

        if isinstance(e, HTTPException):
            message = e.description if debug_mode else "Unexpected HTTP error."
            return error_response("http_error", message, status=e.code or 500)

        current_app.logger.exception("Unhandled exception")
        message = str(e) if debug_mode else "Unexpected server error."
        return error_response("server_error", message, status=500)

    # Register blueprints under /api
    app.register_blueprint(auth_bp, url_prefix="/api")

    return app


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    load_dotenv()
    try:
        config = load_config(os.environ)
    except ConfigurationError as e:
        logger.error("%s", e)
        sys.exit(1)

    app = create_app(config)
    logger.info("Server starting in %s mode on port %s", config.env, config.port)
    app.run(port=config.port, debug=config.is_development)


if __name__ == "__main__":
    main()
