import logging

from flask import Flask, g, jsonify, request
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from app.doctrack.config import load_config
from app.doctrack.db import init_db, teardown_db_session
from app.doctrack.errors import DocumentError
from app.doctrack.routes import bp as routes_bp
from app.doctrack.auth import load_current_user
from app.doctrack.modules.documents.admin import bp as documents_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    # Storage config check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(documents_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(DocumentError)
    def _err_document(e: DocumentError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.exception("%s (request_id=%s)", e.message, getattr(g, "request_id", None))
        else:
            app.logger.warning("%s: %s (request_id=%s)", type(e).__name__, e.message, getattr(g, "request_id", None))
        return jsonify({"error": e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        if e.code == 403:
            missing = getattr(g, "missing_groups", None)
            if missing:
                app.logger.warning("Forbidden: required_groups=%s request_id=%s", missing, getattr(g, "request_id", None))
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        # Request bodies over MAX_CONTENT_LENGTH never reach validate_upload.
        max_size = app.config["REVISION_MAX_FILE_SIZE"]
        app.logger.warning("Upload over request cap rejected (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": f"File too large. Maximum size is {max_size} bytes."}), 400

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error"}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
