import os
from datetime import timedelta
from typing import Dict, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from werkzeug.middleware.proxy_fix import ProxyFix

from .admin import admin_bp
from .artisan import artisan_bp
from .assistant import LLM_EXTENSION_KEY, assistant_bp
from .auth import auth_bp
from .cart import cart_bp
from .catalog import catalog_bp
from .database import DB_EXTENSION_KEY, ensure_indexes
from .helpers import normalize_email, safe_float
from .media import media_bp
from .orders import orders_bp
from .verification import verification_bp

load_dotenv()

BLUEPRINTS = (
    media_bp,
    auth_bp,
    catalog_bp,
    cart_bp,
    orders_bp,
    artisan_bp,
    verification_bp,
    admin_bp,
    assistant_bp,
)


def load_config(app: Flask) -> None:
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/artisanhaven"
    )
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
    try:
        token_hours = int(os.getenv("JWT_ACCESS_TOKEN_HOURS", "12"))
    except ValueError:
        token_hours = 12
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=max(token_hours, 1))

    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "32"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["UPLOAD_FOLDER"] = os.getenv(
        "UPLOAD_FOLDER", os.path.join(app.root_path, "uploads")
    )

    app.config["DEFAULT_ADMIN_EMAIL"] = normalize_email(
        os.getenv("DEFAULT_ADMIN_EMAIL") or "admin@artisanhaven.in"
    )
    app.config["DEFAULT_ADMIN_NAME"] = (
        os.getenv("DEFAULT_ADMIN_NAME") or "Artisan Haven Admin"
    ).strip()

    app.config["GOOGLE_GEMINI_API_KEY"] = (os.getenv("GOOGLE_GEMINI_API_KEY") or "").strip()
    app.config["GEMINI_ASSISTANT_MODEL"] = os.getenv(
        "GEMINI_ASSISTANT_MODEL", "gemini-1.5-flash-latest"
    )
    app.config["GEMINI_ANALYSIS_MODEL"] = os.getenv(
        "GEMINI_ANALYSIS_MODEL", "gemini-1.5-flash-001"
    )

    app.config["RESEND_API_KEY"] = (os.getenv("RESEND_API_KEY") or "").strip()
    app.config["EMAIL_SENDER"] = (
        os.getenv("EMAIL_SENDER") or "orders@artisanhaven.in"
    ).strip()

    app.config["DELIVERY_CHARGE"] = safe_float(os.getenv("DELIVERY_CHARGE"), 50.0)
    app.config["CURRENCY"] = (os.getenv("CURRENCY") or "INR").strip().upper()


def allowed_origins():
    origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        os.getenv("FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    for origin in cors_extra.split(","):
        trimmed = origin.strip()
        if trimmed:
            origins.append(trimmed)
    return [origin for origin in origins if origin]


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(404)
    def not_found(_error):
        return jsonify({"message": "Resource not found."}), 404

    @app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({"message": "Method not allowed."}), 405

    @app.errorhandler(413)
    def payload_too_large(_error):
        limit_mb = app.config["MAX_CONTENT_LENGTH"] // (1024 * 1024)
        return jsonify({"message": f"Uploads are limited to {limit_mb} MB per request."}), 413


def create_app(
    test_config: Optional[Dict] = None, database=None, llm_client=None
) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Honor proxy headers so generated media links keep the public origin.
    try:
        trusted_proxy_hops = max(0, int(os.getenv("TRUSTED_PROXY_HOPS", "1")))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    load_config(app)
    if test_config:
        app.config.update(test_config)

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    CORS(app, supports_credentials=True, origins=allowed_origins() or "*")
    JWTManager(app)

    if database is None:
        database = PyMongo(app).db
    app.extensions[DB_EXTENSION_KEY] = database
    if llm_client is not None:
        app.extensions[LLM_EXTENSION_KEY] = llm_client

    ensure_indexes(database, app.logger)

    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)
    register_error_handlers(app)

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    return app
