"""Flask application factory for the CivicSecure complaint API."""
import atexit
import os
import time
from typing import Optional

import click
from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from extensions import cors, db, login_manager, migrate
from utils.decorators import enforce_rate_limit
from utils.errors import ApiError, RateLimited, Unauthorized, UserNotFound
from utils.logger import init_logging
from utils.security import RateLimiter, apply_security_headers, bearer_token, decode_session_token


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def api_error(error: ApiError):
        log = app.logger.error if error.status_code >= 500 else app.logger.info
        log(
            "Request failed",
            extra={"path": request.path, "method": request.method, "status": error.status_code, "reason": error.message},
        )
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        if isinstance(error, RateLimited) and error.retry_after:
            response.headers["Retry-After"] = str(error.retry_after)
        return response

    @app.errorhandler(404)
    def not_found_error(error):
        app.logger.warning("404 Not Found", extra={"path": request.path, "method": request.method})
        return jsonify({"success": False, "message": "Endpoint not found", "path": request.path, "method": request.method}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"success": False, "message": "Method not allowed", "path": request.path, "method": request.method}), 405

    @app.errorhandler(Exception)
    def internal_error(error):
        if isinstance(error, HTTPException):
            return jsonify({"success": False, "message": error.description}), error.code
        app.logger.exception("500 Internal Server Error", extra={"path": request.path, "method": request.method})
        db.session.rollback()
        body = {"success": False, "message": "Internal server error"}
        if app.config.get("EXPOSE_ERROR_DETAIL"):
            body["error"] = str(error)
        return jsonify(body), 500


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        if url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return

    if url.drivername.startswith("postgres"):
        db_name = url.database
        admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
        engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            with engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).scalar()
                if not exists:
                    conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        except OperationalError:
            # Startup fails loudly on the first real query instead.
            pass
        finally:
            engine.dispose()


def init_authentication(app: Flask) -> None:
    """Resolve the bearer token on each request; no cookie sessions are issued."""
    from models import User  # Local import to avoid circular dependency

    login_manager.init_app(app)
    login_manager.session_protection = None

    @login_manager.request_loader
    def load_user_from_request(req):
        token = bearer_token(req.headers.get("Authorization"))
        if token is None:
            g.auth_error = Unauthorized()
            return None
        try:
            claims = decode_session_token(token, app.config["JWT_SECRET"])
        except Unauthorized as exc:
            g.auth_error = exc
            return None
        user = User.query.filter_by(phone=claims["phone"]).first()
        if user is None:
            g.auth_error = UserNotFound()
            return None
        return user

    @login_manager.unauthorized_handler
    def unauthorized():
        error = g.get("auth_error") or Unauthorized()
        app.logger.info("Unauthorized request", extra={"path": request.path, "reason": error.message})
        raise error


def init_services(app: Flask) -> None:
    from utils.complaint_service import TrackingIdGenerator
    from utils.otp_sweeper import OtpSweeper
    from utils.sms_service import build_notifier

    config = app.config
    app.extensions["started_at"] = time.monotonic()
    app.extensions["sms_notifier"] = build_notifier(config, app.logger)
    app.extensions["tracking_ids"] = TrackingIdGenerator()
    app.extensions["rate_limiter"] = RateLimiter(
        window_seconds=config["RATE_LIMIT_WINDOW_SECONDS"],
        limits={
            "otp": config["RATE_LIMIT_OTP"],
            "verify": config["RATE_LIMIT_VERIFY"],
            "general": config["RATE_LIMIT_GENERAL"],
        },
        enabled=config["RATE_LIMIT_ENABLED"],
    )

    sweeper = OtpSweeper(app, interval=config["OTP_SWEEP_INTERVAL_SECONDS"])
    app.extensions["otp_sweeper"] = sweeper
    if config.get("OTP_SWEEP_ENABLED") and not app.testing:
        sweeper.start()
        atexit.register(sweeper.stop)


def register_commands(app: Flask) -> None:
    @app.cli.command("otp-sweep")
    def otp_sweep():
        """Delete expired one-time codes once (schedule this via cron if the sweeper is disabled)."""
        removed = app.extensions["otp_sweeper"].run_once()
        click.echo(f"Removed {removed} expired OTP(s)")

    @app.cli.command("seed-departments")
    def seed_departments():
        """Insert any missing default departments."""
        from models import Department

        created = Department.seed_defaults()
        click.echo(f"Created {created} department(s)")


def create_app(config_name: Optional[str] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    # Optional instance-specific overrides
    app.config.from_pyfile("config.py", silent=True)

    if app.config.get("PROXY_FIX_X_FOR"):
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=app.config["PROXY_FIX_X_FOR"])

    logger = init_logging(app)
    app.logger = logger

    db.init_app(app)
    migrate.init_app(app, db)
    cors.init_app(
        app,
        resources={r"/api/*": {"origins": app.config["FRONTEND_URL"]}},
        supports_credentials=True,
    )
    init_authentication(app)
    init_services(app)

    from routes import auth_bp, complaints_bp, main_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp, url_prefix="/api")
    app.register_blueprint(complaints_bp, url_prefix="/api")

    register_error_handlers(app)
    register_commands(app)

    @app.before_request
    def _before_request() -> None:
        if request.path.startswith("/api/") and request.method != "OPTIONS":
            enforce_rate_limit("general")

    @app.after_request
    def _after_request(response):
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    # Ensure tables exist so first run creates the database structure automatically.
    with app.app_context():
        from models import Department

        db.create_all()
        Department.seed_defaults()

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port, use_reloader=False)
