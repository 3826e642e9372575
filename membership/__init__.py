import logging
import os
import time
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask, g, jsonify, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_migrate import Migrate, upgrade
from flask_wtf.csrf import CSRFProtect
from sqlalchemy import event

from .config import config_by_name
from .models import db

login_manager = LoginManager()
login_manager.session_protection = "strong"

# In-memory storage, so counters are per process and reset on restart
limiter = Limiter(key_func=get_remote_address)
migrate = Migrate()
csrf = CSRFProtect()


def create_app(config_name=None, overrides=None):
    # Load .env so gunicorn (production) picks up env vars too
    from dotenv import load_dotenv

    load_dotenv(Path(__file__).resolve().parent.parent / ".env")

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    config_cls = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_cls)
    if overrides:
        app.config.update(overrides)
    if hasattr(config_cls, "init_app"):
        config_cls.init_app(app)

    _configure_engine(app)

    if app.config.get("TRUST_PROXY"):
        from werkzeug.middleware.proxy_fix import ProxyFix

        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    _configure_logging(app)

    # Init extensions
    db.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)
    migrate.init_app(app, db, directory=str(Path(__file__).resolve().parent.parent / "migrations"))
    csrf.init_app(app)

    with app.app_context():
        if db.engine.dialect.name == "sqlite":
            event.listen(db.engine, "connect", _enable_sqlite_foreign_keys)

    from .models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        from .errors import error_response

        return error_response(401, "Authentication required.")

    # Register blueprints
    from .auth.routes import auth_bp
    from .intake.routes import intake_bp
    from .review.routes import review_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(intake_bp)
    app.register_blueprint(review_bp, url_prefix="/admin")

    from .errors import register_error_handlers

    register_error_handlers(app)

    @app.before_request
    def start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def log_request(response):
        started = g.pop("request_started", None)
        if started is not None:
            app.logger.info(
                "%s %s %s %.1fms",
                request.method,
                request.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
        return response

    # Security headers
    @app.after_request
    def set_security_headers(response):
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if not app.debug:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
            response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        return response

    if app.config.get("SCHEDULER_ENABLED"):
        from .review.scheduler import init_scheduler

        init_scheduler(app)

    # Health check endpoints
    @app.route("/ping")
    def ping():
        return jsonify(status="ok", timestamp=datetime.now(UTC).isoformat())

    @app.route("/health")
    def health():
        result = {"timestamp": datetime.now(UTC).isoformat()}
        scheduler_ok = _scheduler_health(app, result)

        try:
            db.session.execute(db.text("SELECT 1"))
            result["database"] = {"status": "ok"}
        except Exception:
            app.logger.exception("Health check database check failed.")
            result["database"] = {"status": "error", "error": "unavailable"}

        all_ok = scheduler_ok and result["database"]["status"] == "ok"
        result["status"] = "ok" if all_ok else "degraded"
        return jsonify(result), 200 if all_ok else 503

    # Apply pending Alembic migrations and seed reference data on first run
    with app.app_context():
        upgrade()

        _seed_admin_if_needed(app)

    return app


def _configure_engine(app):
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if not uri.startswith("sqlite") or ":memory:" in uri:
        return
    # Busy timeout bounds how long BEGIN IMMEDIATE waits for a competing writer
    timeout_seconds = max(1, int(app.config.get("DECISION_LOCK_TIMEOUT_MS", 5000))) / 1000
    options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    connect_args = dict(options.get("connect_args") or {})
    connect_args.setdefault("timeout", timeout_seconds)
    connect_args.setdefault("check_same_thread", False)
    options["connect_args"] = connect_args
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = options


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _scheduler_health(app, result):
    """Fill ``result["scheduler"]``; return False when the scheduler looks unhealthy."""
    scheduler = getattr(app, "scheduler", None)
    if scheduler is None:
        result["scheduler"] = {"running": False, "reason": "disabled"}
        return True

    try:
        running = bool(scheduler.running)
        jobs = [
            {"id": job.id, "next_run": job.next_run_time.isoformat() if job.next_run_time else None}
            for job in scheduler.get_jobs()
        ]
    except Exception:
        app.logger.exception("Health check scheduler check failed.")
        result["scheduler"] = {"running": False, "reason": "check_failed"}
        return False

    threshold = int(app.config.get("SCHEDULER_MAX_CONSECUTIVE_FAILURES", 3))
    state = getattr(app, "scheduler_state", None) or {}
    failing_jobs = sorted(
        job_id
        for job_id, entry in state.get("jobs", {}).items()
        if int(entry.get("consecutive_failures", 0)) >= threshold
    )
    result["scheduler"] = {"running": running, "jobs": jobs, "failing_jobs": failing_jobs}
    return running and not failing_jobs


def _configure_logging(app):
    """Set up file-based logging with rotation outside debug and testing."""
    if app.debug or app.testing:
        return

    log_dir = Path(app.root_path).parent / "logs"
    log_dir.mkdir(exist_ok=True)

    file_handler = RotatingFileHandler(
        log_dir / "membership.log",
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=5,
    )
    file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    file_handler.setLevel(logging.INFO)
    app.logger.addHandler(file_handler)
    app.logger.setLevel(logging.INFO)


def _seed_admin_if_needed(app):
    import secrets

    from .models import ROLE_ADMIN, Role, User

    created = Role.ensure_defaults()
    if created:
        app.logger.info("Seeded %d reference roles", created)

    admin_role = Role.query.filter_by(slug=ROLE_ADMIN).first()
    if admin_role.users:
        return

    admin_email = os.environ.get("ADMIN_EMAIL", "admin@example.org").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD")
    generated = False
    if not admin_password:
        admin_password = secrets.token_urlsafe(16)
        generated = True

    admin = User.query.filter_by(email=admin_email).first()
    if admin is None:
        admin = User(email=admin_email, name="Administrator")
        db.session.add(admin)
    admin.set_password(admin_password, rounds=app.config.get("BCRYPT_ROUNDS", 13))
    admin.grant_role(admin_role)
    db.session.commit()
    app.logger.info("Default admin account created: %s", admin_email)
    if generated:
        app.logger.warning(
            "ADMIN_PASSWORD not set -- a random password was generated. Set ADMIN_PASSWORD env var before deploying."
        )
        pw_file = Path(app.instance_path) / ".admin_password"
        pw_file.parent.mkdir(parents=True, exist_ok=True)
        pw_file.write_text(f"Email:    {admin_email}\nPassword: {admin_password}\n")
        pw_file.chmod(0o600)
        app.logger.info("Generated admin credentials written to %s", pw_file)
