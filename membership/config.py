import os
from pathlib import Path
from urllib.parse import urlparse

BASE_DIR = Path(__file__).resolve().parent.parent


def _flag(name, default="false"):
    return os.environ.get(name, default).lower() == "true"


def _database_url():
    url = os.environ.get("DATABASE_URL", f"sqlite:///{BASE_DIR / 'membership.db'}")
    # Heroku-style URLs are rejected by SQLAlchemy 1.4+
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    return url


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY") or os.urandom(32).hex()
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # 1 MB, JSON bodies only

    # Decision workflow
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "13"))
    TEMP_PASSWORD_SEGMENTS = int(os.environ.get("TEMP_PASSWORD_SEGMENTS", "3"))
    TEMP_PASSWORD_SEGMENT_LENGTH = int(os.environ.get("TEMP_PASSWORD_SEGMENT_LENGTH", "6"))
    DECISION_LOCK_TIMEOUT_MS = int(os.environ.get("DECISION_LOCK_TIMEOUT_MS", "5000"))
    SUBMISSIONS_ENABLED = _flag("SUBMISSIONS_ENABLED", "true")

    # Security
    MAX_FAILED_LOGINS = int(os.environ.get("MAX_FAILED_LOGINS", "5"))
    ACCOUNT_LOCKOUT_MINUTES = int(os.environ.get("ACCOUNT_LOCKOUT_MINUTES", "15"))
    TRUST_PROXY = _flag("TRUST_PROXY")

    # Rate limiting
    RATELIMIT_DEFAULT = os.environ.get("RATELIMIT_DEFAULT", "200 per hour")
    RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "memory://")

    # Email (Brevo HTTP API)
    BREVO_API_KEY = os.environ.get("BREVO_API_KEY", "")
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", "membership@example.org")
    MAIL_DEFAULT_SENDER_NAME = os.environ.get("MAIL_DEFAULT_SENDER_NAME", "Membership Desk")
    APPLICANT_EMAILS_ENABLED = _flag("APPLICANT_EMAILS_ENABLED", "true")
    WELCOME_EMAIL_ENABLED = _flag("WELCOME_EMAIL_ENABLED")

    # Branding
    ORGANIZATION_NAME = os.environ.get("ORGANIZATION_NAME", "the organization")
    PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "http://localhost:8080")

    # Session
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SECURE = False
    SESSION_COOKIE_SAMESITE = "Lax"
    PERMANENT_SESSION_LIFETIME = 3600 * 8  # 8 hours
    REMEMBER_COOKIE_DURATION = 3600 * 24 * 14  # 14 days
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SECURE = False  # overridden in production
    REMEMBER_COOKIE_SAMESITE = "Lax"

    # Scheduler
    SCHEDULER_ENABLED = _flag("SCHEDULER_ENABLED", "true")
    SCHEDULER_REMINDER_INTERVAL_MINUTES = int(os.environ.get("SCHEDULER_REMINDER_INTERVAL_MINUTES", "30"))
    CALL_REMINDER_HOURS_BEFORE = int(os.environ.get("CALL_REMINDER_HOURS_BEFORE", "24"))
    SCHEDULER_MAX_CONSECUTIVE_FAILURES = int(os.environ.get("SCHEDULER_MAX_CONSECUTIVE_FAILURES", "3"))


class DevelopmentConfig(Config):
    DEBUG = True

    @classmethod
    def init_app(cls, app):
        if not os.environ.get("SECRET_KEY"):
            app.logger.warning("SECRET_KEY not set, using an ephemeral key. Sessions will not survive restarts.")


class ProductionConfig(Config):
    DEBUG = False
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    TRUST_PROXY = _flag("TRUST_PROXY", "true")

    @classmethod
    def init_app(cls, app):
        secret_key = os.environ.get("SECRET_KEY", "").strip()
        if not secret_key:
            raise RuntimeError("SECRET_KEY environment variable must be set in production")
        if len(secret_key) < 32:
            raise RuntimeError(
                "SECRET_KEY is too short for production (minimum 32 characters). "
                'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
            )
        lowered_secret = secret_key.lower()
        weak_markers = ("changeme", "change-this", "replace", "secret", "example", "default")
        if any(marker in lowered_secret for marker in weak_markers):
            raise RuntimeError(
                "SECRET_KEY appears to be a placeholder and is not allowed in production. "
                'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
            )

        base_url = os.environ.get("PUBLIC_BASE_URL", "").strip()
        parsed = urlparse(base_url)
        if parsed.scheme != "https" or not parsed.netloc:
            raise RuntimeError(
                "PUBLIC_BASE_URL must be set to a valid https:// URL in production (e.g. https://members.example.org)."
            )

        # The reminder job runs in-process and limiter counters live in memory;
        # a second worker would send duplicate reminders and split the counters.
        web_concurrency = os.environ.get("WEB_CONCURRENCY")
        if web_concurrency:
            try:
                worker_count = int(web_concurrency)
            except ValueError as exc:
                raise RuntimeError("WEB_CONCURRENCY must be an integer when set.") from exc
            if worker_count <= 0:
                raise RuntimeError("WEB_CONCURRENCY must be at least 1 when set.")
        else:
            worker_count = 1

        if worker_count > 1:
            raise RuntimeError(
                f"WEB_CONCURRENCY is set to {web_concurrency} but this application "
                "requires a single worker (in-process scheduler + in-memory rate limiting). "
                "Set WEB_CONCURRENCY=1 or remove it."
            )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    RATELIMIT_ENABLED = False
    SCHEDULER_ENABLED = False
    APPLICANT_EMAILS_ENABLED = False
    WELCOME_EMAIL_ENABLED = False
    SUBMISSIONS_ENABLED = True
    BREVO_API_KEY = ""
    BCRYPT_ROUNDS = 4
    SERVER_NAME = "localhost"
    SECRET_KEY = "testing-secret-key"


config_by_name = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}
