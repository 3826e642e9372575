import logging

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..audit import log_event
from ..models import MEMBERSHIP_TIERS, STATUS_PENDING, Application, User, db
from ..outcomes import CONFLICT, INTERNAL, DuplicateApplicant, Outcome
from ..transaction import write_transaction

DUPLICATE_EMAIL_MESSAGE = (
    "An account with this email already exists. Please contact support if you wish to re-apply."
)

PG_UNIQUE_VIOLATION = "23505"

_UNIQUE_MARKERS = ("unique constraint", "duplicate key", "duplicate entry")


def _is_unique_violation(exc):
    # psycopg2 reports the SQLSTATE; SQLite only has the message text
    if getattr(exc.orig, "pgcode", None) == PG_UNIQUE_VIOLATION:
        return True
    return any(marker in str(exc.orig).lower() for marker in _UNIQUE_MARKERS)


def normalize_email(email):
    return (email or "").strip().lower()


class ApplicationIntake:
    """Create the applicant account and its pending application in one transaction."""

    def __init__(self, session, notifier=None, logger=None, lock_timeout_ms=5000):
        self.session = session
        self.notifier = notifier
        self.logger = logger or logging.getLogger(__name__)
        self.lock_timeout_ms = lock_timeout_ms

    def submit(self, name, email, tier, motivation=None, phone_number=None, intake_data=None):
        if tier not in MEMBERSHIP_TIERS:
            raise ValueError(f"Unknown membership tier: {tier!r}")
        email = normalize_email(email)

        try:
            with write_transaction(self.session, self.lock_timeout_ms):
                # The unique index on users.email still guards concurrent inserts
                if self.session.execute(select(User.id).where(User.email == email)).first() is not None:
                    raise DuplicateApplicant(DUPLICATE_EMAIL_MESSAGE)

                user = User(name=name.strip(), email=email, phone_number=(phone_number or "").strip() or None)
                self.session.add(user)
                self.session.flush()

                application = Application(
                    user_id=user.id,
                    desired_tier=tier,
                    status=STATUS_PENDING,
                    motivation=(motivation or "").strip() or None,
                    intake_data=dict(intake_data) if intake_data else None,
                )
                self.session.add(application)
                self.session.flush()

                log_event(
                    "application_submitted",
                    target_type="application",
                    target_id=application.id,
                    detail=f"Applied for tier {tier}",
                    user_id=user.id,
                    commit=False,
                    session=self.session,
                )
        except DuplicateApplicant as exc:
            self.logger.warning("Attempt to create application for existing email: %s", email)
            return Outcome.failure(exc.kind, exc.message)
        except IntegrityError as exc:
            if _is_unique_violation(exc):
                self.logger.warning("Duplicate applicant rejected at insert for email: %s", email)
                return Outcome.failure(CONFLICT, DUPLICATE_EMAIL_MESSAGE)
            self.logger.exception("Failed to create application for email %s", email)
            return Outcome.failure(INTERNAL, "Failed to create application due to a server error.")
        except Exception:
            # Callers always get an outcome
            self.logger.exception("Failed to create application for email %s", email)
            return Outcome.failure(INTERNAL, "Failed to create application due to a server error.")

        self.logger.info("Created application %s for user email: %s", application.id, email)
        self._notify(application)
        return Outcome.success(application)

    def _notify(self, application):
        if self.notifier is None:
            return
        try:
            self.notifier.received(application)
        except Exception:
            # Application is already committed
            self.logger.exception("Confirmation email failed for application %s", application.id)


def build_intake(notifier=None):
    """Construct the intake service from the current app's configuration."""
    config = current_app.config
    if notifier is None and config.get("APPLICANT_EMAILS_ENABLED"):
        from ..email_service import ApplicantNotifier

        notifier = ApplicantNotifier()
    return ApplicationIntake(
        db.session,
        notifier=notifier,
        logger=current_app.logger,
        lock_timeout_ms=int(config.get("DECISION_LOCK_TIMEOUT_MS", 5000)),
    )
