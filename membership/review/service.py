import logging
from datetime import UTC, datetime

from flask import current_app
from sqlalchemy import func, or_, select
from sqlalchemy.exc import OperationalError

from ..audit import log_event
from ..credentials import CredentialIssuer
from ..models import (
    STATUS_APPROVED,
    STATUS_CALL_SCHEDULED,
    STATUS_DECLINED,
    TERMINAL_STATUSES,
    Application,
    Role,
    User,
    db,
)
from ..outcomes import (
    CONFIGURATION,
    INTERNAL,
    LOCKED,
    ApplicationNotFound,
    InvalidTransition,
    Outcome,
    RoleNotConfigured,
    WorkflowError,
)
from ..transaction import is_lock_error, lock_row, write_transaction

MAX_PER_PAGE = 100

_VERBS = {
    "schedule_call": "schedule a call for",
    "approve": "approve",
    "decline": "decline",
    "reissue_credentials": "reissue credentials for",
}


def _utcnow():
    return datetime.now(UTC)


def _as_utc(value):
    if not isinstance(value, datetime):
        raise TypeError(f"call time must be a datetime, got {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _name_or_email_matches(search):
    pattern = f"%{search.strip()}%"
    return or_(User.name.ilike(pattern), User.email.ilike(pattern))


def _paginate(session, query, order_by, page, per_page):
    page = max(1, int(page))
    per_page = min(max(1, int(per_page)), MAX_PER_PAGE)
    total = session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
    items = (
        session.execute(query.order_by(*order_by).limit(per_page).offset((page - 1) * per_page))
        .scalars()
        .all()
    )
    return items, total


def list_users(session, role=None, search=None, page=1, per_page=10):
    """Staff view of accounts: ``(items, total)`` newest first.

    *role* keeps only holders of that role slug; *search* matches name or
    email case-insensitively.
    """
    query = select(User)
    if role:
        query = query.where(User.roles.any(Role.slug == role))
    if search:
        query = query.where(_name_or_email_matches(search))
    return _paginate(session, query, (User.created_at.desc(), User.id.desc()), page, per_page)


def _clean_notes(notes):
    if notes is None:
        return None
    notes = notes.strip()
    return notes or None


class DecisionWorkflow:
    """Staff-driven state machine over a membership application.

    Each transition runs as one write transaction holding a row lock on the
    application: the row is read for update, preconditions are checked
    against the locked copy, and every side effect (status, role grant,
    credential hash, audit entry) commits together or not at all. A second
    staff member deciding the same application blocks on the lock, then
    sees the committed decision and gets ``invalid_state``.

    Notifications run after commit and are best-effort: a failed send is
    logged and audited but never changes the outcome.
    """

    def __init__(self, session, credential_issuer, notifier=None, logger=None, lock_timeout_ms=5000):
        self.session = session
        self.credential_issuer = credential_issuer
        self.notifier = notifier
        self.logger = logger or logging.getLogger(__name__)
        self.lock_timeout_ms = lock_timeout_ms

    # ── Transitions ────────────────────────────────────────────────

    def schedule_call(self, application_id, call_time, acting_staff_id):
        def apply(application):
            self._require_transition(application, STATUS_CALL_SCHEDULED, "schedule_call")
            scheduled_at = _as_utc(call_time)
            application.status = STATUS_CALL_SCHEDULED
            application.call_scheduled_at = scheduled_at
            application.call_scheduled_by = acting_staff_id
            application.call_reminder_sent = False
            log_event(
                "application_call_scheduled",
                target_type="application",
                target_id=application.id,
                detail=f"Call scheduled for {scheduled_at.strftime('%Y-%m-%d %H:%M UTC')}",
                user_id=acting_staff_id,
                commit=False,
                session=self.session,
            )

        outcome = self._run("schedule_call", application_id, acting_staff_id, apply)
        if outcome.ok:
            self._notify("call_scheduled", outcome.application)
        return outcome

    def approve(self, application_id, acting_staff_id, decision_notes=None):
        issued = {}

        def apply(application):
            self._require_transition(application, STATUS_APPROVED, "approve")
            user = self._load_applicant(application)

            application.status = STATUS_APPROVED
            application.decided_by = acting_staff_id
            application.decided_at = _utcnow()
            application.decision_notes = _clean_notes(decision_notes)

            slug = application.role_slug
            role = self.session.execute(select(Role).where(Role.slug == slug)).scalar_one_or_none()
            if role is None:
                raise RoleNotConfigured(f"Role with slug {slug!r} not found during approval.")
            self.logger.debug("[App %s] Granting role %s to user %s", application.id, slug, user.id)
            user.grant_role(role)

            issued["password"] = self.credential_issuer.issue(user)
            log_event(
                "application_approved",
                target_type="application",
                target_id=application.id,
                detail=f"Approved as {application.desired_tier}; granted role {slug}",
                user_id=acting_staff_id,
                commit=False,
                session=self.session,
            )

        outcome = self._run("approve", application_id, acting_staff_id, apply)
        if outcome.ok:
            outcome.temporary_password = issued["password"]
            self._notify("welcome", outcome.application, issued["password"])
        return outcome

    def decline(self, application_id, acting_staff_id, decision_notes=None):
        def apply(application):
            self._require_transition(application, STATUS_DECLINED, "decline")
            application.status = STATUS_DECLINED
            application.decided_by = acting_staff_id
            application.decided_at = _utcnow()
            application.decision_notes = _clean_notes(decision_notes)
            log_event(
                "application_declined",
                target_type="application",
                target_id=application.id,
                user_id=acting_staff_id,
                commit=False,
                session=self.session,
            )

        return self._run("decline", application_id, acting_staff_id, apply)

    def reissue_credentials(self, application_id, acting_staff_id):
        """Replace the temporary password of an approved applicant."""
        issued = {}

        def apply(application):
            if application.status != STATUS_APPROVED:
                raise InvalidTransition(
                    f"Credentials can only be reissued for approved applications (status: {application.status})"
                )
            user = self._load_applicant(application)
            issued["password"] = self.credential_issuer.issue(user)
            log_event(
                "application_credentials_reissued",
                target_type="application",
                target_id=application.id,
                user_id=acting_staff_id,
                commit=False,
                session=self.session,
            )

        outcome = self._run("reissue_credentials", application_id, acting_staff_id, apply)
        if outcome.ok:
            outcome.temporary_password = issued["password"]
            self._notify("welcome", outcome.application, issued["password"])
        return outcome

    # ── Read side ──────────────────────────────────────────────────

    def get(self, application_id):
        return self.session.get(Application, application_id)

    def list_applications(self, status=None, tier=None, search=None, page=1, per_page=10):
        """Return ``(items, total)`` newest first, optionally filtered."""
        query = select(Application).join(Application.user)
        if status:
            query = query.where(Application.status == status)
        if tier:
            query = query.where(Application.desired_tier == tier)
        if search:
            query = query.where(_name_or_email_matches(search))
        return _paginate(self.session, query, (Application.created_at.desc(), Application.id.desc()), page, per_page)

    # ── Internals ──────────────────────────────────────────────────

    def _require_transition(self, application, target, operation):
        if application.can_transition_to(target):
            return
        if application.status in TERMINAL_STATUSES:
            raise InvalidTransition(f"Application has already been processed (status: {application.status})")
        raise InvalidTransition(f"Cannot {_VERBS[operation]} application with status: {application.status}")

    def _load_applicant(self, application):
        user = self.session.get(User, application.user_id, populate_existing=True)
        if user is None:
            raise WorkflowError(f"User {application.user_id} linked to application {application.id} not found")
        return user

    def _run(self, operation, application_id, acting_staff_id, apply):
        try:
            with write_transaction(self.session, self.lock_timeout_ms):
                application = lock_row(self.session, Application, application_id)
                if application is None:
                    raise ApplicationNotFound(f"Application with ID {application_id} not found")
                apply(application)
        except WorkflowError as exc:
            if exc.kind in (INTERNAL, CONFIGURATION):
                # Details stay in the log; the caller gets an opaque message
                self.logger.error("Failed to %s application %s: %s", _VERBS[operation], application_id, exc.message)
                return Outcome.failure(exc.kind, f"Failed to {_VERBS[operation]} application.")
            self.logger.warning("%s rejected for application %s: %s", operation, application_id, exc.message)
            return Outcome.failure(exc.kind, exc.message)
        except OperationalError as exc:
            if is_lock_error(exc):
                self.logger.warning("%s timed out waiting for the lock on application %s", operation, application_id)
                return Outcome.failure(
                    LOCKED,
                    "The application is being processed by another staff member. Please try again in a moment.",
                )
            self.logger.exception("Failed to %s application %s", _VERBS[operation], application_id)
            return Outcome.failure(INTERNAL, f"Failed to {_VERBS[operation]} application.")
        except Exception:
            # Callers always get an outcome
            self.logger.exception("Failed to %s application %s", _VERBS[operation], application_id)
            return Outcome.failure(INTERNAL, f"Failed to {_VERBS[operation]} application.")

        self.logger.info("Application %s: %s by staff %s", application_id, operation, acting_staff_id)
        return Outcome.success(application)

    def _notify(self, event, application, *args):
        if self.notifier is None:
            return
        try:
            sent = getattr(self.notifier, event)(application, *args)
        except Exception:
            # Transition is already committed
            self.logger.exception("Notification %s failed for application %s", event, application.id)
            sent = False
        if sent is False:
            self.logger.warning("Notification %s was not delivered for application %s", event, application.id)
            try:
                log_event(
                    f"{event}_email_failed",
                    target_type="application",
                    target_id=application.id,
                    session=self.session,
                    commit=True,
                )
            except Exception:
                self.session.rollback()
                self.logger.exception("Could not audit failed notification for application %s", application.id)


def build_workflow(notifier=None):
    """Construct the workflow from the current app's configuration."""
    config = current_app.config
    if notifier is None and config.get("APPLICANT_EMAILS_ENABLED"):
        from ..email_service import ApplicantNotifier

        notifier = ApplicantNotifier(welcome_enabled=config.get("WELCOME_EMAIL_ENABLED", False))
    return DecisionWorkflow(
        db.session,
        CredentialIssuer.from_config(config),
        notifier=notifier,
        logger=current_app.logger,
        lock_timeout_ms=int(config.get("DECISION_LOCK_TIMEOUT_MS", 5000)),
    )
