import threading
import time
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.background import BackgroundScheduler
from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from ..transaction import is_lock_error, lock_row, write_transaction


def send_call_reminders():
    """Email applicants whose call is coming up. Returns the number reminded.

    Each reminder runs in its own write transaction holding the application's
    row lock, so an application decided since the due list was read is
    skipped. ``call_reminder_sent`` is set only after a successful send, so a
    failed email is retried on the next run.
    """
    from ..email_service import send_call_reminder
    from ..models import STATUS_CALL_SCHEDULED, Application, db

    config = current_app.config
    hours_before = int(config.get("CALL_REMINDER_HOURS_BEFORE", 24))
    lock_timeout_ms = int(config.get("DECISION_LOCK_TIMEOUT_MS", 5000))
    # Stored timestamps are naive UTC
    now = datetime.now(UTC).replace(tzinfo=None)
    window_end = now + timedelta(hours=hours_before)

    due_ids = (
        db.session.execute(
            select(Application.id)
            .where(
                Application.status == STATUS_CALL_SCHEDULED,
                Application.call_reminder_sent.is_(False),
                Application.call_scheduled_at > now,
                Application.call_scheduled_at <= window_end,
            )
            .order_by(Application.call_scheduled_at)
        )
        .scalars()
        .all()
    )
    # Release the read before taking per-row write locks
    db.session.commit()

    sent = 0
    for application_id in due_ids:
        try:
            with write_transaction(db.session, lock_timeout_ms):
                application = lock_row(db.session, Application, application_id)
                if (
                    application is None
                    or application.status != STATUS_CALL_SCHEDULED
                    or application.call_reminder_sent
                ):
                    current_app.logger.info("Call reminder for application %s no longer due", application_id)
                    continue
                if not send_call_reminder(application, application.user):
                    current_app.logger.warning("Call reminder for application %s was not delivered", application_id)
                    continue
                application.call_reminder_sent = True
        except OperationalError as exc:
            if not is_lock_error(exc):
                raise
            current_app.logger.warning("Call reminder for application %s skipped: row is locked", application_id)
            continue
        sent += 1

    if due_ids:
        current_app.logger.info("Call reminders: %d of %d sent", sent, len(due_ids))
    return sent


def init_scheduler(app):
    scheduler = BackgroundScheduler()
    reminder_interval_minutes = max(1, int(app.config.get("SCHEDULER_REMINDER_INTERVAL_MINUTES", 30)))
    state_lock = threading.Lock()
    app.scheduler_state_lock = state_lock
    app.scheduler_state = {"updated_at": None, "jobs": {}}

    def _record_job_result(job_id, *, status, duration_ms, error=None):
        now = datetime.now(UTC).isoformat()
        with state_lock:
            jobs = app.scheduler_state.setdefault("jobs", {})
            entry = jobs.setdefault(job_id, {"consecutive_failures": 0})
            entry["last_status"] = status
            entry["last_run_at"] = now
            entry["last_duration_ms"] = round(duration_ms, 2)
            if status == "ok":
                entry["last_success_at"] = now
                entry["last_error"] = None
                entry["consecutive_failures"] = 0
            else:
                entry["last_error_at"] = now
                entry["last_error"] = (error or "unknown")[:500]
                entry["consecutive_failures"] = int(entry.get("consecutive_failures", 0)) + 1
            app.scheduler_state["updated_at"] = now

    def _run_job(job_id, fn):
        started = time.perf_counter()
        try:
            fn()
        except Exception:
            # Scheduler jobs must never crash the scheduler thread.
            app.logger.exception("Scheduler job %s crashed.", job_id)
            _record_job_result(
                job_id,
                status="error",
                duration_ms=(time.perf_counter() - started) * 1000,
                error="Unhandled exception",
            )
            return

        duration_ms = (time.perf_counter() - started) * 1000
        _record_job_result(job_id, status="ok", duration_ms=duration_ms)
        app.logger.info("Scheduler job %s completed in %.2f ms.", job_id, duration_ms)

    def run_call_reminders():
        with app.app_context():
            _run_job("send_call_reminders", send_call_reminders)

    scheduler.add_job(
        func=run_call_reminders,
        trigger="interval",
        minutes=reminder_interval_minutes,
        id="send_call_reminders",
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    app.scheduler = scheduler
