"""Tests for /ping, /health and app-wide response behaviour."""


def _fake_scheduler(job_id, running=True):
    class _DummyJob:
        id = job_id
        next_run_time = None

    class _DummyScheduler:
        @staticmethod
        def get_jobs():
            return [_DummyJob()]

    scheduler = _DummyScheduler()
    scheduler.running = running
    return scheduler


def _job_state(job_id, failures):
    return {
        "updated_at": "2026-10-01T00:00:00+00:00",
        "jobs": {
            job_id: {
                "last_status": "error" if failures else "ok",
                "last_run_at": "2026-10-01T00:00:00+00:00",
                "last_error": "smtp timeout" if failures else None,
                "consecutive_failures": failures,
            }
        },
    }


def test_sqlite_foreign_keys_enabled(app, db):
    assert db.session.execute(db.text("PRAGMA foreign_keys")).scalar() == 1


def test_ping(client):
    rv = client.get("/ping")

    assert rv.status_code == 200
    assert rv.content_type.startswith("application/json")
    assert rv.get_json()["status"] == "ok"


def test_health_ok_with_scheduler_disabled(client):
    rv = client.get("/health")

    assert rv.status_code == 200
    data = rv.get_json()
    assert data["status"] == "ok"
    assert data["database"]["status"] == "ok"
    assert data["scheduler"] == {"running": False, "reason": "disabled"}


def test_health_database_error_is_sanitized(client, db, monkeypatch):
    def _raise_db_error(*args, **kwargs):
        raise RuntimeError("postgresql://user:secret@db/members is unreachable")

    monkeypatch.setattr(db.session, "execute", _raise_db_error)

    rv = client.get("/health")

    assert rv.status_code == 503
    data = rv.get_json()
    assert data["database"] == {"status": "error", "error": "unavailable"}
    assert "secret" not in rv.get_data(as_text=True)


def test_health_reports_failing_reminder_job(app, client, monkeypatch):
    monkeypatch.setitem(app.config, "SCHEDULER_MAX_CONSECUTIVE_FAILURES", 3)
    monkeypatch.setattr(app, "scheduler", _fake_scheduler("send_call_reminders"), raising=False)
    monkeypatch.setattr(app, "scheduler_state", _job_state("send_call_reminders", 3), raising=False)

    rv = client.get("/health")

    assert rv.status_code == 503
    data = rv.get_json()
    assert data["status"] == "degraded"
    assert data["scheduler"]["failing_jobs"] == ["send_call_reminders"]


def test_health_tolerates_failures_below_threshold(app, client, monkeypatch):
    monkeypatch.setitem(app.config, "SCHEDULER_MAX_CONSECUTIVE_FAILURES", 3)
    monkeypatch.setattr(app, "scheduler", _fake_scheduler("send_call_reminders"), raising=False)
    monkeypatch.setattr(app, "scheduler_state", _job_state("send_call_reminders", 2), raising=False)

    rv = client.get("/health")

    assert rv.status_code == 200
    data = rv.get_json()
    assert data["scheduler"]["running"] is True
    assert data["scheduler"]["jobs"] == [{"id": "send_call_reminders", "next_run": None}]
    assert data["scheduler"]["failing_jobs"] == []


def test_health_stopped_scheduler_is_degraded(app, client, monkeypatch):
    monkeypatch.setattr(app, "scheduler", _fake_scheduler("send_call_reminders", running=False), raising=False)
    monkeypatch.setattr(app, "scheduler_state", _job_state("send_call_reminders", 0), raising=False)

    rv = client.get("/health")

    assert rv.status_code == 503


def test_health_scheduler_check_failure_is_sanitized(app, client, monkeypatch):
    class _BrokenScheduler:
        @property
        def running(self):
            raise RuntimeError("scheduler state crash")

    monkeypatch.setattr(app, "scheduler", _BrokenScheduler(), raising=False)

    rv = client.get("/health")

    assert rv.status_code == 503
    data = rv.get_json()
    assert data["scheduler"] == {"running": False, "reason": "check_failed"}


# ── Cross-cutting response behaviour ───────────────────────────────


def test_security_headers(client):
    rv = client.get("/ping")

    assert rv.headers["X-Content-Type-Options"] == "nosniff"
    assert rv.headers["X-Frame-Options"] == "DENY"
    assert rv.headers["Cache-Control"] == "no-store"
    assert "default-src 'none'" in rv.headers["Content-Security-Policy"]


def test_unknown_route_is_json_404(client):
    rv = client.get("/no-such-page")

    assert rv.status_code == 404
    data = rv.get_json()
    assert data["status_code"] == 404
    assert data["path"] == "/no-such-page"


def test_wrong_method_is_json_405(client):
    rv = client.get("/login")

    assert rv.status_code == 405
    assert rv.get_json()["status_code"] == 405
