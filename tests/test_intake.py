"""Tests for application intake: service and public routes."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError

from membership.intake.service import DUPLICATE_EMAIL_MESSAGE, ApplicationIntake
from membership.models import STATUS_PENDING, Application, AuditLog, User
from membership.outcomes import CONFLICT, INTERNAL
from tests.conftest import _login, _make_application, _make_user

_COMMUNITY = {
    "name": "Jana Novakova",
    "email": "jana@test.com",
    "desired_tier": "community",
    "gdpr_consent": True,
}

_SUPPORTER = {
    **_COMMUNITY,
    "desired_tier": "supporter",
    "phone_number": "+420 123 456 789",
    "motivation": "I want to help with local events.",
    "supporter_statutes_consent": True,
    "city": "Brno",
}

_MEMBER = {
    **_COMMUNITY,
    "desired_tier": "member",
    "phone_number": "+420 123 456 789",
    "motivation": "I share the programme and want to run for the council.",
    "party_statutes_consent": True,
    "no_other_party_membership": True,
    "full_address": "Main Street 1, 602 00 Brno",
    "date_of_birth": "1990-12-31",
    "profession": "Teacher",
}


@pytest.fixture()
def intake(db):
    return ApplicationIntake(db.session)


# ── Service ────────────────────────────────────────────────────────


def test_submit_creates_user_and_pending_application(intake):
    outcome = intake.submit(
        "  Jana Novakova ", " Jana@Test.COM ", "supporter", motivation="Help", intake_data={"city": "Brno"}
    )

    assert outcome.ok
    application = outcome.application
    assert application.status == STATUS_PENDING
    assert application.desired_tier == "supporter"
    assert application.intake_data == {"city": "Brno"}
    user = User.query.filter_by(email="jana@test.com").one()
    assert user.name == "Jana Novakova"
    assert user.password_hash is None
    assert user.roles == []
    assert application.user_id == user.id
    assert AuditLog.query.filter_by(action="application_submitted", target_id=application.id).count() == 1


def test_submit_duplicate_email_is_conflict(intake):
    _make_user(email="jana@test.com")

    outcome = intake.submit("Jana", "JANA@test.com", "community")

    assert outcome.error == CONFLICT
    assert outcome.message == DUPLICATE_EMAIL_MESSAGE
    assert Application.query.count() == 0


def test_submit_unique_violation_at_insert_is_conflict(intake, monkeypatch):
    def _race(*args, **kwargs):
        raise IntegrityError("INSERT INTO users", {}, Exception("UNIQUE constraint failed: users.email"))

    monkeypatch.setattr("membership.intake.service.log_event", _race)

    outcome = intake.submit("Jana", "jana@test.com", "community")

    assert outcome.error == CONFLICT
    assert User.query.count() == 0


def test_submit_postgres_unique_violation_code_is_conflict(intake, monkeypatch):
    class _PgError(Exception):
        pgcode = "23505"

    def _race(*args, **kwargs):
        raise IntegrityError("INSERT INTO users", {}, _PgError("ERROR: violates ix_users_email"))

    monkeypatch.setattr("membership.intake.service.log_event", _race)

    outcome = intake.submit("Jana", "jana@test.com", "community")

    assert outcome.error == CONFLICT
    assert outcome.message == DUPLICATE_EMAIL_MESSAGE


def test_submit_other_integrity_error_is_internal(intake, monkeypatch):
    def _broken(*args, **kwargs):
        raise IntegrityError("INSERT", {}, Exception("CHECK constraint failed: ck_applications_status"))

    monkeypatch.setattr("membership.intake.service.log_event", _broken)

    outcome = intake.submit("Jana", "jana@test.com", "community")

    assert outcome.error == INTERNAL
    assert "server error" in outcome.message
    assert User.query.count() == 0
    assert Application.query.count() == 0


def test_submit_unknown_tier_raises(intake):
    with pytest.raises(ValueError):
        intake.submit("Jana", "jana@test.com", "patron")


def test_submit_notifies_after_commit(db):
    notifier = MagicMock()
    outcome = ApplicationIntake(db.session, notifier=notifier).submit("Jana", "jana@test.com", "community")

    notifier.received.assert_called_once_with(outcome.application)


def test_submit_survives_notifier_failure(db):
    notifier = MagicMock()
    notifier.received.side_effect = RuntimeError("mail down")

    outcome = ApplicationIntake(db.session, notifier=notifier).submit("Jana", "jana@test.com", "community")

    assert outcome.ok
    assert Application.query.count() == 1


# ── POST /applications ─────────────────────────────────────────────


def test_post_community_application(client, db):
    rv = client.post("/applications", json=_COMMUNITY)

    assert rv.status_code == 201
    data = rv.get_json()
    assert data["status"] == "pending"
    assert data["desired_tier"] == "community"
    application = Application.query.one()
    assert application.intake_data is None


def test_post_member_application_stores_tier_fields(client, db):
    rv = client.post("/applications", json=_MEMBER)

    assert rv.status_code == 201
    application = Application.query.one()
    assert application.intake_data == {
        "full_address": "Main Street 1, 602 00 Brno",
        "date_of_birth": "1990-12-31",
        "profession": "Teacher",
    }
    assert application.user.phone_number == "+420 123 456 789"


def test_post_supporter_ignores_member_fields(client, db):
    rv = client.post("/applications", json={**_SUPPORTER, "full_address": "Somewhere 5"})

    assert rv.status_code == 201
    assert Application.query.one().intake_data == {"city": "Brno"}


def test_post_requires_gdpr_consent(client, db):
    rv = client.post("/applications", json={**_COMMUNITY, "gdpr_consent": False})

    assert rv.status_code == 400
    data = rv.get_json()
    assert data["status_code"] == 400
    assert data["path"] == "/applications"
    assert "gdpr_consent" in data["errors"]
    assert Application.query.count() == 0


@pytest.mark.parametrize("missing", ["phone_number", "motivation", "city", "supporter_statutes_consent"])
def test_post_supporter_requires_tier_fields(client, db, missing):
    body = {k: v for k, v in _SUPPORTER.items() if k != missing}

    rv = client.post("/applications", json=body)

    assert rv.status_code == 400
    assert missing in rv.get_json()["errors"]


@pytest.mark.parametrize(
    "missing",
    ["full_address", "date_of_birth", "party_statutes_consent", "no_other_party_membership"],
)
def test_post_member_requires_tier_fields(client, db, missing):
    body = {k: v for k, v in _MEMBER.items() if k != missing}

    rv = client.post("/applications", json=body)

    assert rv.status_code == 400
    assert missing in rv.get_json()["errors"]


def test_post_member_rejects_bad_birth_date(client, db):
    rv = client.post("/applications", json={**_MEMBER, "date_of_birth": "31/12/1990"})

    assert rv.status_code == 400
    assert "date_of_birth" in rv.get_json()["errors"]


def test_post_rejects_unknown_tier(client, db):
    rv = client.post("/applications", json={**_COMMUNITY, "desired_tier": "patron"})

    assert rv.status_code == 400
    assert "desired_tier" in rv.get_json()["errors"]


def test_post_rejects_invalid_email(client, db):
    rv = client.post("/applications", json={**_COMMUNITY, "email": "not-an-email"})

    assert rv.status_code == 400
    assert "email" in rv.get_json()["errors"]


def test_post_duplicate_email_is_409(client, db):
    _make_user(email="jana@test.com")

    rv = client.post("/applications", json=_COMMUNITY)

    assert rv.status_code == 409
    assert rv.get_json()["message"] == DUPLICATE_EMAIL_MESSAGE


def test_post_when_submissions_closed(client, app, db, monkeypatch):
    monkeypatch.setitem(app.config, "SUBMISSIONS_ENABLED", False)

    rv = client.post("/applications", json=_COMMUNITY)

    assert rv.status_code == 403
    assert Application.query.count() == 0


# ── GET /applications/me ───────────────────────────────────────────


def test_my_application_requires_login(client, db):
    rv = client.get("/applications/me")

    assert rv.status_code == 401
    assert rv.get_json()["message"] == "Authentication required."


def test_my_application_hides_staff_fields(client, db):
    user = _make_user(email="member@test.com", password="TestPass1")
    _make_application(user=user, tier="member")
    _login(client, "member@test.com", "TestPass1")

    rv = client.get("/applications/me")

    assert rv.status_code == 200
    data = rv.get_json()
    assert data["status"] == "pending"
    assert "decision_notes" not in data
    assert "decided_by" not in data
