from datetime import UTC, datetime
from unittest.mock import patch

import pytest

from membership.models import (
    ROLE_ADMIN,
    STATUS_APPROVED,
    STATUS_CALL_SCHEDULED,
    STATUS_DECLINED,
    STATUS_PENDING,
    Application,
    Role,
    User,
)
from membership.models import db as _db


@pytest.fixture(scope="session")
def app():
    """Create a Flask application configured for testing (session-scoped)."""
    with (
        patch("membership.upgrade"),
        patch("membership._seed_admin_if_needed"),
    ):
        from membership import create_app

        _app = create_app("testing")

    yield _app


@pytest.fixture(autouse=True)
def db(app):
    """Create all tables and reference roles before each test, drop them after."""
    with app.app_context():
        _db.create_all()
        Role.ensure_defaults()
        yield _db
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def client(app):
    """Unauthenticated test client."""
    return app.test_client()


def _make_user(
    email="applicant@test.com",
    password=None,
    name="Test Applicant",
    roles=(),
    is_active_account=True,
):
    """Create and persist a User. Callable multiple times per test."""
    user = User(email=email, name=name, is_active_account=is_active_account)
    if password:
        user.set_password(password, rounds=4)
    for slug in roles:
        user.grant_role(Role.query.filter_by(slug=slug).one())
    _db.session.add(user)
    _db.session.commit()
    return user


def _make_application(user=None, tier="community", status=STATUS_PENDING, decided_by=None, motivation=None):
    """Create and persist an Application in *status*, filling the fields that status requires."""
    if user is None:
        user = _make_user()
    application = Application(user_id=user.id, desired_tier=tier, status=status, motivation=motivation)
    if status == STATUS_CALL_SCHEDULED:
        application.call_scheduled_at = datetime(2030, 1, 15, 10, 0, tzinfo=UTC)
    if status in (STATUS_APPROVED, STATUS_DECLINED):
        application.decided_by = decided_by if decided_by is not None else user.id
        application.decided_at = datetime.now(UTC)
    _db.session.add(application)
    _db.session.commit()
    return application


def _login(client, email="applicant@test.com", password="TestPass1"):
    """Log in via the real /login route and return the response."""
    return client.post("/login", json={"email": email, "password": password})


@pytest.fixture()
def applicant(db):
    """A pending applicant without credentials."""
    return _make_user()


@pytest.fixture()
def admin_user(db):
    """A staff member holding the admin role."""
    return _make_user(
        email="admin@test.com",
        password="AdminPass1",
        name="Test Admin",
        roles=(ROLE_ADMIN,),
    )


@pytest.fixture()
def admin_client(client, admin_user):
    """A test client logged in as an admin."""
    _login(client, admin_user.email, "AdminPass1")
    return client
