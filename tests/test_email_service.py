"""Tests for applicant email delivery through Brevo."""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from membership import email_service
from membership.email_service import ApplicantNotifier
from tests.conftest import _make_application, _make_user


@pytest.fixture()
def brevo(app, monkeypatch):
    monkeypatch.setitem(app.config, "BREVO_API_KEY", "test-key")
    with patch("membership.email_service.httpx.post") as mock_post:
        mock_post.return_value = MagicMock(raise_for_status=MagicMock())
        yield mock_post


def _html(mock_post):
    return mock_post.call_args.kwargs["json"]["htmlContent"]


def test_send_skipped_without_api_key(db):
    application = _make_application()

    with patch("membership.email_service.httpx.post") as mock_post:
        assert email_service.send_application_received(application, application.user) is False
    mock_post.assert_not_called()


def test_send_posts_to_brevo(brevo, db):
    application = _make_application(tier="supporter")

    assert email_service.send_application_received(application, application.user) is True

    url = brevo.call_args.args[0]
    payload = brevo.call_args.kwargs["json"]
    assert url == email_service.BREVO_SEND_URL
    assert brevo.call_args.kwargs["headers"]["api-key"] == "test-key"
    assert payload["to"] == [{"email": "applicant@test.com"}]
    assert "supporter" in payload["htmlContent"]


def test_http_error_returns_false(brevo, db):
    brevo.side_effect = httpx.ConnectError("connection refused")
    application = _make_application()

    assert email_service.send_application_received(application, application.user) is False


def test_user_supplied_text_is_escaped(brevo, db):
    user = _make_user(name="<script>alert(1)</script>")
    application = _make_application(user=user)

    email_service.send_application_received(application, user)

    html = _html(brevo)
    assert "<script>" not in html
    assert "&lt;script&gt;" in html


def test_welcome_email_links_to_public_base_url(brevo, app, monkeypatch, db):
    monkeypatch.setitem(app.config, "PUBLIC_BASE_URL", "https://members.example.org/some/path")
    user = _make_user()

    assert email_service.send_welcome_email(user, "abcDEF-123ghi-JKL456") is True

    html = _html(brevo)
    assert 'href="https://members.example.org/login"' in html
    assert "abcDEF-123ghi-JKL456" in html


def test_invalid_public_base_url_falls_back(brevo, app, monkeypatch, db):
    monkeypatch.setitem(app.config, "PUBLIC_BASE_URL", "javascript:alert(1)")
    user = _make_user()

    email_service.send_welcome_email(user, "abcDEF-123ghi-JKL456")

    assert f'href="{email_service.FALLBACK_BASE_URL}/login"' in _html(brevo)


def test_staff_notification_counts_sent(brevo, db):
    application = _make_application()

    sent = email_service.send_staff_new_application(application, application.user, ["a@test.com", "b@test.com"])

    assert sent == 2
    assert brevo.call_count == 2


# ── ApplicantNotifier ──────────────────────────────────────────────


def test_welcome_disabled_returns_none(db):
    application = _make_application(status="approved")

    with patch("membership.email_service.send_welcome_email") as mock_send:
        assert ApplicantNotifier().welcome(application, "secret") is None
    mock_send.assert_not_called()


def test_welcome_enabled_sends(db):
    application = _make_application(status="approved")

    with patch("membership.email_service.send_welcome_email", return_value=True) as mock_send:
        assert ApplicantNotifier(welcome_enabled=True).welcome(application, "secret") is True
    mock_send.assert_called_once_with(application.user, "secret")


def test_received_notifies_active_staff(db):
    _make_user(email="staff@test.com", roles=("admin",))
    _make_user(email="former@test.com", roles=("admin",), is_active_account=False)
    application = _make_application()

    with (
        patch("membership.email_service.send_application_received", return_value=True),
        patch("membership.email_service.send_staff_new_application") as mock_staff,
    ):
        assert ApplicantNotifier().received(application) is True

    assert mock_staff.call_args.args[2] == ["staff@test.com"]


def test_received_without_staff_notification(db):
    _make_user(email="staff@test.com", roles=("admin",))
    application = _make_application()

    with (
        patch("membership.email_service.send_application_received", return_value=False),
        patch("membership.email_service.send_staff_new_application") as mock_staff,
    ):
        assert ApplicantNotifier(notify_staff=False).received(application) is False

    mock_staff.assert_not_called()
