from urllib.parse import urlparse

import httpx
from flask import current_app
from markupsafe import escape

BREVO_SEND_URL = "https://api.brevo.com/v3/smtp/email"
FALLBACK_BASE_URL = "http://localhost:8080"


def _public_base_url():
    raw = str(current_app.config.get("PUBLIC_BASE_URL", "")).strip().rstrip("/")
    parsed = urlparse(raw)
    if parsed.scheme in {"http", "https"} and parsed.netloc:
        return f"{parsed.scheme}://{parsed.netloc}"
    current_app.logger.warning("Invalid PUBLIC_BASE_URL %r; links will use %s.", raw, FALLBACK_BASE_URL)
    return FALLBACK_BASE_URL


def _send_email(subject, recipient, html_body):
    """Send one email through Brevo. Returns True on success, False otherwise."""
    brevo_key = current_app.config.get("BREVO_API_KEY")
    sender = current_app.config.get("MAIL_DEFAULT_SENDER")
    sender_name = current_app.config.get("MAIL_DEFAULT_SENDER_NAME")
    if not brevo_key:
        current_app.logger.debug("Email skipped (BREVO_API_KEY not configured): %s", subject)
        return False
    try:
        resp = httpx.post(
            BREVO_SEND_URL,
            headers={
                "api-key": brevo_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            json={
                "sender": {"name": sender_name, "email": sender},
                "to": [{"email": recipient}],
                "subject": subject,
                "htmlContent": html_body,
            },
            timeout=15,
        )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        current_app.logger.error("Failed to send email to %s: %s", recipient, e)
        return False
    return True


def _org_name():
    return current_app.config.get("ORGANIZATION_NAME", "the organization")


def _signature():
    return f"<p>Kind regards,<br>{escape(_org_name())}</p>"


def send_application_received(application, user):
    return _send_email(
        subject=f"Application Received: {_org_name()}",
        recipient=user.email,
        html_body=(
            f"<p>Dear {escape(user.name)},</p>"
            f"<p>Thank you for applying to join {escape(_org_name())} as a "
            f"<strong>{escape(application.desired_tier)}</strong>. "
            f"Your application has been received and is under review.</p>"
            f"{_signature()}"
        ),
    )


def send_call_scheduled(application, user):
    when = application.call_scheduled_at.strftime("%Y-%m-%d %H:%M UTC")
    return _send_email(
        subject="Your Introductory Call Has Been Scheduled",
        recipient=user.email,
        html_body=(
            f"<p>Dear {escape(user.name)},</p>"
            f"<p>We would like to get to know you before deciding on your application. "
            f"A call has been scheduled for <strong>{when}</strong>.</p>"
            f"{_signature()}"
        ),
    )


def send_call_reminder(application, user):
    when = application.call_scheduled_at.strftime("%Y-%m-%d %H:%M UTC")
    return _send_email(
        subject="Reminder: Your Call Is Coming Up",
        recipient=user.email,
        html_body=(
            f"<p>Dear {escape(user.name)},</p>"
            f"<p>This is a reminder of your call with {escape(_org_name())} at <strong>{when}</strong>.</p>"
            f"{_signature()}"
        ),
    )


def send_welcome_email(user, temporary_password):
    login_url = f"{_public_base_url()}/login"
    return _send_email(
        subject=f"Welcome to {_org_name()}!",
        recipient=user.email,
        html_body=(
            f"<h1>Welcome, {escape(user.name)}!</h1>"
            f"<p>Your application has been approved.</p>"
            f"<p>You can now sign in with your email address ({escape(user.email)}) "
            f"and this temporary password:</p>"
            f"<p><b>{escape(temporary_password)}</b></p>"
            f"<p>Please change your password after your first sign-in.</p>"
            f'<p><a href="{login_url}">Sign in</a></p>'
            f"{_signature()}"
        ),
    )


def send_staff_new_application(application, user, staff_emails):
    sent = 0
    for staff_email in staff_emails:
        if _send_email(
            subject=f"New Membership Application: {user.name}",
            recipient=staff_email,
            html_body=(
                f"<p>A new membership application has been submitted.</p>"
                f"<p><strong>Name:</strong> {escape(user.name)}<br>"
                f"<strong>Email:</strong> {escape(user.email)}<br>"
                f"<strong>Tier:</strong> {escape(application.desired_tier)}</p>"
            ),
        ):
            sent += 1
    return sent


class ApplicantNotifier:
    """Best-effort applicant emails used by the intake and review services.

    Each method returns True when sent, False when sending failed and None
    when the message is switched off.
    """

    def __init__(self, welcome_enabled=False, notify_staff=True):
        self.welcome_enabled = welcome_enabled
        self.notify_staff = notify_staff

    def received(self, application):
        sent = send_application_received(application, application.user)
        if self.notify_staff:
            from ..models import ROLE_ADMIN, Role

            admin_role = Role.query.filter_by(slug=ROLE_ADMIN).first()
            if admin_role is not None:
                emails = [u.email for u in admin_role.users if u.is_active_account]
                send_staff_new_application(application, application.user, emails)
        return sent

    def call_scheduled(self, application):
        return send_call_scheduled(application, application.user)

    def welcome(self, application, temporary_password):
        if not self.welcome_enabled:
            return None
        return send_welcome_email(application.user, temporary_password)
