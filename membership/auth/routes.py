from datetime import UTC, datetime, timedelta

import bcrypt
from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from .. import limiter
from ..audit import log_event
from ..errors import error_response, form_error_response
from ..models import User, db
from ..serializers import application_public, user_summary
from .forms import ChangePasswordForm, LoginForm

auth_bp = Blueprint("auth", __name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password."


def _aware(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _dummy_password_check():
    # Equalize timing with a real bcrypt comparison
    bcrypt.checkpw(b"dummy-password", bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 13)))


def _record_failed_login(user):
    # Atomic increment of failed login count
    User.query.filter_by(id=user.id).update({"failed_login_count": db.func.coalesce(User.failed_login_count, 0) + 1})
    db.session.commit()
    db.session.refresh(user)

    max_failures = current_app.config.get("MAX_FAILED_LOGINS", 5)
    if user.failed_login_count >= max_failures:
        lockout_minutes = current_app.config.get("ACCOUNT_LOCKOUT_MINUTES", 15)
        user.locked_until = datetime.now(UTC) + timedelta(minutes=lockout_minutes)
        db.session.commit()
        log_event(
            "account_locked",
            "user",
            user.id,
            detail=f"Locked for {lockout_minutes} minutes after {user.failed_login_count} failed attempts",
        )


# ── Login ──────────────────────────────────────────────────────────


@auth_bp.route("/login", methods=["POST"])
@limiter.limit("5 per minute")
def login():
    form = LoginForm()
    if not form.validate_on_submit():
        return form_error_response(form)

    email = form.email.data.lower().strip()
    user = User.query.filter_by(email=email).first()

    # Check account lockout before anything else
    if user and user.locked_until and _aware(user.locked_until) > datetime.now(UTC):
        _dummy_password_check()
        log_event("login_locked", "user", user.id)
        return error_response(
            423, "Account temporarily locked due to repeated failed login attempts. Please try again later."
        )

    if user is None:
        _dummy_password_check()
        log_event("login_failed", detail=f"email={email}")
        return error_response(401, INVALID_CREDENTIALS_MESSAGE)

    if not user.check_password(form.password.data):
        _record_failed_login(user)
        log_event("login_failed", detail=f"email={email}")
        return error_response(401, INVALID_CREDENTIALS_MESSAGE)

    if not user.is_active_account:
        log_event("login_inactive", "user", user.id)
        return error_response(403, "Your account is not active. Please contact the membership team.")

    # Successful login: reset lockout state
    user.failed_login_count = 0
    user.locked_until = None
    user.last_login_at = datetime.now(UTC)
    login_user(user, remember=form.remember_me.data)
    db.session.commit()

    log_event("login_success", "user", user.id)
    return jsonify(user_summary(user))


@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    log_event("logout", "user", current_user.id)
    logout_user()
    return "", 204


# ── Account ────────────────────────────────────────────────────────


@auth_bp.route("/me")
@login_required
def me():
    data = user_summary(current_user)
    application = current_user.application
    data["application"] = application_public(application) if application is not None else None
    return jsonify(data)


@auth_bp.route("/me/password", methods=["POST"])
@login_required
@limiter.limit("5 per minute")
def change_password():
    form = ChangePasswordForm()
    if not form.validate_on_submit():
        return form_error_response(form)

    if not current_user.check_password(form.current_password.data):
        log_event("password_change_failed", "user", current_user.id)
        return error_response(400, "Current password is incorrect.")

    current_user.set_password(form.new_password.data, rounds=current_app.config.get("BCRYPT_ROUNDS", 13))
    db.session.commit()
    log_event("password_changed", "user", current_user.id)
    return "", 204


@auth_bp.route("/csrf-token")
def csrf_token():
    return jsonify(csrf_token=generate_csrf())
