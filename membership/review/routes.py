from flask import Blueprint, jsonify, request
from flask_login import current_user

from .. import limiter
from ..auth.decorators import roles_required
from ..errors import error_response, form_error_response, outcome_error_response
from ..models import ROLE_ADMIN, db
from ..serializers import application_detail, application_list_item, user_admin_view
from .forms import ApplicationQueryForm, DecisionForm, ScheduleCallForm, UserQueryForm
from .service import build_workflow, list_users

review_bp = Blueprint("review", __name__)


def _detail_response(outcome):
    if not outcome.ok:
        return outcome_error_response(outcome)
    return jsonify(application_detail(outcome.application))


# ── Listing ────────────────────────────────────────────────────────


@review_bp.route("/applications")
@roles_required(ROLE_ADMIN)
def list_applications():
    form = ApplicationQueryForm(request.args)
    if not form.validate():
        return form_error_response(form)

    page = form.page.data or 1
    per_page = form.per_page.data or 10
    items, total = build_workflow().list_applications(
        status=form.status.data or None,
        tier=form.tier.data or None,
        search=form.search.data or None,
        page=page,
        per_page=per_page,
    )
    return jsonify(
        items=[application_list_item(a) for a in items],
        total=total,
        page=page,
        per_page=per_page,
        pages=(total + per_page - 1) // per_page,
    )


@review_bp.route("/applications/<int:application_id>")
@roles_required(ROLE_ADMIN)
def get_application(application_id):
    application = build_workflow().get(application_id)
    if application is None:
        return error_response(404, f"Application with ID {application_id} not found")
    return jsonify(application_detail(application))


# ── Decisions ──────────────────────────────────────────────────────


@review_bp.route("/applications/<int:application_id>/schedule-call", methods=["PUT"])
@roles_required(ROLE_ADMIN)
@limiter.limit("30 per minute")
def schedule_call(application_id):
    form = ScheduleCallForm()
    if not form.validate_on_submit():
        return form_error_response(form)
    outcome = build_workflow().schedule_call(application_id, form.call_scheduled_at.data, current_user.id)
    return _detail_response(outcome)


@review_bp.route("/applications/<int:application_id>/approve", methods=["PUT"])
@roles_required(ROLE_ADMIN)
@limiter.limit("30 per minute")
def approve(application_id):
    form = DecisionForm()
    if not form.validate_on_submit():
        return form_error_response(form)
    outcome = build_workflow().approve(application_id, current_user.id, form.decision_notes.data)
    if not outcome.ok:
        return outcome_error_response(outcome)
    body = application_detail(outcome.application)
    # Shown once to staff so it can be relayed if the welcome email does not arrive
    body["temporary_password"] = outcome.temporary_password
    return jsonify(body)


@review_bp.route("/applications/<int:application_id>/decline", methods=["PUT"])
@roles_required(ROLE_ADMIN)
@limiter.limit("30 per minute")
def decline(application_id):
    form = DecisionForm()
    if not form.validate_on_submit():
        return form_error_response(form)
    outcome = build_workflow().decline(application_id, current_user.id, form.decision_notes.data)
    return _detail_response(outcome)


@review_bp.route("/applications/<int:application_id>/reissue-password", methods=["POST"])
@roles_required(ROLE_ADMIN)
@limiter.limit("10 per minute")
def reissue_password(application_id):
    outcome = build_workflow().reissue_credentials(application_id, current_user.id)
    if not outcome.ok:
        return outcome_error_response(outcome)
    return jsonify(application_id=outcome.application.id, temporary_password=outcome.temporary_password)


# ── Accounts ───────────────────────────────────────────────────────


@review_bp.route("/users")
@roles_required(ROLE_ADMIN)
def users():
    form = UserQueryForm(request.args)
    if not form.validate():
        return form_error_response(form)

    page = form.page.data or 1
    per_page = form.per_page.data or 10
    items, total = list_users(
        db.session,
        role=form.role.data or None,
        search=form.search.data or None,
        page=page,
        per_page=per_page,
    )
    return jsonify(
        items=[user_admin_view(u) for u in items],
        total=total,
        page=page,
        per_page=per_page,
        pages=(total + per_page - 1) // per_page,
    )
