from flask import Blueprint, current_app, jsonify
from flask_login import current_user, login_required

from .. import limiter
from ..errors import error_response, form_error_response, outcome_error_response
from ..serializers import application_public
from .forms import IntakeForm
from .service import build_intake

intake_bp = Blueprint("intake", __name__)


@intake_bp.route("/applications", methods=["POST"])
@limiter.limit("5 per minute")
def submit_application():
    if not current_app.config.get("SUBMISSIONS_ENABLED", True):
        return error_response(403, "Applications are currently closed.")

    form = IntakeForm()
    if not form.validate_on_submit():
        return form_error_response(form)

    outcome = build_intake().submit(
        name=form.name.data,
        email=form.email.data,
        tier=form.desired_tier.data,
        motivation=form.motivation.data,
        phone_number=form.phone_number.data,
        intake_data=form.intake_data(),
    )
    if not outcome.ok:
        return outcome_error_response(outcome)

    body = application_public(outcome.application)
    body["message"] = "Your application has been received and will be reviewed by our team."
    return jsonify(body), 201


@intake_bp.route("/applications/me")
@login_required
def my_application():
    application = current_user.application
    if application is None:
        return error_response(404, "You have not submitted an application.")
    return jsonify(application_public(application))
