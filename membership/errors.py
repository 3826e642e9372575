from datetime import UTC, datetime

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from .outcomes import CONFIGURATION, CONFLICT, INTERNAL, INVALID_STATE, LOCKED, NOT_FOUND

STATUS_BY_KIND = {
    NOT_FOUND: 404,
    INVALID_STATE: 400,
    CONFLICT: 409,
    LOCKED: 409,
    CONFIGURATION: 500,
    INTERNAL: 500,
}


def error_response(status_code, message, **extra):
    body = {
        "status_code": status_code,
        "timestamp": datetime.now(UTC).isoformat(),
        "path": request.path,
        "message": message,
    }
    body.update(extra)
    return jsonify(body), status_code


def outcome_error_response(outcome):
    """Translate a failed service outcome into its HTTP error response."""
    return error_response(STATUS_BY_KIND.get(outcome.error, 500), outcome.message)


def form_error_response(form):
    return error_response(400, "Validation failed.", errors=form.errors)


def register_error_handlers(app):
    @app.errorhandler(400)
    def bad_request(e):
        return error_response(400, e.description or "Bad request.")

    @app.errorhandler(401)
    def unauthorized(e):
        return error_response(401, "Authentication required.")

    @app.errorhandler(403)
    def forbidden(e):
        app.logger.warning("403 Forbidden: %s", request.path)
        return error_response(403, "You do not have permission to perform this action.")

    @app.errorhandler(404)
    def not_found(e):
        return error_response(404, "Resource not found.")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return error_response(405, "Method not allowed.")

    @app.errorhandler(429)
    def too_many_requests(e):
        return error_response(429, "Too many requests. Please slow down.")

    @app.errorhandler(500)
    def internal_error(e):
        app.logger.exception("Internal server error: %s", e)
        return error_response(500, "Internal server error.")

    @app.errorhandler(HTTPException)
    def other_http_error(e):
        return error_response(e.code or 500, e.description or e.name)
