from functools import wraps

from flask import abort
from flask_login import current_user, login_required


def roles_required(*slugs):
    """Allow the view only to signed-in users holding at least one of *slugs*."""

    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            if not any(current_user.has_role(slug) for slug in slugs):
                abort(403)
            return f(*args, **kwargs)

        return decorated_function

    return decorator
