"""Error taxonomy and result objects for the application services.

Inside a transaction the services raise :class:`WorkflowError` subclasses to
short-circuit; at the public boundary every error is translated into an
:class:`Outcome` so callers branch on ``outcome.error`` instead of catching.
"""

NOT_FOUND = "not_found"
INVALID_STATE = "invalid_state"
CONFLICT = "conflict"
LOCKED = "locked"
CONFIGURATION = "configuration"
INTERNAL = "internal"

ERROR_KINDS = (NOT_FOUND, INVALID_STATE, CONFLICT, LOCKED, CONFIGURATION, INTERNAL)


class WorkflowError(Exception):
    kind = INTERNAL

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class ApplicationNotFound(WorkflowError):
    kind = NOT_FOUND


class InvalidTransition(WorkflowError):
    kind = INVALID_STATE


class DuplicateApplicant(WorkflowError):
    kind = CONFLICT


class RoleNotConfigured(WorkflowError):
    """A reference role is missing. Deployment defect, not a user error."""

    kind = CONFIGURATION


class Outcome:
    """Result of a service operation: either an application or an error kind."""

    __slots__ = ("application", "error", "message", "temporary_password")

    def __init__(self, application=None, error=None, message=None, temporary_password=None):
        self.application = application
        self.error = error
        self.message = message
        self.temporary_password = temporary_password

    @classmethod
    def success(cls, application, message=None, temporary_password=None):
        return cls(application=application, message=message, temporary_password=temporary_password)

    @classmethod
    def failure(cls, error, message):
        if error not in ERROR_KINDS:
            raise ValueError(f"Unknown error kind: {error!r}")
        return cls(error=error, message=message)

    @property
    def ok(self):
        return self.error is None

    def __bool__(self):
        return self.ok

    def __repr__(self):
        # never render temporary_password
        if self.ok:
            return f"<Outcome ok application={getattr(self.application, 'id', None)}>"
        return f"<Outcome {self.error}: {self.message}>"
