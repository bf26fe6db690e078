"""Domain errors raised by the record and diagnosis services.

Each error carries the HTTP status and machine-readable code it maps to, so
the app only needs one exception handler for the whole family.
"""


class PhenoApiError(Exception):
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(PhenoApiError):
    """The target patient record does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class ForbiddenError(PhenoApiError):
    """The caller lacks the access level the operation requires."""

    status_code = 403
    code = "FORBIDDEN"


class BadRequestError(PhenoApiError):
    """Malformed identifier, unknown user or consent, non-positive limit."""

    status_code = 400
    code = "BAD_REQUEST"
