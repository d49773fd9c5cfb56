"""JSON error bodies for the API.

    from crewflow.utils.errors import api_error, error_response, E

    return api_error(E.VALIDATION_REQUIRED, "No file uploaded")
    return error_response(exc)          # any crewflow.core.exceptions error

Body shape: {"success": false, "error": <message>, "code": <E.*>, "details"?: {...}}
"""

from __future__ import annotations

from flask import jsonify

from crewflow.core.exceptions import ConflictError, MatrixFormatError, NotFoundError, ValidationError


class E:
    """Error codes returned in the ``code`` field."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    MATRIX_FORMAT = "ERR_MATRIX_FORMAT"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    INTERNAL = "ERR_INTERNAL"


_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.MATRIX_FORMAT: 400,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.INTERNAL: 500,
}

# Most specific first: MatrixFormatError is a ValidationError.
_EXCEPTION_CODES = (
    (MatrixFormatError, E.MATRIX_FORMAT),
    (ValidationError, E.VALIDATION_INVALID),
    (NotFoundError, E.NOT_FOUND),
    (ConflictError, E.CONFLICT_DUPLICATE),
)


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Return ``(jsonify(body), status)``; status defaults from the code, else 400."""
    body: dict = {"success": False, "error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS.get(code, 400)


def error_response(exc: Exception):
    """Map a domain exception to its API error response.

    Unknown exception types map to a generic 500 without leaking the message.
    """
    for exc_type, code in _EXCEPTION_CODES:
        if isinstance(exc, exc_type):
            message = exc.message if isinstance(exc, ValidationError) else str(exc)
            details = exc.details if isinstance(exc, ValidationError) else None
            return api_error(code, message, details=details)
    return api_error(E.INTERNAL, "Internal server error")
