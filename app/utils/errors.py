"""JSON error envelope for the approval API.

Every error response has the same shape::

    {"error": "<human message>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty.

    from app.utils.errors import E, api_error

    return api_error(E.NOT_FOUND, "ApprovalRoute not found")
    return api_error(E.VALIDATION_INVALID, "Submission is invalid", details={"errors": [...]})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes with their default HTTP status."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"
    UNSUPPORTED_MEDIA_TYPE = "ERR_UNSUPPORTED_MEDIA_TYPE"
    RATE_LIMITED = "ERR_RATE_LIMITED"
    INTERNAL = "ERR_INTERNAL"

    STATUS = {
        VALIDATION_REQUIRED: 400,
        VALIDATION_INVALID: 400,
        FORBIDDEN: 403,
        NOT_FOUND: 404,
        METHOD_NOT_ALLOWED: 405,
        CONFLICT_STATE: 409,
        PAYLOAD_TOO_LARGE: 413,
        UNSUPPORTED_MEDIA_TYPE: 415,
        RATE_LIMITED: 429,
        INTERNAL: 500,
    }


def error_body(code: str, message: str, details: dict | None = None) -> dict:
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return body


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """``(response, status)`` for a Flask view or error handler.

    ``status`` defaults to the code's entry in ``E.STATUS`` (400 if unknown).
    """
    return jsonify(error_body(code, message, details)), status or E.STATUS.get(code, 400)
