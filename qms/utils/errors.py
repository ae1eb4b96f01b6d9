"""Standardised API error responses.

Usage
-----
    from qms.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "NCR not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required")
    return api_error(E.AUTH_REQUIRED, "User not authenticated")
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_PAGINATION = "ERR_VALIDATION_PAGINATION"
    TRANSITION_INVALID = "ERR_TRANSITION_INVALID"

    # Authentication – HTTP 401
    AUTH_REQUIRED = "ERR_AUTH_REQUIRED"
    AUTH_INVALID = "ERR_AUTH_INVALID"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STALE = "ERR_CONFLICT_STALE"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"
    EXTERNAL_TOOL = "ERR_EXTERNAL_TOOL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_PAGINATION: 400,
    E.TRANSITION_INVALID: 400,
    E.AUTH_REQUIRED: 401,
    E.AUTH_INVALID: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STALE: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.EXTERNAL_TOOL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, tool output, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
