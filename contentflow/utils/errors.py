"""Standardised API error responses.

Usage
-----
    from contentflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Content item not found")
    return api_error(E.ILLEGAL_TRANSITION, str(exc), details=exc.to_dict())
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • ERR_TENANT_ prefix for tenant-isolation failures
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    ILLEGAL_TRANSITION = "ERR_ILLEGAL_TRANSITION"
    SECURITY = "ERR_SECURITY"

    # Authentication – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"
    TENANT_NO_ACTIVE_ORG = "ERR_TENANT_NO_ACTIVE_ORG"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Rate limiting – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.ILLEGAL_TRANSITION: 400,
    E.SECURITY: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.TENANT_NO_ACTIVE_ORG: 403,
    E.NOT_FOUND: 404,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
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
        Extra structured payload (offending transition, field errors).

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
