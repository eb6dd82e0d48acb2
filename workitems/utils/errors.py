"""Standardised API error responses.

Usage
-----
    from workitems.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Work item not found")
    return api_error(E.VALIDATION_REQUIRED, "title is required")
    return error_from_exception(exc)   # any WorkItemError
"""

from __future__ import annotations

from flask import jsonify

from workitems.core.exceptions import WorkItemError


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention: ERR_ prefix for every code.
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_HIERARCHY = "ERR_INVALID_HIERARCHY"

    # Authentication – HTTP 401
    UNAUTHORIZED = "ERR_UNAUTHORIZED"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"
    PARENT_NOT_FOUND = "ERR_PARENT_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    LINEAGE_REQUIRED = "ERR_LINEAGE_REQUIRED"
    CANNOT_DELETE_PARENT = "ERR_CANNOT_DELETE_PARENT"

    # Transport – HTTP 405 / 429
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 5xx
    INTERNAL = "ERR_INTERNAL"
    UPSTREAM_UNAVAILABLE = "ERR_UPSTREAM_UNAVAILABLE"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.INVALID_HIERARCHY: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.PARENT_NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.LINEAGE_REQUIRED: 409,
    E.CANNOT_DELETE_PARENT: 409,
    E.METHOD_NOT_ALLOWED: 405,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
    E.UPSTREAM_UNAVAILABLE: 503,
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
        Extra structured payload (violated hierarchy rules, child count, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_from_exception(exc: WorkItemError):
    """Translate a classified WorkItemError into the standard envelope."""
    return api_error(
        exc.code,
        exc.message,
        status=exc.http_status,
        details=exc.details,
    )
