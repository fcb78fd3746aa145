"""Standardised API error responses.

Usage
-----
    from maap.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "MaapSnapshot id=4 not found")
    return api_error(E.VALIDATION_REQUIRED, "reason is required")
    return api_error(E.ATTRIBUTE_RESOLUTION, str(exc), details={"entity_type": "Ability"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • MAAP_ prefix for snapshot construction / finalization errors
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Server – HTTP 500 / 503
    INTERNAL = "ERR_INTERNAL"

    # Snapshot domain
    CONSTRUCTION = "MAAP_CONSTRUCTION"
    ATTRIBUTE_RESOLUTION = "MAAP_ATTRIBUTE_RESOLUTION"
    PERSISTENCE = "MAAP_PERSISTENCE"
    ALREADY_PROCESSED = "MAAP_ALREADY_PROCESSED"
    SNAPSHOT_IMMUTABLE = "MAAP_SNAPSHOT_IMMUTABLE"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.INTERNAL: 500,
    E.CONSTRUCTION: 422,
    E.ATTRIBUTE_RESOLUTION: 422,
    E.PERSISTENCE: 503,
    E.ALREADY_PROCESSED: 409,
    E.SNAPSHOT_IMMUTABLE: 409,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Return ``(jsonify(body), status)`` with body ``{"error", "code", "details"?}``.

    ``status`` defaults to the code's entry in ``_DEFAULT_STATUS`` (400 when
    the code is unmapped).  Empty ``details`` are left out of the body.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)
