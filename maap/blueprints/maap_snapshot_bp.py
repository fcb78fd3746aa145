"""MAAP snapshot blueprint.

REST API for capturing, inspecting and finalizing MAAP snapshots.

Endpoint groups:
  Capture            POST /api/v1/employees/<employee_id>/maap-snapshots
  Listing            GET  /api/v1/employees/<employee_id>/maap-snapshots?pending=true
  Read surfaces      GET  /api/v1/maap-snapshots/<snapshot_id>
                     GET  /api/v1/maap-snapshots/<snapshot_id>/maap-data
                     GET  /api/v1/maap-snapshots/<snapshot_id>/form-params
                     GET  /api/v1/maap-snapshots/<snapshot_id>/merged
                     GET  /api/v1/maap-snapshots/<snapshot_id>/changes
  Finalization       POST /api/v1/maap-snapshots/<snapshot_id>/process
                     POST /api/v1/maap-snapshots/bulk-finalize

maap-data and form-params are separate surfaces.  The merged view is computed
per request and never stored.  Service layer owns all business logic and commits.
"""

from __future__ import annotations

import json
import logging
import uuid

from flask import Blueprint, Response, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from maap import limiter
from maap.core.exceptions import (
    AlreadyProcessedError,
    AttributeResolutionError,
    ConstructionError,
    NotFoundError,
    PersistenceError,
    SnapshotImmutableError,
    ValidationError,
)
from maap.models.organization import Employee
from maap.services import bulk_finalization_service as bulk
from maap.services import entity_gateway, maap_change_detection, maap_snapshot_service
from maap.services.finalization_processor import FinalizationProcessor
from maap.services.maap_change_merger import merge
from maap.utils.errors import E, api_error
from maap.utils.helpers import get_or_404, parse_bool, parse_date

logger = logging.getLogger(__name__)

maap_snapshot_bp = Blueprint("maap_snapshots", __name__, url_prefix="/api/v1")


# ── Error handlers ────────────────────────────────────────────────────────────


@maap_snapshot_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@maap_snapshot_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@maap_snapshot_bp.errorhandler(ConstructionError)
def _handle_construction(error: ConstructionError):
    return api_error(E.CONSTRUCTION, str(error), details={"employee_id": error.employee_id})


@maap_snapshot_bp.errorhandler(AttributeResolutionError)
def _handle_attribute_resolution(error: AttributeResolutionError):
    return api_error(
        E.ATTRIBUTE_RESOLUTION,
        str(error),
        details={"entity_type": error.entity_type, "entity_id": error.entity_id},
    )


@maap_snapshot_bp.errorhandler(PersistenceError)
def _handle_persistence(error: PersistenceError):
    logger.error("Persistence error: %s", error, extra={"snapshot_id": error.snapshot_id})
    return api_error(E.PERSISTENCE, "Database temporarily unavailable")


@maap_snapshot_bp.errorhandler(AlreadyProcessedError)
def _handle_already_processed(error: AlreadyProcessedError):
    return api_error(E.ALREADY_PROCESSED, str(error))


@maap_snapshot_bp.errorhandler(SnapshotImmutableError)
def _handle_immutable(error: SnapshotImmutableError):
    return api_error(E.SNAPSHOT_IMMUTABLE, str(error))


@maap_snapshot_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in maap_snapshot_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


def _as_of_param():
    """Optional ``as_of`` query/body date; returns (date|None, error|None)."""
    raw = request.args.get("as_of") or (request.get_json(silent=True) or {}).get("as_of")
    if not raw:
        return None, None
    as_of = parse_date(raw)
    if as_of is None:
        return None, api_error(E.VALIDATION_INVALID, "as_of must be an ISO date", status=400)
    return as_of, None


# ═════════════════════════════════════════════════════════════════════════
# Capture & listing  (/api/v1/employees/<employee_id>/maap-snapshots)
# ═════════════════════════════════════════════════════════════════════════


@maap_snapshot_bp.route("/employees/<int:employee_id>/maap-snapshots", methods=["POST"])
def create_snapshot(employee_id):
    """Capture a snapshot of the employee's current assignment tenures.

    Body: { change_type, reason, created_by_id?, form_params?, as_of? }
    Returns: snapshot dict (201).
    """
    data = request.get_json(silent=True) or {}
    if not data.get("change_type"):
        return api_error(E.VALIDATION_REQUIRED, "change_type is required")
    if not (data.get("reason") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "reason is required")
    as_of, err = _as_of_param()
    if err:
        return err

    employee, err = get_or_404(Employee, employee_id)
    if err:
        return err

    snapshot = maap_snapshot_service.create_snapshot(
        employee,
        data.get("created_by_id"),
        data["change_type"],
        data["reason"],
        data.get("form_params"),
        as_of=as_of,
    )
    return jsonify(snapshot.to_dict()), 201


@maap_snapshot_bp.route("/employees/<int:employee_id>/maap-snapshots", methods=["GET"])
def list_snapshots(employee_id):
    """Snapshots for one employee, newest first.

    Query params: pending (bool), limit (default 50, max 200)
    """
    _, err = get_or_404(Employee, employee_id)
    if err:
        return err
    limit = min(request.args.get("limit", 50, type=int), 200)
    snapshots = maap_snapshot_service.list_for_employee(
        employee_id,
        pending_only=parse_bool(request.args.get("pending")),
        limit=limit,
    )
    return jsonify({
        "items": [s.to_dict(include_payloads=False) for s in snapshots],
        "total": len(snapshots),
    }), 200


# ═════════════════════════════════════════════════════════════════════════
# Read surfaces  (/api/v1/maap-snapshots/<snapshot_id>)
# ═════════════════════════════════════════════════════════════════════════


@maap_snapshot_bp.route("/maap-snapshots/<int:snapshot_id>", methods=["GET"])
def get_snapshot(snapshot_id):
    return jsonify(maap_snapshot_service.get_snapshot(snapshot_id).to_dict()), 200


@maap_snapshot_bp.route("/maap-snapshots/<int:snapshot_id>/maap-data", methods=["GET"])
def get_maap_data(snapshot_id):
    """Derived tenure state only; never includes pending proposals."""
    return jsonify({
        "snapshot_id": snapshot_id,
        "maap_data": maap_snapshot_service.get_maap_data(snapshot_id),
    }), 200


@maap_snapshot_bp.route("/maap-snapshots/<int:snapshot_id>/form-params", methods=["GET"])
def get_form_params(snapshot_id):
    """The operator payload exactly as submitted, key order included."""
    body = {
        "snapshot_id": snapshot_id,
        "form_params": maap_snapshot_service.get_form_params(snapshot_id),
    }
    # jsonify sorts keys
    return Response(json.dumps(body, ensure_ascii=False), status=200, mimetype="application/json")


@maap_snapshot_bp.route("/maap-snapshots/<int:snapshot_id>/merged", methods=["GET"])
def get_merged(snapshot_id):
    """Effective check-in values: proposals over persisted state, not stored."""
    snapshot = maap_snapshot_service.get_snapshot(snapshot_id)
    change_request = merge(
        snapshot.maap_data,
        snapshot.form_params,
        lambda assignment_id: entity_gateway.open_check_in(snapshot.employee_id, assignment_id),
    )
    return jsonify({"snapshot_id": snapshot_id, **change_request.to_dict()}), 200


@maap_snapshot_bp.route("/maap-snapshots/<int:snapshot_id>/changes", methods=["GET"])
def get_changes(snapshot_id):
    """Drift since capture plus check-in changes the snapshot would apply."""
    snapshot = maap_snapshot_service.get_snapshot(snapshot_id)
    return jsonify({
        "snapshot_id": snapshot_id,
        "drift": maap_change_detection.drift_since_snapshot(snapshot),
        "pending_check_ins": maap_change_detection.pending_check_in_changes(snapshot),
    }), 200


# ═════════════════════════════════════════════════════════════════════════
# Finalization
# ═════════════════════════════════════════════════════════════════════════


@maap_snapshot_bp.route("/maap-snapshots/<int:snapshot_id>/process", methods=["POST"])
def process_snapshot(snapshot_id):
    """Finalize one snapshot.  Reprocessing returns status=already_processed."""
    snapshot = maap_snapshot_service.get_snapshot(snapshot_id)
    result = FinalizationProcessor().process(snapshot)
    return jsonify(result.to_dict()), 200


def _bulk_rate_limit() -> str:
    return current_app.config.get("MAAP_BULK_RATE_LIMIT", "10 per minute")


@maap_snapshot_bp.route("/maap-snapshots/bulk-finalize", methods=["POST"])
@limiter.limit(_bulk_rate_limit)
def bulk_finalize():
    """Finalize many employees, each in its own transaction.

    Body, one of:
        { snapshot_ids: [int] }
        { employee_ids: [int], reason, created_by_id?, change_type?,
          form_params_by_employee?: { "<employee_id>": {...} } }

    Returns: batch summary with one result per input, in input order.
    Per-employee failures are reported in the body; the response is 200.
    """
    data = request.get_json(silent=True) or {}
    snapshot_ids = data.get("snapshot_ids")
    employee_ids = data.get("employee_ids")

    if bool(snapshot_ids) == bool(employee_ids):
        return api_error(E.VALIDATION_REQUIRED, "Provide exactly one of snapshot_ids or employee_ids")
    ids = snapshot_ids or employee_ids
    if not isinstance(ids, list) or not all(isinstance(i, int) and not isinstance(i, bool) for i in ids):
        return api_error(E.VALIDATION_INVALID, "ids must be a list of integers", status=400)

    batch_id = uuid.uuid4().hex[:12]
    if snapshot_ids:
        results = bulk.run_batch(snapshot_ids, batch_id=batch_id)
    else:
        if not (data.get("reason") or "").strip():
            return api_error(E.VALIDATION_REQUIRED, "reason is required")
        form_params_by_employee = data.get("form_params_by_employee") or {}
        if not isinstance(form_params_by_employee, dict):
            return api_error(E.VALIDATION_INVALID, "form_params_by_employee must be an object", status=400)
        results = bulk.finalize_employees(
            employee_ids,
            data.get("created_by_id"),
            data["reason"],
            form_params_by_employee,
            change_type=data.get("change_type") or bulk.BULK_CHANGE_TYPE,
            batch_id=batch_id,
        )

    return jsonify(bulk.summarize(results, batch_id=batch_id)), 200
