"""
MAAP Snapshot Store.

Persists immutable (maap_data, form_params) pairs and owns the single
mutable transition of a snapshot: ``processed_at`` NULL → timestamp.

Design decisions:
    - maap_data is built here, once, by MaapSnapshotBuilder.  form_params is
      deep-copied and stored as submitted; nothing from it is folded into
      maap_data.
    - mark_processed is a compare-and-set (UPDATE ... WHERE processed_at IS
      NULL).  Concurrent finalizations of one snapshot therefore succeed at
      most once; the loser gets AlreadyProcessedError.
    - Readers get copies (MaapSnapshot.maap_data / .form_params properties),
      so mutating a returned payload never reaches the database.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from datetime import date, datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.orm.attributes import set_committed_value

from maap.core.exceptions import AlreadyProcessedError, NotFoundError, ValidationError
from maap.models import db
from maap.models.maap_snapshot import MaapSnapshot, normalize_change_type
from maap.models.organization import Employee
from maap.services import entity_gateway
from maap.services.maap_snapshot_builder import MaapSnapshotBuilder, maap_digest

logger = logging.getLogger(__name__)


def _validate_form_params(form_params) -> dict:
    if form_params is None:
        return {}
    if not isinstance(form_params, Mapping):
        raise ValidationError(
            "form_params must be an object of string keys",
            details={"form_params": type(form_params).__name__},
        )
    bad_keys = [k for k in form_params if not isinstance(k, str)]
    if bad_keys:
        raise ValidationError(
            "form_params keys must be strings",
            details={"form_params": [repr(k) for k in bad_keys]},
        )
    return copy.deepcopy(dict(form_params))


def _resolve_created_by(created_by: Employee | int | None) -> int | None:
    if created_by is None:
        return None
    if isinstance(created_by, Employee):
        return created_by.id
    creator = entity_gateway.get_employee(int(created_by))
    if creator is None:
        raise NotFoundError(resource="Employee", resource_id=created_by)
    return creator.id


# ── Create ────────────────────────────────────────────────────────────────────


def create_snapshot(
    employee: Employee | int,
    created_by: Employee | int | None,
    change_type: str,
    reason: str,
    form_params: Mapping | None = None,
    *,
    as_of: date | datetime | None = None,
    commit: bool = True,
) -> MaapSnapshot:
    """Build and persist a snapshot with ``processed_at = NULL``.

    Args:
        employee:    Employee or id whose tenures are captured.
        created_by:  Employee or id who triggered capture (optional).
        change_type: Canonical discriminant or a legacy alias.
        reason:      Free-text audit note; must not be blank.
        form_params: Operator payload, stored verbatim.
        as_of:       Point in time for tenure activity (default: today).
        commit:      Commit the session (False when the caller owns the txn).

    Raises:
        ConstructionError: employee unresolvable or tenure data corrupt.
        ValidationError:   bad change_type, blank reason, malformed form_params.
        NotFoundError:     created_by id does not exist.
    """
    canonical_type = normalize_change_type(change_type)
    if not (reason or "").strip():
        raise ValidationError("reason is required", details={"reason": "blank"})
    stored_params = _validate_form_params(form_params)

    emp = MaapSnapshotBuilder.resolve_employee(employee)
    created_by_id = _resolve_created_by(created_by)
    maap_data = MaapSnapshotBuilder.build(emp, as_of)

    employment = entity_gateway.active_employment_tenure(emp.id, as_of)

    snapshot = MaapSnapshot(
        employee_id=emp.id,
        created_by_id=created_by_id,
        organization_id=employment.organization_id if employment else None,
        change_type=canonical_type,
        reason=reason.strip(),
        _maap_data=maap_data,
        _form_params=stored_params,
        maap_digest=maap_digest(maap_data),
    )
    db.session.add(snapshot)
    if commit:
        db.session.commit()
    else:
        db.session.flush()

    logger.info(
        "MAAP snapshot created",
        extra={
            "snapshot_id": snapshot.id,
            "employee_id": emp.id,
            "change_type": canonical_type,
        },
    )
    return snapshot


# ── Compare-and-set ───────────────────────────────────────────────────────────


def mark_processed(snapshot: MaapSnapshot, processed_at: datetime | None = None) -> MaapSnapshot:
    """Set ``processed_at`` exactly once.

    Runs inside the caller's transaction and does not commit, so the flag and
    the finalization writes land together or not at all.

    Raises:
        AlreadyProcessedError: the snapshot was already processed, either as
            seen in memory or by a concurrent transaction.
    """
    if snapshot.processed_at is not None:
        raise AlreadyProcessedError(snapshot.id, snapshot.processed_at, employee_id=snapshot.employee_id)

    ts = processed_at or datetime.now(timezone.utc)
    result = db.session.execute(
        update(MaapSnapshot)
        .where(MaapSnapshot.id == snapshot.id, MaapSnapshot.processed_at.is_(None))
        .values(processed_at=ts)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = db.session.execute(
            select(MaapSnapshot.processed_at).where(MaapSnapshot.id == snapshot.id)
        ).scalar()
        raise AlreadyProcessedError(snapshot.id, current, employee_id=snapshot.employee_id)

    set_committed_value(snapshot, "processed_at", ts)
    return snapshot


# ── Query ─────────────────────────────────────────────────────────────────────


def get_snapshot(snapshot_id: int) -> MaapSnapshot:
    snapshot = db.session.get(MaapSnapshot, snapshot_id)
    if snapshot is None:
        raise NotFoundError(resource="MaapSnapshot", resource_id=snapshot_id)
    return snapshot


def list_for_employee(employee_id: int, *, pending_only: bool = False, limit: int = 50) -> list[MaapSnapshot]:
    """Most recent snapshots first."""
    stmt = select(MaapSnapshot).where(MaapSnapshot.employee_id == employee_id)
    if pending_only:
        stmt = stmt.where(MaapSnapshot.processed_at.is_(None))
    stmt = stmt.order_by(MaapSnapshot.created_at.desc(), MaapSnapshot.id.desc()).limit(limit)
    return list(db.session.execute(stmt).scalars())


def get_maap_data(snapshot_id: int) -> list[dict]:
    """Derived payload only; callers must not read pending proposals into it."""
    return get_snapshot(snapshot_id).maap_data


def get_form_params(snapshot_id: int) -> dict:
    return get_snapshot(snapshot_id).form_params
