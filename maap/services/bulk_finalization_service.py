"""
Bulk check-in finalization.

Runs the finalization processor across many employees' snapshots and records
one BatchResult per input, in input order.

Design decisions:
    - Each snapshot is its own unit of work with its own transaction.  There
      is never a transaction spanning the batch, so a failure for one
      employee cannot roll back another employee's committed writes.
    - This is the only layer that swallows errors.  Every swallowed error
      becomes a failure BatchResult carrying employee id, error kind and
      message.
    - PersistenceError is retried per employee (MAAP_BULK_PERSISTENCE_RETRIES).
      Other error kinds are data problems and are not retried.
    - MAAP_BULK_MAX_WORKERS > 1 processes employees on a thread pool.  Each
      worker pushes its own app context and therefore gets its own session.
      Employees touch disjoint rows; the processed_at compare-and-set guards
      duplicate snapshot ids within or across batches.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from flask import current_app

from maap.core.exceptions import (
    AttributeResolutionError,
    ConstructionError,
    MaapError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from maap.models import db
from maap.models.maap_snapshot import MaapSnapshot
from maap.services import maap_snapshot_service
from maap.services.finalization_processor import FinalizationProcessor

logger = logging.getLogger(__name__)

BULK_CHANGE_TYPE = "bulk_check_in_finalization"

# Order matters: first matching type wins.
_ERROR_KINDS: tuple[tuple[type[BaseException], str], ...] = (
    (ConstructionError, ConstructionError.kind),
    (AttributeResolutionError, AttributeResolutionError.kind),
    (PersistenceError, PersistenceError.kind),
    (MaapError, MaapError.kind),
    (ValidationError, "validation_error"),
    (NotFoundError, "not_found"),
)
UNEXPECTED_ERROR = "unexpected_error"


def classify_error(exc: BaseException) -> str:
    for exc_type, kind in _ERROR_KINDS:
        if isinstance(exc, exc_type):
            return kind
    return UNEXPECTED_ERROR


@dataclass
class BatchResult:
    """Outcome for one employee in a bulk run."""

    employee_id: int | None
    snapshot_id: int | None
    success: bool
    error_kind: str | None = None
    error_message: str | None = None
    already_processed: bool = False
    attempts: int = 1
    result: dict | None = None

    @property
    def status(self) -> str:
        return "success" if self.success else "failure"

    def to_dict(self) -> dict:
        return {
            "employee_id": self.employee_id,
            "snapshot_id": self.snapshot_id,
            "status": self.status,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
            "already_processed": self.already_processed,
            "attempts": self.attempts,
            "result": self.result,
        }


def _failure(exc: BaseException, *, employee_id, snapshot_id, attempts: int, batch_id: str) -> BatchResult:
    kind = classify_error(exc)
    extra = {
        "batch_id": batch_id,
        "employee_id": employee_id,
        "snapshot_id": snapshot_id,
        "error_kind": kind,
    }
    if kind == UNEXPECTED_ERROR:
        logger.exception("Bulk finalization failed for employee", extra=extra)
    else:
        logger.warning("Bulk finalization failed for employee: %s", exc, extra=extra)
    return BatchResult(
        employee_id=employee_id,
        snapshot_id=snapshot_id,
        success=False,
        error_kind=kind,
        error_message=str(exc),
        attempts=attempts,
    )


# ── Per-employee unit of work ─────────────────────────────────────────────────


def _process_one(snapshot_id: int, *, retries: int, batch_id: str,
                 processor: FinalizationProcessor) -> BatchResult:
    employee_id = None
    attempts = 0
    while True:
        attempts += 1
        try:
            snapshot = maap_snapshot_service.get_snapshot(snapshot_id)
            employee_id = snapshot.employee_id
            outcome = processor.process(snapshot)
        except PersistenceError as exc:
            db.session.rollback()
            if attempts <= retries:
                logger.warning(
                    "Retrying finalization after persistence error (attempt %d): %s", attempts, exc,
                    extra={"batch_id": batch_id, "employee_id": employee_id, "snapshot_id": snapshot_id},
                )
                continue
            return _failure(exc, employee_id=employee_id, snapshot_id=snapshot_id,
                            attempts=attempts, batch_id=batch_id)
        except Exception as exc:
            db.session.rollback()
            return _failure(exc, employee_id=employee_id, snapshot_id=snapshot_id,
                            attempts=attempts, batch_id=batch_id)

        return BatchResult(
            employee_id=employee_id,
            snapshot_id=snapshot_id,
            success=True,
            already_processed=outcome.already_processed,
            attempts=attempts,
            result=outcome.to_dict(),
        )


def _process_in_app_context(app, snapshot_id: int, retries: int, batch_id: str) -> BatchResult:
    with app.app_context():
        return _process_one(snapshot_id, retries=retries, batch_id=batch_id,
                            processor=FinalizationProcessor())


# ── Public API ────────────────────────────────────────────────────────────────


def _snapshot_id(item: MaapSnapshot | int) -> int:
    if isinstance(item, MaapSnapshot):
        if item.id is None:
            raise ValidationError("Snapshots must be persisted before bulk finalization")
        return item.id
    return int(item)


def _check_batch_size(count: int) -> None:
    limit = current_app.config.get("MAAP_BULK_MAX_BATCH_SIZE", 500)
    if count > limit:
        raise ValidationError(
            f"Batch of {count} exceeds the maximum of {limit} employees",
            details={"count": count, "limit": limit},
        )


def run_batch(
    snapshots: Iterable[MaapSnapshot | int],
    *,
    max_workers: int | None = None,
    retries: int | None = None,
    batch_id: str | None = None,
) -> list[BatchResult]:
    """Finalize each snapshot in isolation and return one result per input, in order.

    Args:
        snapshots:   MaapSnapshot instances or snapshot ids.
        max_workers: Thread pool size; defaults to MAAP_BULK_MAX_WORKERS.
        retries:     Extra attempts after a PersistenceError; defaults to
                     MAAP_BULK_PERSISTENCE_RETRIES.

    Raises:
        ValidationError: the batch exceeds MAAP_BULK_MAX_BATCH_SIZE or holds an
            unsaved snapshot.  Nothing has been processed when this is raised.
    """
    snapshot_ids = [_snapshot_id(s) for s in snapshots]
    _check_batch_size(len(snapshot_ids))

    cfg = current_app.config
    workers = max_workers if max_workers is not None else cfg.get("MAAP_BULK_MAX_WORKERS", 1)
    retry_count = retries if retries is not None else cfg.get("MAAP_BULK_PERSISTENCE_RETRIES", 0)
    batch_id = batch_id or uuid.uuid4().hex[:12]

    logger.info(
        "Bulk finalization started: %d snapshots, %d workers", len(snapshot_ids), max(workers, 1),
        extra={"batch_id": batch_id},
    )

    if workers > 1 and len(snapshot_ids) > 1:
        app = current_app._get_current_object()
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="maap-bulk") as pool:
            results = list(pool.map(
                lambda sid: _process_in_app_context(app, sid, retry_count, batch_id),
                snapshot_ids,
            ))
    else:
        processor = FinalizationProcessor()
        results = [
            _process_one(sid, retries=retry_count, batch_id=batch_id, processor=processor)
            for sid in snapshot_ids
        ]

    summary = summarize(results)
    logger.info(
        "Bulk finalization finished: %d succeeded, %d failed",
        summary["succeeded"], summary["failed"],
        extra={"batch_id": batch_id},
    )
    return results


def finalize_employees(
    employee_ids: Iterable[int],
    created_by,
    reason: str,
    form_params_by_employee: Mapping | None = None,
    *,
    change_type: str = BULK_CHANGE_TYPE,
    max_workers: int | None = None,
    retries: int | None = None,
    batch_id: str | None = None,
) -> list[BatchResult]:
    """Capture a snapshot per employee, then finalize them as one batch.

    A snapshot that cannot be built is recorded as a failure for that
    employee; the remaining employees are still captured and finalized.
    ``form_params_by_employee`` keys may be ints or their string form.
    """
    ids = [int(e) for e in employee_ids]
    _check_batch_size(len(ids))
    params_by_employee = form_params_by_employee or {}
    batch_id = batch_id or uuid.uuid4().hex[:12]

    slots: list[BatchResult | int] = []
    for employee_id in ids:
        params = params_by_employee.get(employee_id, params_by_employee.get(str(employee_id)))
        try:
            snapshot = maap_snapshot_service.create_snapshot(
                employee_id, created_by, change_type, reason, params,
            )
        except Exception as exc:
            db.session.rollback()
            slots.append(_failure(exc, employee_id=employee_id, snapshot_id=None,
                                  attempts=1, batch_id=batch_id))
            continue
        slots.append(snapshot.id)

    processed = iter(run_batch(
        [s for s in slots if isinstance(s, int)],
        max_workers=max_workers,
        retries=retries,
        batch_id=batch_id,
    ))
    return [s if isinstance(s, BatchResult) else next(processed) for s in slots]


def summarize(results: list[BatchResult], batch_id: str | None = None) -> dict:
    """Batch report: totals, per-kind failure counts and the individual results."""
    succeeded = sum(1 for r in results if r.success)
    failed = len(results) - succeeded
    if failed == 0:
        status = "completed"
    elif succeeded:
        status = "partial"
    else:
        status = "failed"
    return {
        "batch_id": batch_id,
        "status": status,
        "total": len(results),
        "succeeded": succeeded,
        "failed": failed,
        "already_processed": sum(1 for r in results if r.already_processed),
        "by_error_kind": dict(Counter(r.error_kind for r in results if not r.success)),
        "results": [r.to_dict() for r in results],
    }
