"""
MAAP snapshot: immutable point-in-time capture of an employee's assignment state.

Two payloads live side by side and never mix:
    maap_data    Derived from persisted AssignmentTenure rows at build time.
                 A list ordered by assignment_id, each entry exactly
                 {assignment_id, anticipated_energy_percentage, official_rating}.
    form_params  The operator's review-form submission, stored verbatim.

Lifecycle:
    created (processed_at NULL) ──finalization──▶ processed (terminal)

``processed_at`` is the only column that may change after creation, and only
once, through ``maap_snapshot_service.mark_processed`` (compare-and-set).
A ``before_update`` guard rejects every other attempt at flush time.
"""

import copy

from sqlalchemy import event, inspect as sa_inspect, select

from maap.core.exceptions import AlreadyProcessedError, SnapshotImmutableError, ValidationError
from maap.models import db, _utcnow

# ── Change types ──────────────────────────────────────────────────────────────

CHANGE_TYPES = frozenset({
    "bulk_check_in_finalization",
    "check_in_finalization",
    "assignment_management",
    "milestone_management",
})

# Discriminants written by earlier releases → current discriminant
CHANGE_TYPE_ALIASES = {
    "individual_check_in_finalization": "check_in_finalization",
    "bulk_update": "bulk_check_in_finalization",
}


def normalize_change_type(value: str | None) -> str:
    """Map a submitted change_type to its canonical discriminant.

    Raises:
        ValidationError: value is neither canonical nor a known alias.
    """
    raw = (value or "").strip()
    canonical = CHANGE_TYPE_ALIASES.get(raw, raw)
    if canonical not in CHANGE_TYPES:
        raise ValidationError(
            f"Invalid change_type '{raw}'. Must be one of: {', '.join(sorted(CHANGE_TYPES))}",
            details={"change_type": raw},
        )
    return canonical


class MaapSnapshot(db.Model):
    """Immutable (maap_data, form_params) pair for one employee and review event."""

    __tablename__ = "maap_snapshots"

    id = db.Column(db.Integer, primary_key=True)

    employee_id = db.Column(
        db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    created_by_id = db.Column(
        db.Integer,
        db.ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        comment="Who triggered capture; also recorded as finalizer of closed check-ins",
    )
    organization_id = db.Column(
        db.Integer,
        db.ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        comment="From the employee's active employment tenure at build time",
    )

    change_type = db.Column(
        db.String(50),
        nullable=False,
        comment="bulk_check_in_finalization | check_in_finalization | assignment_management | milestone_management",
    )
    reason = db.Column(db.Text, nullable=False)

    _maap_data = db.Column("maap_data", db.JSON, nullable=False, default=list)
    _form_params = db.Column("form_params", db.JSON, nullable=False, default=dict)
    maap_digest = db.Column(
        db.String(64),
        nullable=False,
        comment="sha256 of canonical maap_data JSON; equal digests mean identical builds",
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    employee = db.relationship("Employee", foreign_keys=[employee_id])

    __table_args__ = (
        db.Index("ix_maap_snapshot_employee_processed", "employee_id", "processed_at"),
    )

    # ── Read surfaces (copies, never live views) ─────────────────────────

    @property
    def maap_data(self) -> list[dict]:
        return copy.deepcopy(self._maap_data or [])

    @property
    def form_params(self) -> dict:
        return copy.deepcopy(self._form_params or {})

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None

    def to_dict(self, include_payloads: bool = True) -> dict:
        data = {
            "id": self.id,
            "employee_id": self.employee_id,
            "created_by_id": self.created_by_id,
            "organization_id": self.organization_id,
            "change_type": self.change_type,
            "reason": self.reason,
            "maap_digest": self.maap_digest,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
        if include_payloads:
            data["maap_data"] = self.maap_data
            data["form_params"] = self.form_params
        return data

    def __repr__(self) -> str:
        state = "processed" if self.is_processed else "pending"
        return f"<MaapSnapshot #{self.id} e={self.employee_id} {self.change_type} {state}>"


# ── Immutability guard ────────────────────────────────────────────────────────

_IMMUTABLE_ATTRS = (
    "employee_id",
    "created_by_id",
    "organization_id",
    "change_type",
    "reason",
    "_maap_data",
    "_form_params",
    "maap_digest",
    "created_at",
)


def _stored_processed_at(connection, snapshot_id):
    table = MaapSnapshot.__table__
    return connection.execute(
        select(table.c.processed_at).where(table.c.id == snapshot_id)
    ).scalar()


@event.listens_for(MaapSnapshot, "before_update")
def _guard_snapshot_immutability(mapper, connection, target):
    """Reject any flush that rewrites a snapshot after creation.

    The stored ``processed_at`` is read from the row itself, so the guard
    holds for expired or stale instances too.
    """
    state = sa_inspect(target)
    snapshot_id = state.identity[0] if state.identity else None

    processed_changed = state.attrs.processed_at.history.has_changes()
    changed = [name for name in _IMMUTABLE_ATTRS if state.attrs[name].history.has_changes()]
    if not processed_changed and not changed:
        return

    stored = _stored_processed_at(connection, snapshot_id)
    if stored is not None:
        raise AlreadyProcessedError(snapshot_id, stored)
    if changed:
        raise SnapshotImmutableError(
            f"MaapSnapshot id={snapshot_id} is immutable; attempted to change {', '.join(changed)}",
            snapshot_id=snapshot_id,
            employee_id=state.dict.get("employee_id"),
        )
