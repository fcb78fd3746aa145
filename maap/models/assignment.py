"""
Assignments, assignment tenures and assignment check-ins.

Business rules:
- One active AssignmentTenure per (employee, assignment).  Energy changes end
  the current tenure and open a new one so history is preserved.
- One open AssignmentCheckIn per (employee, assignment).  A check-in is open
  until ``official_check_in_completed_at`` is set by finalization.
"""

from datetime import date

from maap.models import db, _utcnow

# ── Constants ─────────────────────────────────────────────────────────────────

VALID_RATINGS = frozenset({
    "not_meeting",
    "working_to_meet",
    "meeting",
    "exceeding",
})


class Assignment(db.Model):
    __tablename__ = "assignments"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def display_label(self) -> str | None:
        return self.title

    def to_dict(self) -> dict:
        return {"id": self.id, "organization_id": self.organization_id, "title": self.title}

    def __repr__(self) -> str:
        return f"<Assignment #{self.id} {self.title}>"


class AssignmentTenure(db.Model):
    """Links an employee to an assignment with an energy allocation."""

    __tablename__ = "assignment_tenures"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(
        db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    assignment_id = db.Column(
        db.Integer, db.ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    anticipated_energy_percentage = db.Column(
        db.Integer, nullable=True, comment="0-100; NULL only on legacy/corrupt rows",
    )
    official_rating = db.Column(
        db.String(20), nullable=True, comment="not_meeting | working_to_meet | meeting | exceeding",
    )
    started_at = db.Column(db.Date, nullable=False, default=date.today)
    ended_at = db.Column(db.Date, nullable=True)

    assignment = db.relationship("Assignment")

    __table_args__ = (
        db.Index("ix_assignment_tenure_employee_assignment", "employee_id", "assignment_id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "assignment_id": self.assignment_id,
            "anticipated_energy_percentage": self.anticipated_energy_percentage,
            "official_rating": self.official_rating,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }

    def __repr__(self) -> str:
        return f"<AssignmentTenure #{self.id} e={self.employee_id} a={self.assignment_id}>"


class AssignmentCheckIn(db.Model):
    """Review record for one (employee, assignment) pair within a review cycle."""

    __tablename__ = "assignment_check_ins"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(
        db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    assignment_id = db.Column(
        db.Integer, db.ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    check_in_started_on = db.Column(db.Date, nullable=False, default=date.today)

    # Employee / manager sides
    actual_energy_percentage = db.Column(db.Integer, nullable=True)
    employee_rating = db.Column(db.String(20), nullable=True)
    employee_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    manager_rating = db.Column(db.String(20), nullable=True)
    manager_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Official (shared) outcome
    shared_notes = db.Column(db.Text, nullable=True)
    official_rating = db.Column(db.String(20), nullable=True)
    official_check_in_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_by_id = db.Column(
        db.Integer, db.ForeignKey("employees.id", ondelete="SET NULL"), nullable=True,
    )
    maap_snapshot_id = db.Column(
        db.Integer,
        db.ForeignKey("maap_snapshots.id", ondelete="SET NULL"),
        nullable=True,
        comment="Snapshot whose finalization closed this check-in",
    )

    assignment = db.relationship("Assignment")

    __table_args__ = (
        db.Index("ix_check_in_employee_assignment", "employee_id", "assignment_id"),
    )

    @property
    def is_open(self) -> bool:
        return self.official_check_in_completed_at is None

    def to_dict(self) -> dict:
        def _ts(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "assignment_id": self.assignment_id,
            "check_in_started_on": _ts(self.check_in_started_on),
            "employee_completed_at": _ts(self.employee_completed_at),
            "manager_completed_at": _ts(self.manager_completed_at),
            "shared_notes": self.shared_notes,
            "official_rating": self.official_rating,
            "official_check_in_completed_at": _ts(self.official_check_in_completed_at),
            "finalized_by_id": self.finalized_by_id,
            "maap_snapshot_id": self.maap_snapshot_id,
        }

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<AssignmentCheckIn #{self.id} e={self.employee_id} a={self.assignment_id} {state}>"
