"""
Organizations, employees and employment tenures.

These are owned by the wider platform; the snapshot engine only reads them
(through ``maap.services.entity_gateway``).
"""

from datetime import date

from maap.models import db, _utcnow


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def display_label(self) -> str | None:
        return self.name

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}

    def __repr__(self) -> str:
        return f"<Organization #{self.id} {self.name}>"


class Employee(db.Model):
    """A person employed by (at most) one organization at a time."""

    __tablename__ = "employees"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def display_label(self) -> str | None:
        return self.full_name

    def to_dict(self) -> dict:
        return {"id": self.id, "full_name": self.full_name, "email": self.email}

    def __repr__(self) -> str:
        return f"<Employee #{self.id} {self.full_name}>"


class EmploymentTenure(db.Model):
    """Employment of an employee at an organization over a date range.

    Active on day ``d`` when ``started_at <= d`` and ``ended_at`` is unset or
    later than ``d``.
    """

    __tablename__ = "employment_tenures"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(
        db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    manager_id = db.Column(
        db.Integer, db.ForeignKey("employees.id", ondelete="SET NULL"), nullable=True,
    )
    started_at = db.Column(db.Date, nullable=False, default=date.today)
    ended_at = db.Column(db.Date, nullable=True)

    employee = db.relationship("Employee", foreign_keys=[employee_id])
    organization = db.relationship("Organization")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "organization_id": self.organization_id,
            "manager_id": self.manager_id,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }
