"""
Entity gateway: read/write primitives over the live performance records.

The snapshot builder, change merger and finalization processor reach the
database only through these functions.  None of them commit: transaction
boundaries belong to the caller (one transaction per employee finalization).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime

from sqlalchemy import func, or_, select

from maap.models import db
from maap.models.ability import Ability, Milestone
from maap.models.assignment import AssignmentCheckIn, AssignmentTenure
from maap.models.maap_snapshot import MaapSnapshot
from maap.models.organization import Employee, EmploymentTenure

logger = logging.getLogger(__name__)


def _as_date(as_of: date | datetime | None) -> date:
    if as_of is None:
        return date.today()
    if isinstance(as_of, datetime):
        return as_of.date()
    return as_of


# ── Employees & employment ────────────────────────────────────────────────────


def get_employee(employee_id: int) -> Employee | None:
    return db.session.get(Employee, employee_id)


def active_employment_tenure(employee_id: int, as_of: date | datetime | None = None) -> EmploymentTenure | None:
    """Return the employment tenure active on ``as_of`` (latest start wins)."""
    day = _as_date(as_of)
    return db.session.execute(
        select(EmploymentTenure)
        .where(
            EmploymentTenure.employee_id == employee_id,
            EmploymentTenure.started_at <= day,
            or_(EmploymentTenure.ended_at.is_(None), EmploymentTenure.ended_at > day),
        )
        .order_by(EmploymentTenure.started_at.desc(), EmploymentTenure.id.desc())
        .limit(1)
    ).scalar_one_or_none()


# ── Assignment tenures ────────────────────────────────────────────────────────


def active_assignment_tenures(employee_id: int, as_of: date | datetime | None = None) -> list[AssignmentTenure]:
    """All tenures active on ``as_of``, ordered by (assignment_id, id)."""
    day = _as_date(as_of)
    return list(db.session.execute(
        select(AssignmentTenure)
        .where(
            AssignmentTenure.employee_id == employee_id,
            AssignmentTenure.started_at <= day,
            or_(AssignmentTenure.ended_at.is_(None), AssignmentTenure.ended_at > day),
        )
        .order_by(AssignmentTenure.assignment_id, AssignmentTenure.id)
    ).scalars())


def active_assignment_tenure(employee_id: int, assignment_id: int,
                             as_of: date | datetime | None = None) -> AssignmentTenure | None:
    day = _as_date(as_of)
    return db.session.execute(
        select(AssignmentTenure)
        .where(
            AssignmentTenure.employee_id == employee_id,
            AssignmentTenure.assignment_id == assignment_id,
            AssignmentTenure.started_at <= day,
            or_(AssignmentTenure.ended_at.is_(None), AssignmentTenure.ended_at > day),
        )
        .order_by(AssignmentTenure.started_at.desc(), AssignmentTenure.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def update_tenure_energy(tenure: AssignmentTenure, energy: int, *, on: date | None = None) -> AssignmentTenure:
    """Change a tenure's anticipated energy, preserving history.

    A tenure that started today is edited in place; otherwise it is ended
    today and a successor tenure carrying the same rating starts today.
    """
    today = on or date.today()
    if tenure.anticipated_energy_percentage == energy:
        return tenure
    if tenure.started_at == today:
        tenure.anticipated_energy_percentage = energy
        return tenure

    tenure.ended_at = today
    successor = AssignmentTenure(
        employee_id=tenure.employee_id,
        assignment_id=tenure.assignment_id,
        anticipated_energy_percentage=energy,
        official_rating=tenure.official_rating,
        started_at=today,
    )
    db.session.add(successor)
    db.session.flush()
    return successor


# ── Check-ins ─────────────────────────────────────────────────────────────────


def open_check_in(employee_id: int, assignment_id: int) -> AssignmentCheckIn | None:
    """Return the open check-in for the pair, oldest first if several slipped in."""
    return db.session.execute(
        select(AssignmentCheckIn)
        .where(
            AssignmentCheckIn.employee_id == employee_id,
            AssignmentCheckIn.assignment_id == assignment_id,
            AssignmentCheckIn.official_check_in_completed_at.is_(None),
        )
        .order_by(AssignmentCheckIn.id)
        .limit(1)
    ).scalar_one_or_none()


def find_or_create_check_in(employee_id: int, assignment_id: int) -> AssignmentCheckIn:
    check_in = open_check_in(employee_id, assignment_id)
    if check_in is not None:
        return check_in
    check_in = AssignmentCheckIn(
        employee_id=employee_id,
        assignment_id=assignment_id,
        check_in_started_on=date.today(),
    )
    db.session.add(check_in)
    db.session.flush()
    logger.debug("Opened check-in %s for employee=%s assignment=%s",
                 check_in.id, employee_id, assignment_id)
    return check_in


# ── Abilities & milestones ────────────────────────────────────────────────────


def get_ability(ability_id: int) -> Ability | None:
    return db.session.get(Ability, ability_id)


def highest_milestone_level(employee_id: int, ability_id: int) -> int | None:
    return db.session.execute(
        select(func.max(Milestone.milestone_level)).where(
            Milestone.employee_id == employee_id,
            Milestone.ability_id == ability_id,
        )
    ).scalar()


def create_milestone(employee_id: int, ability_id: int, level: int, *,
                     certified_by_id: int | None = None,
                     attained_at: date | None = None,
                     created_at: datetime | None = None,
                     maap_snapshot_id: int | None = None) -> Milestone:
    milestone = Milestone(
        employee_id=employee_id,
        ability_id=ability_id,
        milestone_level=level,
        certified_by_id=certified_by_id,
        attained_at=attained_at or date.today(),
        maap_snapshot_id=maap_snapshot_id,
    )
    if created_at is not None:
        milestone.created_at = created_at
    db.session.add(milestone)
    db.session.flush()
    return milestone


def milestones_created_since(employee_id: int, since: datetime | None) -> list[Milestone]:
    """Milestones written after ``since`` (all of them when ``since`` is None)."""
    stmt = select(Milestone).where(Milestone.employee_id == employee_id)
    if since is not None:
        stmt = stmt.where(Milestone.created_at > since)
    stmt = stmt.order_by(Milestone.ability_id, Milestone.milestone_level, Milestone.id)
    return list(db.session.execute(stmt).scalars())


# ── Snapshot history ──────────────────────────────────────────────────────────


def last_processed_at(
    employee_id: int,
    *,
    excluding_snapshot_id: int | None = None,
    change_types: Iterable[str] | None = None,
) -> datetime | None:
    """``processed_at`` of the employee's most recent finalized snapshot.

    ``change_types`` limits the search to snapshots of those types.
    """
    stmt = select(func.max(MaapSnapshot.processed_at)).where(
        MaapSnapshot.employee_id == employee_id,
        MaapSnapshot.processed_at.isnot(None),
    )
    if excluding_snapshot_id is not None:
        stmt = stmt.where(MaapSnapshot.id != excluding_snapshot_id)
    if change_types is not None:
        stmt = stmt.where(MaapSnapshot.change_type.in_(list(change_types)))
    return db.session.execute(stmt).scalar()
