"""Tests for MaapSnapshotBuilder.

Coverage:
  1. One entry per active tenure, ordered by assignment_id, exactly three keys
  2. Tenures without check-ins are included; ended/future tenures are not
  3. Builds are idempotent (same JSON, same digest)
  4. Check-in state never leaks into maap_data
  5. ConstructionError on unresolvable employee, corrupt or duplicate tenures

Run: APP_ENV=testing python -m pytest tests/test_maap_snapshot_builder.py -v
"""

from datetime import date

import pytest

from maap.core.exceptions import ConstructionError
from maap.models import db
from maap.models.assignment import Assignment, AssignmentCheckIn, AssignmentTenure
from maap.models.organization import Employee
from maap.services.maap_snapshot_builder import (
    MAAP_ENTRY_KEYS,
    MaapSnapshotBuilder,
    canonical_json,
    maap_digest,
)

START = date(2026, 1, 5)


# ── Helpers ─────────────────────────────────────────────────────────────────


def _make_employee(name="Avery Engineer"):
    emp = Employee(full_name=name)
    db.session.add(emp)
    db.session.flush()
    return emp


def _make_assignment(org, title):
    a = Assignment(organization_id=org.id, title=title)
    db.session.add(a)
    db.session.flush()
    return a


def _make_tenure(emp, assignment, energy=50, rating=None, started_at=START, ended_at=None):
    t = AssignmentTenure(
        employee_id=emp.id,
        assignment_id=assignment.id,
        anticipated_energy_percentage=energy,
        official_rating=rating,
        started_at=started_at,
        ended_at=ended_at,
    )
    db.session.add(t)
    db.session.flush()
    return t


# ── Shape & ordering ─────────────────────────────────────────────────────────


class TestBuildShape:

    def test_entries_ordered_by_assignment_id(self, organization):
        """Tenure creation order must not leak into maap_data order."""
        emp = _make_employee()
        a1 = _make_assignment(organization, "Backend")
        a2 = _make_assignment(organization, "On-call")
        _make_tenure(emp, a2, energy=30)
        _make_tenure(emp, a1, energy=50, rating="meeting")

        data = MaapSnapshotBuilder.build(emp)

        assert [e["assignment_id"] for e in data] == [a1.id, a2.id]
        assert data[0] == {
            "assignment_id": a1.id,
            "anticipated_energy_percentage": 50,
            "official_rating": "meeting",
        }
        assert data[1]["official_rating"] is None

    def test_entries_have_exactly_the_three_keys(self, organization):
        emp = _make_employee()
        _make_tenure(emp, _make_assignment(organization, "Backend"))

        (entry,) = MaapSnapshotBuilder.build(emp)

        assert set(entry) == set(MAAP_ENTRY_KEYS)
        assert "official_check_in" not in entry

    def test_tenure_without_check_in_is_included(self, organization):
        emp = _make_employee()
        a1 = _make_assignment(organization, "Backend")
        a2 = _make_assignment(organization, "Docs")
        _make_tenure(emp, a1)
        _make_tenure(emp, a2)
        db.session.add(AssignmentCheckIn(employee_id=emp.id, assignment_id=a1.id, shared_notes="n"))
        db.session.flush()

        data = MaapSnapshotBuilder.build(emp)

        assert {e["assignment_id"] for e in data} == {a1.id, a2.id}

    def test_check_in_values_never_enter_maap_data(self, organization):
        """An open check-in's rating must not replace the tenure's official rating."""
        emp = _make_employee()
        a1 = _make_assignment(organization, "Backend")
        _make_tenure(emp, a1, rating="meeting")
        db.session.add(AssignmentCheckIn(
            employee_id=emp.id, assignment_id=a1.id, official_rating="exceeding", shared_notes="x",
        ))
        db.session.flush()

        (entry,) = MaapSnapshotBuilder.build(emp)

        assert entry["official_rating"] == "meeting"

    def test_only_tenures_active_on_as_of(self, organization):
        emp = _make_employee()
        ended = _make_assignment(organization, "Old")
        future = _make_assignment(organization, "Future")
        current = _make_assignment(organization, "Current")
        _make_tenure(emp, ended, started_at=date(2025, 1, 1), ended_at=date(2025, 6, 1))
        _make_tenure(emp, future, started_at=date(2027, 1, 1))
        _make_tenure(emp, current, started_at=date(2025, 1, 1))

        data = MaapSnapshotBuilder.build(emp, as_of=date(2026, 3, 1))

        assert [e["assignment_id"] for e in data] == [current.id]

    def test_no_active_tenures_builds_empty_list(self):
        emp = _make_employee()
        assert MaapSnapshotBuilder.build(emp) == []

    def test_accepts_employee_id(self, organization):
        emp = _make_employee()
        _make_tenure(emp, _make_assignment(organization, "Backend"))

        assert MaapSnapshotBuilder.build(emp.id) == MaapSnapshotBuilder.build(emp)


# ── Idempotence ──────────────────────────────────────────────────────────────


class TestIdempotentBuild:

    def test_repeated_builds_are_identical(self, organization):
        emp = _make_employee()
        for title, energy in (("A", 40), ("B", 35), ("C", 25)):
            _make_tenure(emp, _make_assignment(organization, title), energy=energy)

        first = MaapSnapshotBuilder.build(emp)
        second = MaapSnapshotBuilder.build(emp)

        assert canonical_json(first) == canonical_json(second)
        assert maap_digest(first) == maap_digest(second)

    def test_canonical_json_is_key_order_independent(self):
        a = [{"official_rating": None, "assignment_id": 1, "anticipated_energy_percentage": 10}]
        b = [{"assignment_id": 1, "anticipated_energy_percentage": 10, "official_rating": None}]
        assert canonical_json(a) == canonical_json(b)
        assert len(maap_digest(a)) == 64


# ── Construction errors ──────────────────────────────────────────────────────


class TestConstructionErrors:

    def test_unknown_employee_id(self):
        with pytest.raises(ConstructionError, match="not found"):
            MaapSnapshotBuilder.build(99999)

    def test_none_employee(self):
        with pytest.raises(ConstructionError, match="required"):
            MaapSnapshotBuilder.build(None)

    def test_non_numeric_employee_reference(self):
        with pytest.raises(ConstructionError, match="Invalid employee reference"):
            MaapSnapshotBuilder.build("not-an-id")

    def test_missing_energy_is_not_skipped(self, organization):
        emp = _make_employee()
        _make_tenure(emp, _make_assignment(organization, "Legacy"), energy=None)

        with pytest.raises(ConstructionError, match="anticipated_energy_percentage") as exc_info:
            MaapSnapshotBuilder.build(emp)
        assert exc_info.value.employee_id == emp.id

    def test_energy_out_of_range(self, organization):
        emp = _make_employee()
        _make_tenure(emp, _make_assignment(organization, "Overloaded"), energy=150)

        with pytest.raises(ConstructionError):
            MaapSnapshotBuilder.build(emp)

    def test_unknown_rating(self, organization):
        emp = _make_employee()
        _make_tenure(emp, _make_assignment(organization, "Backend"), rating="superb")

        with pytest.raises(ConstructionError, match="official_rating"):
            MaapSnapshotBuilder.build(emp)

    def test_duplicate_active_tenure_for_assignment(self, organization):
        emp = _make_employee()
        a1 = _make_assignment(organization, "Backend")
        _make_tenure(emp, a1, energy=50)
        _make_tenure(emp, a1, energy=20)

        with pytest.raises(ConstructionError, match="more than one active tenure"):
            MaapSnapshotBuilder.build(emp)
