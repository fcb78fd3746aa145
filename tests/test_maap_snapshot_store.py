"""Tests for the MAAP snapshot store (maap_snapshot_service + MaapSnapshot model).

Coverage:
  1. create_snapshot stores derived maap_data and verbatim form_params
  2. form_params never changes maap_data
  3. change_type alias table and validation, blank reason, malformed payloads
  4. mark_processed is a one-shot compare-and-set
  5. Read accessors hand out copies
  6. The before_update guard rejects rewrites of a stored snapshot
"""

from datetime import date, datetime, timezone

import pytest
from sqlalchemy import update

from maap.core.exceptions import (
    AlreadyProcessedError,
    ConstructionError,
    NotFoundError,
    SnapshotImmutableError,
    ValidationError,
)
from maap.models import db
from maap.models.assignment import Assignment, AssignmentTenure
from maap.models.maap_snapshot import MaapSnapshot, normalize_change_type
from maap.models.organization import Employee, EmploymentTenure
from maap.services import maap_snapshot_service as store
from maap.services.maap_snapshot_builder import MaapSnapshotBuilder, maap_digest


# ── Helpers ─────────────────────────────────────────────────────────────────


def _make_staffed_employee(org, energies=(50, 30)):
    """Employee employed at ``org`` with one active tenure per energy value."""
    emp = Employee(full_name="Riley Reviewer")
    db.session.add(emp)
    db.session.flush()
    db.session.add(EmploymentTenure(
        employee_id=emp.id, organization_id=org.id, started_at=date(2025, 1, 1),
    ))
    for i, energy in enumerate(energies):
        a = Assignment(organization_id=org.id, title=f"Assignment {i}")
        db.session.add(a)
        db.session.flush()
        db.session.add(AssignmentTenure(
            employee_id=emp.id, assignment_id=a.id,
            anticipated_energy_percentage=energy, started_at=date(2025, 1, 1),
        ))
    db.session.commit()
    return emp


def _create(emp, manager, form_params=None, change_type="check_in_finalization"):
    return store.create_snapshot(emp, manager, change_type, "Quarterly review", form_params)


# ── Create ───────────────────────────────────────────────────────────────────


class TestCreateSnapshot:

    def test_persists_pending_snapshot(self, organization, manager):
        emp = _make_staffed_employee(organization)

        snap = _create(emp, manager)

        assert snap.id is not None
        assert snap.processed_at is None
        assert snap.employee_id == emp.id
        assert snap.created_by_id == manager.id
        assert snap.organization_id == organization.id
        assert snap.maap_data == MaapSnapshotBuilder.build(emp)
        assert snap.maap_digest == maap_digest(snap.maap_data)

    def test_form_params_stored_verbatim(self, organization, manager):
        emp = _make_staffed_employee(organization)
        form = {
            "check_in_1_shared_notes": "  spacing kept  ",
            "unknown_key": ["anything", {"nested": True}],
            "check_in_data": {"1": {"official_rating": "meeting"}},
        }

        snap = _create(emp, manager, form)
        db.session.expire_all()

        assert store.get_form_params(snap.id) == form

    def test_form_params_do_not_change_maap_data(self, organization, manager):
        emp = _make_staffed_employee(organization)
        aid = MaapSnapshotBuilder.build(emp)[0]["assignment_id"]

        plain = _create(emp, manager)
        proposed = _create(emp, manager, {
            f"check_in_{aid}_final_rating": "exceeding",
            f"tenure_{aid}_anticipated_energy": "90",
        })

        assert proposed.maap_data == plain.maap_data
        assert proposed.maap_digest == plain.maap_digest
        for entry in proposed.maap_data:
            assert "official_check_in" not in entry

    def test_caller_dict_is_copied(self, organization, manager):
        emp = _make_staffed_employee(organization)
        form = {"check_in_1_shared_notes": "first"}

        snap = _create(emp, manager, form)
        form["check_in_1_shared_notes"] = "mutated later"

        assert snap.form_params == {"check_in_1_shared_notes": "first"}

    def test_no_employment_tenure_leaves_organization_empty(self, organization, manager):
        emp = Employee(full_name="Contractor")
        db.session.add(emp)
        db.session.commit()

        snap = _create(emp, manager)

        assert snap.organization_id is None
        assert snap.maap_data == []

    def test_created_by_is_optional(self, organization):
        emp = _make_staffed_employee(organization)
        snap = _create(emp, None)
        assert snap.created_by_id is None

    def test_unknown_created_by(self, organization):
        emp = _make_staffed_employee(organization)
        with pytest.raises(NotFoundError, match="Employee id=4242"):
            _create(emp, 4242)

    def test_unknown_employee_is_construction_error(self, manager):
        with pytest.raises(ConstructionError):
            _create(99999, manager)

    def test_blank_reason_rejected(self, organization, manager):
        emp = _make_staffed_employee(organization)
        with pytest.raises(ValidationError, match="reason"):
            store.create_snapshot(emp, manager, "check_in_finalization", "   ")

    def test_non_mapping_form_params_rejected(self, organization, manager):
        emp = _make_staffed_employee(organization)
        with pytest.raises(ValidationError, match="form_params"):
            _create(emp, manager, ["not", "a", "dict"])


class TestChangeType:

    @pytest.mark.parametrize("submitted, stored", [
        ("bulk_check_in_finalization", "bulk_check_in_finalization"),
        ("check_in_finalization", "check_in_finalization"),
        ("assignment_management", "assignment_management"),
        ("milestone_management", "milestone_management"),
        ("individual_check_in_finalization", "check_in_finalization"),
        ("bulk_update", "bulk_check_in_finalization"),
    ])
    def test_alias_table(self, submitted, stored):
        assert normalize_change_type(submitted) == stored

    def test_alias_is_stored_canonically(self, organization, manager):
        emp = _make_staffed_employee(organization)
        snap = _create(emp, manager, change_type="bulk_update")
        assert snap.change_type == "bulk_check_in_finalization"

    @pytest.mark.parametrize("value", ["", None, "position_change", "BULK_UPDATE"])
    def test_unknown_values_rejected(self, value):
        with pytest.raises(ValidationError, match="Invalid change_type"):
            normalize_change_type(value)


# ── mark_processed ───────────────────────────────────────────────────────────


class TestMarkProcessed:

    def test_sets_processed_at_once(self, organization, manager):
        snap = _create(_make_staffed_employee(organization), manager)
        ts = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)

        store.mark_processed(snap, processed_at=ts)
        db.session.commit()

        assert snap.processed_at is not None
        assert snap.is_processed

    def test_second_call_raises(self, organization, manager):
        snap = _create(_make_staffed_employee(organization), manager)
        store.mark_processed(snap)
        db.session.commit()

        with pytest.raises(AlreadyProcessedError) as exc_info:
            store.mark_processed(snap)
        assert exc_info.value.snapshot_id == snap.id

    def test_lost_race_detected_by_compare_and_set(self, organization, manager):
        """A stale in-memory copy cannot overwrite a concurrent finalization."""
        snap = _create(_make_staffed_employee(organization), manager)
        assert snap.processed_at is None
        db.session.execute(
            update(MaapSnapshot)
            .where(MaapSnapshot.id == snap.id)
            .values(processed_at=datetime(2026, 9, 30, tzinfo=timezone.utc))
            .execution_options(synchronize_session=False)
        )
        assert snap.processed_at is None  # stale view

        with pytest.raises(AlreadyProcessedError):
            store.mark_processed(snap)


# ── Reads ────────────────────────────────────────────────────────────────────


class TestReads:

    def test_get_snapshot_not_found(self):
        with pytest.raises(NotFoundError, match="MaapSnapshot id=123"):
            store.get_snapshot(123)

    def test_accessors_return_copies(self, organization, manager):
        snap = _create(_make_staffed_employee(organization), manager, {"k": {"v": 1}})

        data = store.get_maap_data(snap.id)
        data[0]["anticipated_energy_percentage"] = 0
        data.append({"assignment_id": -1})
        params = store.get_form_params(snap.id)
        params["k"]["v"] = 2

        db.session.expire_all()
        assert store.get_maap_data(snap.id) == snap.maap_data
        assert len(snap.maap_data) == 2
        assert store.get_form_params(snap.id) == {"k": {"v": 1}}

    def test_list_for_employee_pending_only(self, organization, manager):
        emp = _make_staffed_employee(organization)
        done = _create(emp, manager)
        pending = _create(emp, manager)
        store.mark_processed(done)
        db.session.commit()

        all_ids = [s.id for s in store.list_for_employee(emp.id)]
        pending_ids = [s.id for s in store.list_for_employee(emp.id, pending_only=True)]

        assert set(all_ids) == {done.id, pending.id}
        assert pending_ids == [pending.id]


# ── Immutability guard ───────────────────────────────────────────────────────


class TestImmutability:

    def test_rewriting_maap_data_rejected(self, organization, manager):
        snap = _create(_make_staffed_employee(organization), manager)

        snap._maap_data = []
        with pytest.raises(SnapshotImmutableError, match="_maap_data"):
            db.session.flush()
        db.session.rollback()

    def test_rewriting_form_params_rejected(self, organization, manager):
        snap = _create(_make_staffed_employee(organization), manager, {"a": 1})

        snap._form_params = {"a": 2}
        with pytest.raises(SnapshotImmutableError):
            db.session.commit()
        db.session.rollback()

    def test_changing_processed_snapshot_rejected(self, organization, manager):
        snap = _create(_make_staffed_employee(organization), manager)
        store.mark_processed(snap)
        db.session.commit()

        snap.reason = "rewritten"
        with pytest.raises(AlreadyProcessedError):
            db.session.flush()
        db.session.rollback()

    def test_clearing_processed_at_rejected(self, organization, manager):
        snap = _create(_make_staffed_employee(organization), manager)
        store.mark_processed(snap)
        db.session.commit()

        snap.processed_at = None
        with pytest.raises(AlreadyProcessedError):
            db.session.flush()
        db.session.rollback()
