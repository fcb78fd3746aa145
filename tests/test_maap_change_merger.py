"""Tests for the change merger.

The merger is pure, so persisted check-ins are plain stand-in objects here.

Coverage:
  1. Empty form_params falls back to persisted check-in values (never empty)
  2. Flat keys override persisted values per field; aliases resolve; manager fields
  3. Nested check_in_data is read and flat keys win on conflict
  4. Blank values count as "not submitted"; unknown keys are ignored
  5. close_rating flag parsing
  6. Tenure energy / milestone proposals, malformed values and the phase they belong to
  7. Inputs are never mutated
"""

import copy
from types import SimpleNamespace

import pytest

from maap.services.maap_change_merger import merge, parse_form_params


def _check_in(id=1, shared_notes=None, official_rating=None):
    return SimpleNamespace(id=id, shared_notes=shared_notes, official_rating=official_rating)


def _entries(*assignment_ids):
    return [
        {"assignment_id": aid, "anticipated_energy_percentage": 50, "official_rating": None}
        for aid in assignment_ids
    ]


def _lookup(mapping):
    return lambda assignment_id: mapping.get(assignment_id)


# ── Fallback to persisted state ──────────────────────────────────────────────


class TestFallback:

    def test_empty_form_params_returns_persisted_values(self):
        """No proposals at all must still yield the stored notes and rating."""
        persisted = _check_in(id=7, shared_notes="Existing shared notes", official_rating="exceeding")

        result = merge(_entries(10), {}, _lookup({10: persisted}))

        effective = result.for_assignment(10)
        assert effective.check_in_id == 7
        assert effective.shared_notes == "Existing shared notes"
        assert effective.official_rating == "exceeding"
        assert effective.close_rating is None
        assert not effective.has_proposals

    def test_none_form_params_behaves_like_empty(self):
        persisted = _check_in(shared_notes="kept")
        result = merge(_entries(10), None, _lookup({10: persisted}))
        assert result.for_assignment(10).shared_notes == "kept"

    def test_assignment_without_check_in_or_proposal(self):
        result = merge(_entries(10), {}, _lookup({}))

        effective = result.for_assignment(10)
        assert effective.check_in_id is None
        assert effective.shared_notes is None
        assert effective.official_rating is None

    def test_one_entry_per_maap_data_assignment_in_order(self):
        result = merge(_entries(3, 1, 2), {}, _lookup({}))
        assert [c.assignment_id for c in result] == [3, 1, 2]


# ── Proposals ────────────────────────────────────────────────────────────────


class TestProposals:

    def test_proposal_overrides_only_its_field(self):
        persisted = _check_in(shared_notes="old notes", official_rating="meeting")

        result = merge(
            _entries(10),
            {"check_in_10_final_rating": "exceeding"},
            _lookup({10: persisted}),
        )

        effective = result.for_assignment(10)
        assert effective.official_rating == "exceeding"
        assert effective.shared_notes == "old notes"
        assert effective.proposed_fields == frozenset({"official_rating"})

    def test_official_rating_alias(self):
        result = merge(_entries(10), {"check_in_10_official_rating": "meeting"}, _lookup({}))
        assert result.for_assignment(10).official_rating == "meeting"

    def test_official_complete_alias(self):
        result = merge(_entries(10), {"check_in_10_official_complete": "false"}, _lookup({}))
        assert result.for_assignment(10).close_rating is False

    def test_blank_value_is_not_a_proposal(self):
        persisted = _check_in(shared_notes="keep me")

        result = merge(
            _entries(10),
            {"check_in_10_shared_notes": "   ", "check_in_10_final_rating": None},
            _lookup({10: persisted}),
        )

        effective = result.for_assignment(10)
        assert effective.shared_notes == "keep me"
        assert not effective.has_proposals

    def test_unrecognized_keys_are_ignored(self):
        result = merge(
            _entries(10),
            {"csrf_token": "abc", "check_in_10_private_notes": "x", "commit": "Save"},
            _lookup({}),
        )
        assert not result.for_assignment(10).has_proposals
        assert result.malformed == {}

    def test_proposals_for_unknown_assignment_are_dropped(self):
        result = merge(_entries(10), {"check_in_99_final_rating": "meeting"}, _lookup({}))
        assert result.for_assignment(99) is None

    def test_manager_fields(self):
        persisted = SimpleNamespace(id=1, shared_notes=None, official_rating=None, manager_rating="meeting")

        untouched = merge(_entries(10), {}, _lookup({10: persisted})).for_assignment(10)
        proposed = merge(
            _entries(10),
            {"check_in_10_manager_rating": "exceeding", "check_in_10_manager_complete": "1"},
            _lookup({10: persisted}),
        ).for_assignment(10)

        assert untouched.manager_rating == "meeting"
        assert untouched.manager_complete is None
        assert proposed.manager_rating == "exceeding"
        assert proposed.manager_complete is True
        assert proposed.proposed_fields == {"manager_rating", "manager_complete"}

    def test_nested_check_in_data_is_read(self):
        form = {"check_in_data": {"10": {"shared_notes": "nested", "official_rating": "meeting"}}}

        result = merge(_entries(10), form, _lookup({}))

        effective = result.for_assignment(10)
        assert effective.shared_notes == "nested"
        assert effective.official_rating == "meeting"

    def test_flat_keys_win_over_nested(self):
        form = {
            "check_in_data": {"10": {"shared_notes": "nested"}},
            "check_in_10_shared_notes": "flat",
        }
        result = merge(_entries(10), form, _lookup({}))
        assert result.for_assignment(10).shared_notes == "flat"


class TestA1A2Scenario:
    """Two assignments: A1 has a persisted check-in, A2 has a proposal only."""

    def test_each_assignment_gets_its_own_effective_values(self):
        maap_data = _entries(1, 2)
        persisted = {1: _check_in(id=11, shared_notes="A1 notes", official_rating="meeting")}
        form = {"check_in_2_shared_notes": "A2 notes", "check_in_2_final_rating": "working_to_meet"}

        result = merge(maap_data, form, _lookup(persisted))

        a1, a2 = result.for_assignment(1), result.for_assignment(2)
        assert (a1.shared_notes, a1.official_rating, a1.check_in_id) == ("A1 notes", "meeting", 11)
        assert (a2.shared_notes, a2.official_rating, a2.check_in_id) == ("A2 notes", "working_to_meet", None)
        for entry in maap_data:
            assert "official_check_in" not in entry


# ── Flag parsing ─────────────────────────────────────────────────────────────


@pytest.mark.parametrize("raw, expected", [
    ("true", True), ("1", True), (True, True), (1, True), (" TRUE ", True),
    ("false", False), ("0", False), (False, False), (0, False),
    ("maybe", None), (2, None), (["true"], None),
])
def test_close_rating_parsing(raw, expected):
    result = merge(_entries(10), {"check_in_10_close_rating": raw}, _lookup({}))
    assert result.for_assignment(10).close_rating is expected


# ── Tenure & milestone proposals ─────────────────────────────────────────────


class TestTenureAndMilestoneProposals:

    def test_integer_strings_are_parsed(self):
        parsed = parse_form_params({
            "tenure_10_anticipated_energy": "40",
            "milestone_5_level": 2,
        })
        assert parsed.tenure_energy == {10: 40}
        assert parsed.milestone_levels == {5: 2}
        assert parsed.malformed == {}

    def test_non_integer_values_are_reported(self):
        parsed = parse_form_params({
            "tenure_10_anticipated_energy": "forty",
            "milestone_5_level": "-1",
        })
        assert set(parsed.malformed) == {"tenure_10_anticipated_energy", "milestone_5_level"}
        assert parsed.tenure_energy == {}
        assert parsed.milestone_levels == {}

    def test_tenure_energy_limited_to_maap_data_assignments(self):
        result = merge(
            _entries(10),
            {"tenure_10_anticipated_energy": 60, "tenure_11_anticipated_energy": 20},
            _lookup({}),
        )
        assert result.tenure_energy == {10: 60}

    def test_malformed_tenure_key_for_unknown_assignment_is_dropped(self):
        result = merge(
            _entries(10),
            {"tenure_999_anticipated_energy": "lots", "tenure_10_anticipated_energy": "most"},
            _lookup({}),
        )
        assert set(result.malformed) == {"tenure_10_anticipated_energy"}

    def test_malformed_for_selects_by_phase(self):
        result = merge(
            _entries(10),
            {"tenure_10_anticipated_energy": "most", "milestone_5_level": "high"},
            _lookup({}),
        )
        assert set(result.malformed_for(("check_ins", "milestones"))) == {"milestone_5_level"}
        assert set(result.malformed_for(("tenures",))) == {"tenure_10_anticipated_energy"}
        assert result.malformed_for(("check_ins",)) == {}

    def test_to_dict_is_json_ready(self):
        result = merge(_entries(10), {"milestone_5_level": "3"}, _lookup({}))
        data = result.to_dict()
        assert data["milestone_levels"] == {"5": 3}
        assert data["check_ins"][0]["assignment_id"] == 10


# ── Purity ───────────────────────────────────────────────────────────────────


def test_inputs_are_not_mutated():
    maap_data = _entries(1, 2)
    form = {
        "check_in_1_final_rating": "meeting",
        "check_in_data": {"2": {"shared_notes": "n"}},
        "tenure_1_anticipated_energy": "30",
    }
    maap_before, form_before = copy.deepcopy(maap_data), copy.deepcopy(form)

    merge(maap_data, form, _lookup({1: _check_in()}))

    assert maap_data == maap_before
    assert form == form_before
