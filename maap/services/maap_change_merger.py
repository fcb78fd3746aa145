"""
Change merger: overlays the operator's proposed changes on persisted state.

Review forms submit a flat mapping.  Recognised keys:

    check_in_<assignment_id>_shared_notes        proposed shared notes
    check_in_<assignment_id>_final_rating        proposed official rating
    check_in_<assignment_id>_official_rating     (alias of final_rating)
    check_in_<assignment_id>_close_rating        "true"/"false": finalize or keep open
    check_in_<assignment_id>_official_complete   (alias of close_rating)
    check_in_<assignment_id>_manager_rating      proposed manager-side rating
    check_in_<assignment_id>_manager_complete    "true"/"false": mark the manager side done or reopen it
    tenure_<assignment_id>_anticipated_energy    proposed energy 0-100
    milestone_<ability_id>_level                 proposed milestone level

Older bulk forms nest check-in fields under ``check_in_data`` keyed by
assignment id; those are read too, and flat keys win on conflict.  Any other
key is ignored.

The merge is a pure function: it never writes to the database and never
touches ``maap_data`` or ``form_params``.  When nothing was proposed for a
field, the effective value is the one stored on the open check-in.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

CHECK_IN_KEY_RE = re.compile(r"^check_in_(\d+)_([a-z_]+)$")
TENURE_KEY_RE = re.compile(r"^tenure_(\d+)_anticipated_energy$")
MILESTONE_KEY_RE = re.compile(r"^milestone_(\d+)_level$")

# Submitted field name → effective field
CHECK_IN_FIELDS = {
    "shared_notes": "shared_notes",
    "final_rating": "official_rating",
    "official_rating": "official_rating",
    "close_rating": "close_rating",
    "official_complete": "close_rating",
    "manager_rating": "manager_rating",
    "manager_complete": "manager_complete",
}

# Malformed integer keys belong to the phase that would consume them
_PHASE_KEY_PATTERNS = (
    (TENURE_KEY_RE, "tenures"),
    (MILESTONE_KEY_RE, "milestones"),
)

_FLAG_VALUES = {"true": True, "1": True, "false": False, "0": False}


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_flag(value) -> bool | None:
    """Parse a close flag: "true"/"1"/True/1, "false"/"0"/False/0, else None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return _FLAG_VALUES.get(str(value))
    if isinstance(value, str):
        return _FLAG_VALUES.get(value.strip().lower())
    return None


def phase_for_key(key: str) -> str | None:
    for pattern, phase in _PHASE_KEY_PATTERNS:
        if pattern.match(key):
            return phase
    return None


def _parse_int(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and re.fullmatch(r"\s*-?\d+\s*", value):
        return int(value)
    return None


# ── Result types ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class EffectiveCheckIn:
    """Effective official check-in values for one assignment."""

    assignment_id: int
    check_in_id: int | None
    shared_notes: str | None
    official_rating: str | None
    close_rating: bool | None = None
    manager_rating: str | None = None
    manager_complete: bool | None = None
    proposed_fields: frozenset[str] = frozenset()

    @property
    def has_proposals(self) -> bool:
        return bool(self.proposed_fields)

    def to_dict(self) -> dict:
        return {
            "assignment_id": self.assignment_id,
            "check_in_id": self.check_in_id,
            "shared_notes": self.shared_notes,
            "official_rating": self.official_rating,
            "close_rating": self.close_rating,
            "manager_rating": self.manager_rating,
            "manager_complete": self.manager_complete,
            "proposed_fields": sorted(self.proposed_fields),
        }


@dataclass(frozen=True)
class ParsedFormParams:
    check_ins: dict[int, dict] = field(default_factory=dict)
    tenure_energy: dict[int, int] = field(default_factory=dict)
    milestone_levels: dict[int, int] = field(default_factory=dict)
    malformed: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ChangeRequest:
    """Ephemeral merge result.  Held in memory for one processing run only."""

    check_ins: dict[int, EffectiveCheckIn]
    tenure_energy: dict[int, int] = field(default_factory=dict)
    milestone_levels: dict[int, int] = field(default_factory=dict)
    malformed: dict[str, str] = field(default_factory=dict)

    def __iter__(self):
        return iter(self.check_ins.values())

    def for_assignment(self, assignment_id: int) -> EffectiveCheckIn | None:
        return self.check_ins.get(assignment_id)

    def malformed_for(self, phases) -> dict[str, str]:
        """Malformed keys that one of ``phases`` would have consumed."""
        return {k: v for k, v in self.malformed.items() if phase_for_key(k) in phases}

    def to_dict(self) -> dict:
        return {
            "check_ins": [c.to_dict() for c in self.check_ins.values()],
            "tenure_energy": {str(k): v for k, v in sorted(self.tenure_energy.items())},
            "milestone_levels": {str(k): v for k, v in sorted(self.milestone_levels.items())},
            "malformed": dict(sorted(self.malformed.items())),
        }


# ── Parsing ───────────────────────────────────────────────────────────────────


def parse_form_params(form_params: Mapping | None) -> ParsedFormParams:
    """Split a review-form payload into per-assignment proposals.

    Blank values count as "not submitted".  Integer-valued keys whose value
    is not an integer are reported in ``malformed`` rather than dropped.
    """
    check_ins: dict[int, dict] = {}
    tenure_energy: dict[int, int] = {}
    milestone_levels: dict[int, int] = {}
    malformed: dict[str, str] = {}

    if not form_params:
        return ParsedFormParams()

    nested = form_params.get("check_in_data")
    if isinstance(nested, Mapping):
        for raw_id, fields in nested.items():
            assignment_id = _parse_int(raw_id)
            if assignment_id is None or not isinstance(fields, Mapping):
                continue
            for name, value in fields.items():
                target = CHECK_IN_FIELDS.get(name)
                if target and not _is_blank(value):
                    check_ins.setdefault(assignment_id, {})[target] = value

    for key, value in form_params.items():
        if not isinstance(key, str):
            continue

        match = CHECK_IN_KEY_RE.match(key)
        if match:
            target = CHECK_IN_FIELDS.get(match.group(2))
            if target and not _is_blank(value):
                check_ins.setdefault(int(match.group(1)), {})[target] = value
            continue

        match = TENURE_KEY_RE.match(key)
        if match:
            if _is_blank(value):
                continue
            energy = _parse_int(value)
            if energy is None:
                malformed[key] = f"anticipated energy must be an integer, got {value!r}"
            else:
                tenure_energy[int(match.group(1))] = energy
            continue

        match = MILESTONE_KEY_RE.match(key)
        if match:
            if _is_blank(value):
                continue
            level = _parse_int(value)
            if level is None or level < 0:
                malformed[key] = f"milestone level must be a non-negative integer, got {value!r}"
            else:
                milestone_levels[int(match.group(1))] = level

    return ParsedFormParams(check_ins, tenure_energy, milestone_levels, malformed)


# ── Merge ─────────────────────────────────────────────────────────────────────


def merge(maap_data: list[dict], form_params: Mapping | None,
          check_in_lookup: Callable[[int], object | None]) -> ChangeRequest:
    """Compute the effective check-in state for every assignment in ``maap_data``.

    Args:
        maap_data: Snapshot entries; only ``assignment_id`` is read.
        form_params: Raw review-form payload (may be empty).
        check_in_lookup: ``assignment_id -> open AssignmentCheckIn | None``.

    Returns:
        ChangeRequest whose ``check_ins`` has one entry per maap_data entry,
        in maap_data order.  Proposals override persisted values; absent
        proposals fall back to the persisted check-in, never to nothing.
    """
    parsed = parse_form_params(form_params)

    effective: dict[int, EffectiveCheckIn] = {}
    for entry in maap_data:
        assignment_id = entry["assignment_id"]
        persisted = check_in_lookup(assignment_id)
        proposed = parsed.check_ins.get(assignment_id, {})

        shared_notes = proposed.get("shared_notes", getattr(persisted, "shared_notes", None))
        official_rating = proposed.get("official_rating", getattr(persisted, "official_rating", None))
        close_rating = _parse_flag(proposed["close_rating"]) if "close_rating" in proposed else None
        manager_rating = proposed.get("manager_rating", getattr(persisted, "manager_rating", None))
        manager_complete = _parse_flag(proposed["manager_complete"]) if "manager_complete" in proposed else None

        effective[assignment_id] = EffectiveCheckIn(
            assignment_id=assignment_id,
            check_in_id=getattr(persisted, "id", None),
            shared_notes=shared_notes,
            official_rating=official_rating,
            close_rating=close_rating,
            manager_rating=manager_rating,
            manager_complete=manager_complete,
            proposed_fields=frozenset(proposed),
        )

    known = set(effective)
    for assignment_id in sorted(set(parsed.check_ins) - known):
        logger.debug("Ignoring check-in proposals for assignment %s not in maap_data", assignment_id)

    # Tenure proposals, valid or not, only count for assignments in maap_data
    malformed = {
        key: reason for key, reason in parsed.malformed.items()
        if not (TENURE_KEY_RE.match(key) and int(TENURE_KEY_RE.match(key).group(1)) not in known)
    }

    return ChangeRequest(
        check_ins=effective,
        tenure_energy={k: v for k, v in parsed.tenure_energy.items() if k in known},
        milestone_levels=dict(parsed.milestone_levels),
        malformed=malformed,
    )
