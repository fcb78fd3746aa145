"""
MaapSnapshotBuilder: derives ``maap_data`` from persisted assignment tenures.

maap_data is a pure function of (employee, as_of) over AssignmentTenure rows:
    [
        {"assignment_id": 80, "anticipated_energy_percentage": 50, "official_rating": "meeting"},
        {"assignment_id": 81, "anticipated_energy_percentage": 30, "official_rating": None},
    ]

Check-in and milestone state never enter maap_data.  Entries are ordered by
assignment_id; two builds over unchanged rows yield the same canonical JSON
and digest.
"""

from __future__ import annotations

import hashlib
import json
import logging
from datetime import date, datetime

from maap.core.exceptions import ConstructionError
from maap.models.assignment import VALID_RATINGS
from maap.models.organization import Employee
from maap.services import entity_gateway

logger = logging.getLogger(__name__)

MAAP_ENTRY_KEYS = ("assignment_id", "anticipated_energy_percentage", "official_rating")


def canonical_json(maap_data: list[dict]) -> str:
    """Stable serialisation used for digests and byte-level comparisons."""
    return json.dumps(maap_data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def maap_digest(maap_data: list[dict]) -> str:
    return hashlib.sha256(canonical_json(maap_data).encode("utf-8")).hexdigest()


class MaapSnapshotBuilder:
    """Builds the derived, DB-state-only payload of a snapshot."""

    @staticmethod
    def resolve_employee(employee: Employee | int | None) -> Employee:
        """Accept an Employee or its id; raise ConstructionError if unresolvable."""
        if isinstance(employee, Employee):
            if employee.id is None:
                raise ConstructionError("Employee has not been persisted")
            return employee
        if employee is None:
            raise ConstructionError("Employee reference is required")
        try:
            employee_id = int(employee)
        except (TypeError, ValueError):
            raise ConstructionError(f"Invalid employee reference {employee!r}") from None
        resolved = entity_gateway.get_employee(employee_id)
        if resolved is None:
            raise ConstructionError(f"Employee id={employee_id} not found", employee_id=employee_id)
        return resolved

    @staticmethod
    def build(employee: Employee | int, as_of: date | datetime | None = None) -> list[dict]:
        """Return maap_data for the employee's tenures active on ``as_of`` (default: today).

        Raises:
            ConstructionError: unresolvable employee, or a malformed / duplicate
                active tenure.  A bad tenure is never skipped.
        """
        emp = MaapSnapshotBuilder.resolve_employee(employee)
        tenures = entity_gateway.active_assignment_tenures(emp.id, as_of)

        entries: list[dict] = []
        seen: set[int] = set()
        for tenure in tenures:
            if tenure.assignment_id in seen:
                raise ConstructionError(
                    f"Employee id={emp.id} has more than one active tenure "
                    f"for assignment id={tenure.assignment_id}",
                    employee_id=emp.id,
                )
            seen.add(tenure.assignment_id)
            entries.append(MaapSnapshotBuilder._entry_for(emp.id, tenure))

        entries.sort(key=lambda e: e["assignment_id"])
        logger.debug(
            "Built maap_data with %d assignments",
            len(entries),
            extra={"employee_id": emp.id},
        )
        return entries

    @staticmethod
    def _entry_for(employee_id: int, tenure) -> dict:
        energy = tenure.anticipated_energy_percentage
        if isinstance(energy, bool) or not isinstance(energy, int) or not 0 <= energy <= 100:
            raise ConstructionError(
                f"AssignmentTenure id={tenure.id} has invalid anticipated_energy_percentage {energy!r}",
                employee_id=employee_id,
            )
        rating = tenure.official_rating
        if rating is not None and rating not in VALID_RATINGS:
            raise ConstructionError(
                f"AssignmentTenure id={tenure.id} has unknown official_rating {rating!r}",
                employee_id=employee_id,
            )
        return {
            "assignment_id": tenure.assignment_id,
            "anticipated_energy_percentage": energy,
            "official_rating": rating,
        }
