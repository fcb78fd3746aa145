"""
Change detection for review screens.

Two questions, both read-only:

    drift_since_snapshot       has live tenure state moved since capture?
    pending_check_in_changes   what would finalizing this snapshot change?
"""

from __future__ import annotations

import logging

from maap.models.maap_snapshot import MaapSnapshot
from maap.services import entity_gateway
from maap.services.maap_change_merger import merge
from maap.services.maap_snapshot_builder import MaapSnapshotBuilder, maap_digest

logger = logging.getLogger(__name__)

DRIFT_FIELDS = ("anticipated_energy_percentage", "official_rating")
CHECK_IN_FIELDS = ("shared_notes", "official_rating", "manager_rating")


def drift_since_snapshot(snapshot: MaapSnapshot, as_of=None) -> dict:
    """Compare the stored maap_data with a fresh build over current tenures.

    Returns ``{"has_changes", "added", "removed", "changed"}`` where
    ``added`` / ``removed`` are assignment ids and ``changed`` lists
    ``{assignment_id, field, snapshot, current}``.

    Raises:
        ConstructionError: the current tenure state cannot be built.
    """
    current = MaapSnapshotBuilder.build(snapshot.employee_id, as_of)
    if snapshot.maap_digest and maap_digest(current) == snapshot.maap_digest:
        return {"has_changes": False, "added": [], "removed": [], "changed": []}

    stored_by_id = {e["assignment_id"]: e for e in snapshot.maap_data}
    current_by_id = {e["assignment_id"]: e for e in current}

    added = sorted(set(current_by_id) - set(stored_by_id))
    removed = sorted(set(stored_by_id) - set(current_by_id))
    changed = []
    for assignment_id in sorted(set(stored_by_id) & set(current_by_id)):
        for field in DRIFT_FIELDS:
            before = stored_by_id[assignment_id].get(field)
            after = current_by_id[assignment_id].get(field)
            if before != after:
                changed.append({
                    "assignment_id": assignment_id,
                    "field": field,
                    "snapshot": before,
                    "current": after,
                })

    has_changes = bool(added or removed or changed)
    if has_changes:
        logger.debug(
            "Snapshot drift: %d added, %d removed, %d changed",
            len(added), len(removed), len(changed),
            extra={"snapshot_id": snapshot.id, "employee_id": snapshot.employee_id},
        )
    return {"has_changes": has_changes, "added": added, "removed": removed, "changed": changed}


def pending_check_in_changes(snapshot: MaapSnapshot) -> list[dict]:
    """Per assignment, the check-in fields the snapshot's proposals would change.

    Assignments with nothing to change are omitted.  A proposal for an
    assignment with no open check-in is reported against ``current = None``.
    """
    employee_id = snapshot.employee_id
    lookups: dict[int, object] = {}

    def lookup(assignment_id):
        lookups[assignment_id] = entity_gateway.open_check_in(employee_id, assignment_id)
        return lookups[assignment_id]

    change_request = merge(snapshot.maap_data, snapshot.form_params, lookup)

    pending = []
    for effective in change_request:
        persisted = lookups.get(effective.assignment_id)
        changes = []
        for field in CHECK_IN_FIELDS:
            current = getattr(persisted, field, None)
            proposed = getattr(effective, field)
            if current != proposed:
                changes.append({"field": field, "current": current, "proposed": proposed})
        if effective.close_rating is not None:
            changes.append({"field": "close_rating", "current": None, "proposed": effective.close_rating})
        if effective.manager_complete is not None:
            changes.append({
                "field": "manager_complete",
                "current": getattr(persisted, "manager_completed_at", None) is not None,
                "proposed": effective.manager_complete,
            })
        if changes:
            pending.append({
                "assignment_id": effective.assignment_id,
                "check_in_id": effective.check_in_id,
                "changes": changes,
            })
    return pending


def change_counts(snapshot: MaapSnapshot) -> dict:
    """Counts by category for list badges."""
    drift = drift_since_snapshot(snapshot)
    return {
        "tenures": len(drift["added"]) + len(drift["removed"]) + len({c["assignment_id"] for c in drift["changed"]}),
        "check_ins": len(pending_check_in_changes(snapshot)),
    }
