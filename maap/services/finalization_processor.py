"""
Finalization processor: applies one snapshot's accepted changes to live records.

Per employee the run is all-or-nothing:

    merge(maap_data, form_params)         pure, in memory
      → phases for the change_type        writes flushed, not committed
      → mark_processed (compare-and-set)  same transaction
      → commit                            or rollback on any failure

Phases by change_type:

    bulk_check_in_finalization / check_in_finalization   check_ins, milestones
    assignment_management                                 tenures
    milestone_management                                  milestones

A check-in closes when its effective rating is present and either close_rating
is explicitly true or both the employee and the manager have completed their
side.  A rated check-in that is neither comes back as ``not_ready``.

A snapshot that is already processed (in memory or by a concurrent run) comes
back as an ``already_processed`` result with no writes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from maap.core.exceptions import AlreadyProcessedError, NotFoundError, PersistenceError, ValidationError
from maap.core.labels import resolve_display_label
from maap.models import db
from maap.models.assignment import VALID_RATINGS
from maap.models.maap_snapshot import MaapSnapshot
from maap.services import entity_gateway, maap_snapshot_service
from maap.services.maap_change_merger import ChangeRequest, EffectiveCheckIn, merge

logger = logging.getLogger(__name__)

PHASES_BY_CHANGE_TYPE: dict[str, tuple[str, ...]] = {
    "bulk_check_in_finalization": ("check_ins", "milestones"),
    "check_in_finalization": ("check_ins", "milestones"),
    "assignment_management": ("tenures",),
    "milestone_management": ("milestones",),
}

# The "since" cursor for earned milestones only moves on runs that report them
MILESTONE_CHANGE_TYPES = tuple(ct for ct, phases in PHASES_BY_CHANGE_TYPE.items() if "milestones" in phases)

STATUS_PROCESSED = "processed"
STATUS_ALREADY_PROCESSED = "already_processed"


@dataclass
class ProcessingResult:
    """Structured per-employee outcome of one finalization."""

    snapshot_id: int
    employee_id: int
    status: str
    processed_at: datetime | None = None
    check_ins: list[dict] = field(default_factory=list)
    tenures: list[dict] = field(default_factory=list)
    milestones: list[dict] = field(default_factory=list)

    @property
    def already_processed(self) -> bool:
        return self.status == STATUS_ALREADY_PROCESSED

    def to_dict(self) -> dict:
        return {
            "snapshot_id": self.snapshot_id,
            "employee_id": self.employee_id,
            "status": self.status,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "check_ins": self.check_ins,
            "tenures": self.tenures,
            "milestones": self.milestones,
        }


class FinalizationProcessor:
    """Replays a stored snapshot onto check-ins, tenures and milestones."""

    def __init__(self, clock=None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def process(self, snapshot: MaapSnapshot) -> ProcessingResult:
        """Finalize ``snapshot`` inside one transaction.

        Raises:
            AttributeResolutionError: an Ability has no display label.
            ValidationError: a proposed rating / energy / level is invalid.
            NotFoundError: a proposed milestone names an unknown Ability.
            PersistenceError: the database rejected a read or write.
        """
        if snapshot.processed_at is not None:
            logger.info(
                "Snapshot already processed; skipping",
                extra={"snapshot_id": snapshot.id, "employee_id": snapshot.employee_id},
            )
            return self._already_processed(snapshot)

        snapshot_id = snapshot.id
        employee_id = snapshot.employee_id
        try:
            result = self._apply(snapshot)
            db.session.commit()
        except AlreadyProcessedError:
            db.session.rollback()
            logger.info(
                "Snapshot processed concurrently; rolled back",
                extra={"snapshot_id": snapshot_id, "employee_id": employee_id},
            )
            return self._already_processed(db.session.get(MaapSnapshot, snapshot_id))
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(
                f"Database error while finalizing snapshot {snapshot_id}: {exc}",
                employee_id=employee_id,
                snapshot_id=snapshot_id,
            ) from exc
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Snapshot finalized",
            extra={
                "snapshot_id": snapshot_id,
                "employee_id": employee_id,
                "change_type": snapshot.change_type,
            },
        )
        return result

    # ── Private: orchestration ───────────────────────────────────────────

    def _apply(self, snapshot: MaapSnapshot) -> ProcessingResult:
        now = self._clock()
        employee_id = snapshot.employee_id
        since = entity_gateway.last_processed_at(
            employee_id, excluding_snapshot_id=snapshot.id, change_types=MILESTONE_CHANGE_TYPES,
        )
        phases = PHASES_BY_CHANGE_TYPE.get(snapshot.change_type, ())

        change_request = merge(
            snapshot.maap_data,
            snapshot.form_params,
            lambda assignment_id: entity_gateway.open_check_in(employee_id, assignment_id),
        )
        malformed = change_request.malformed_for(phases)
        if malformed:
            raise ValidationError(
                f"Snapshot {snapshot.id} has malformed form_params",
                details=malformed,
            )

        result = ProcessingResult(snapshot_id=snapshot.id, employee_id=employee_id, status=STATUS_PROCESSED)

        if "check_ins" in phases:
            result.check_ins = [
                self._finalize_check_in(snapshot, effective, now) for effective in change_request
            ]
        if "tenures" in phases:
            result.tenures = self._apply_tenure_energy(snapshot, change_request, now)
        if "milestones" in phases:
            self._certify_proposed_milestones(snapshot, change_request, now)
            result.milestones = self._earned_milestones(employee_id, since)

        db.session.flush()
        maap_snapshot_service.mark_processed(snapshot, processed_at=now)
        result.processed_at = now
        return result

    @staticmethod
    def _already_processed(snapshot: MaapSnapshot) -> ProcessingResult:
        return ProcessingResult(
            snapshot_id=snapshot.id,
            employee_id=snapshot.employee_id,
            status=STATUS_ALREADY_PROCESSED,
            processed_at=snapshot.processed_at,
        )

    # ── Private: phases ──────────────────────────────────────────────────

    @staticmethod
    def _finalize_check_in(snapshot: MaapSnapshot, effective: EffectiveCheckIn, now: datetime) -> dict:
        employee_id = snapshot.employee_id
        outcome = {"assignment_id": effective.assignment_id, "check_in_id": effective.check_in_id}

        check_in = entity_gateway.open_check_in(employee_id, effective.assignment_id)
        if check_in is None and not effective.has_proposals:
            outcome["action"] = "skipped"
            return outcome

        rating = effective.official_rating
        for name, value in (("official_rating", rating), ("manager_rating", effective.manager_rating)):
            if value is not None and value not in VALID_RATINGS:
                raise ValidationError(
                    f"Invalid {name.replace('_', ' ')} {value!r} for assignment {effective.assignment_id}",
                    details={"assignment_id": effective.assignment_id, name: value},
                )

        if check_in is None:
            check_in = entity_gateway.find_or_create_check_in(employee_id, effective.assignment_id)

        check_in.shared_notes = effective.shared_notes
        check_in.official_rating = rating
        check_in.manager_rating = effective.manager_rating
        if effective.manager_complete is True and check_in.manager_completed_at is None:
            check_in.manager_completed_at = now
        elif effective.manager_complete is False:
            check_in.manager_completed_at = None

        ready = check_in.employee_completed_at is not None and check_in.manager_completed_at is not None
        wants_close = rating is not None and effective.close_rating is not False
        finalize = wants_close and (effective.close_rating is True or ready)
        if finalize:
            check_in.official_check_in_completed_at = now
            check_in.finalized_by_id = snapshot.created_by_id
            check_in.maap_snapshot_id = snapshot.id
            tenure = entity_gateway.active_assignment_tenure(employee_id, effective.assignment_id, now)
            if tenure is not None:
                tenure.official_rating = rating

        outcome.update({
            "check_in_id": check_in.id,
            "action": "finalized" if finalize else ("not_ready" if wants_close else "updated"),
            "shared_notes": check_in.shared_notes,
            "official_rating": check_in.official_rating,
            "manager_rating": check_in.manager_rating,
        })
        return outcome

    @staticmethod
    def _apply_tenure_energy(snapshot: MaapSnapshot, change_request: ChangeRequest, now: datetime) -> list[dict]:
        outcomes = []
        for assignment_id, energy in sorted(change_request.tenure_energy.items()):
            if not 0 <= energy <= 100:
                raise ValidationError(
                    f"Anticipated energy {energy} for assignment {assignment_id} is outside 0-100",
                    details={"assignment_id": assignment_id, "anticipated_energy_percentage": energy},
                )
            tenure = entity_gateway.active_assignment_tenure(snapshot.employee_id, assignment_id, now)
            if tenure is None:
                raise NotFoundError(resource="AssignmentTenure", resource_id=assignment_id)
            previous = tenure.anticipated_energy_percentage
            current = entity_gateway.update_tenure_energy(tenure, energy, on=now.date())
            outcomes.append({
                "assignment_id": assignment_id,
                "tenure_id": current.id,
                "previous_energy": previous,
                "anticipated_energy_percentage": energy,
            })
        return outcomes

    @staticmethod
    def _certify_proposed_milestones(snapshot: MaapSnapshot, change_request: ChangeRequest, now: datetime) -> None:
        employee_id = snapshot.employee_id
        for ability_id, level in sorted(change_request.milestone_levels.items()):
            if entity_gateway.get_ability(ability_id) is None:
                raise NotFoundError(resource="Ability", resource_id=ability_id)
            held = entity_gateway.highest_milestone_level(employee_id, ability_id)
            if held is not None and held >= level:
                continue
            entity_gateway.create_milestone(
                employee_id,
                ability_id,
                level,
                certified_by_id=snapshot.created_by_id,
                attained_at=now.date(),
                created_at=now,
                maap_snapshot_id=snapshot.id,
            )

    @staticmethod
    def _earned_milestones(employee_id: int, since: datetime | None) -> list[dict]:
        earned = []
        for milestone in entity_gateway.milestones_created_since(employee_id, since):
            earned.append({
                "ability_id": milestone.ability_id,
                "ability_title": resolve_display_label(
                    milestone.ability, entity_type="Ability", employee_id=employee_id,
                ),
                "milestone_level": milestone.milestone_level,
                "attained_at": milestone.attained_at.isoformat() if milestone.attained_at else None,
            })
        return earned


def process_snapshot(snapshot: MaapSnapshot) -> ProcessingResult:
    return FinalizationProcessor().process(snapshot)
