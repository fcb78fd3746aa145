"""
Display-label capability.

Every entity that finalization output refers to by name (Ability, Assignment,
Employee) implements ``display_label`` explicitly.  Resolution goes through
``resolve_display_label`` only, never through ad-hoc ``getattr`` probing for
``name`` / ``title`` / ``full_name``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from maap.core.exceptions import AttributeResolutionError


@runtime_checkable
class DisplayLabeled(Protocol):
    """An entity with a human-readable label."""

    @property
    def display_label(self) -> str | None: ...


def resolve_display_label(entity, *, entity_type: str | None = None,
                          employee_id: int | None = None) -> str:
    """Return the entity's display label or raise ``AttributeResolutionError``.

    A missing entity, an entity that does not implement the capability, and a
    blank label are all the same data-integrity failure.
    """
    label_type = entity_type or type(entity).__name__
    entity_id = getattr(entity, "id", None) if entity is not None else None

    if entity is None or not isinstance(entity, DisplayLabeled):
        raise AttributeResolutionError(label_type, entity_id, employee_id=employee_id)

    label = entity.display_label
    if label is None or not str(label).strip():
        raise AttributeResolutionError(label_type, entity_id, employee_id=employee_id)
    return label
