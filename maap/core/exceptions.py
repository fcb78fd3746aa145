"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.  The bulk finalization
orchestrator classifies them into ``BatchResult.error_kind`` values.

Usage:
    from maap.core.exceptions import NotFoundError, ConstructionError

    raise NotFoundError(resource="Employee", resource_id=42)
    raise ConstructionError("Tenure 7 has no anticipated energy", employee_id=42)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Employee", "Ability").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Snapshot / finalization errors ───────────────────────────────────────────


class MaapError(Exception):
    """Base class for snapshot construction and finalization failures.

    ``kind`` is the stable, machine-readable classification recorded on
    batch results and returned in API error bodies.
    """

    kind = "maap_error"

    def __init__(self, message: str, *, employee_id: int | None = None,
                 snapshot_id: int | None = None) -> None:
        self.employee_id = employee_id
        self.snapshot_id = snapshot_id
        super().__init__(message)


class ConstructionError(MaapError):
    """The snapshot cannot be derived: unresolvable employee or corrupt tenure data.

    Fatal to that snapshot's build; never retried automatically.
    """

    kind = "construction_error"


class AlreadyProcessedError(MaapError):
    """Reprocessing was attempted on a terminal snapshot (``processed_at`` set).

    Callers treat this as a benign no-op, not a system failure.
    """

    kind = "already_processed"

    def __init__(self, snapshot_id: int | None, processed_at=None, **kwargs) -> None:
        self.processed_at = processed_at
        msg = f"MaapSnapshot id={snapshot_id} was already processed"
        if processed_at is not None:
            msg += f" at {processed_at.isoformat()}"
        super().__init__(msg, snapshot_id=snapshot_id, **kwargs)


class AttributeResolutionError(MaapError):
    """A dependent record lacks its display label during finalization.

    Signals a data-integrity problem (e.g. an Ability with no name), as
    opposed to a transient fault.  Fatal to that employee's finalization only.
    """

    kind = "attribute_resolution_error"

    def __init__(self, entity_type: str, entity_id: int | str | None,
                 attribute: str = "display_label", **kwargs) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attribute = attribute
        super().__init__(
            f"{entity_type} id={entity_id} has no usable {attribute}", **kwargs
        )


class PersistenceError(MaapError):
    """Underlying read/write failure.  Retryable per employee at the orchestrator's discretion."""

    kind = "persistence_error"


class SnapshotImmutableError(MaapError):
    """A flush tried to alter a snapshot column that is fixed at creation."""

    kind = "snapshot_immutable"
