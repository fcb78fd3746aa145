"""
Abilities and the milestones employees attain against them.
"""

from datetime import date

from maap.models import db, _utcnow


class Ability(db.Model):
    __tablename__ = "abilities"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(
        db.String(255),
        nullable=True,
        comment="Display name; NULL on legacy rows imported before names were required",
    )
    description = db.Column(db.Text, nullable=True)

    @property
    def display_label(self) -> str | None:
        return self.name

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
        }

    def __repr__(self) -> str:
        return f"<Ability #{self.id} {self.name!r}>"


class Milestone(db.Model):
    """An achieved level for an employee against an Ability.

    ``attained_at`` is the business date; ``created_at`` is when the row was
    written and drives "earned since the last check-in cycle".
    """

    __tablename__ = "milestones"

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(
        db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    ability_id = db.Column(
        db.Integer, db.ForeignKey("abilities.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    milestone_level = db.Column(db.Integer, nullable=False)
    certified_by_id = db.Column(
        db.Integer, db.ForeignKey("employees.id", ondelete="SET NULL"), nullable=True,
    )
    attained_at = db.Column(db.Date, nullable=False, default=date.today)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    maap_snapshot_id = db.Column(
        db.Integer,
        db.ForeignKey("maap_snapshots.id", ondelete="SET NULL"),
        nullable=True,
        comment="Snapshot whose finalization certified this milestone",
    )

    ability = db.relationship("Ability")

    __table_args__ = (
        db.CheckConstraint("milestone_level >= 0", name="ck_milestone_level_non_negative"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "ability_id": self.ability_id,
            "milestone_level": self.milestone_level,
            "certified_by_id": self.certified_by_id,
            "attained_at": self.attained_at.isoformat() if self.attained_at else None,
            "maap_snapshot_id": self.maap_snapshot_id,
        }

    def __repr__(self) -> str:
        return f"<Milestone #{self.id} e={self.employee_id} ability={self.ability_id} L{self.milestone_level}>"
