"""maap_initial_schema

Creates the MAAP snapshot engine tables:
  - organizations, employees, employment_tenures
  - assignments, assignment_tenures, assignment_check_ins
  - abilities, milestones
  - maap_snapshots (immutable maap_data and form_params captures)

Tables are created conditionally so the revision can run against a database
that already received them via db.create_all() in development.

Revision ID: 5e1d0c7a9b21
Revises:
Create Date: 2026-10-19 09:12:40.118230
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '5e1d0c7a9b21'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Organizations & people ────────────────────────────────────────────
    if "organizations" not in existing:
        op.create_table(
            "organizations",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )

    if "employees" not in existing:
        op.create_table(
            "employees",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("full_name", sa.String(length=255), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )

    if "employment_tenures" not in existing:
        op.create_table(
            "employment_tenures",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("employee_id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("manager_id", sa.Integer(), nullable=True),
            sa.Column("started_at", sa.Date(), nullable=False),
            sa.Column("ended_at", sa.Date(), nullable=True),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["manager_id"], ["employees.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_employment_tenures_employee_id", "employment_tenures", ["employee_id"])
        op.create_index("ix_employment_tenures_organization_id", "employment_tenures", ["organization_id"])

    # ── Assignments ───────────────────────────────────────────────────────
    if "assignments" not in existing:
        op.create_table(
            "assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=255), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_assignments_organization_id", "assignments", ["organization_id"])

    if "assignment_tenures" not in existing:
        op.create_table(
            "assignment_tenures",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("employee_id", sa.Integer(), nullable=False),
            sa.Column("assignment_id", sa.Integer(), nullable=False),
            sa.Column("anticipated_energy_percentage", sa.Integer(), nullable=True,
                      comment="0-100; NULL only on legacy/corrupt rows"),
            sa.Column("official_rating", sa.String(length=20), nullable=True,
                      comment="not_meeting | working_to_meet | meeting | exceeding"),
            sa.Column("started_at", sa.Date(), nullable=False),
            sa.Column("ended_at", sa.Date(), nullable=True),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assignment_id"], ["assignments.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_assignment_tenures_employee_id", "assignment_tenures", ["employee_id"])
        op.create_index("ix_assignment_tenures_assignment_id", "assignment_tenures", ["assignment_id"])
        op.create_index("ix_assignment_tenure_employee_assignment", "assignment_tenures",
                        ["employee_id", "assignment_id"])

    # ── Abilities ─────────────────────────────────────────────────────────
    if "abilities" not in existing:
        op.create_table(
            "abilities",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("organization_id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=True,
                      comment="Display name; NULL on legacy rows imported before names were required"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_abilities_organization_id", "abilities", ["organization_id"])

    # ── Snapshots ─────────────────────────────────────────────────────────
    if "maap_snapshots" not in existing:
        op.create_table(
            "maap_snapshots",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("employee_id", sa.Integer(), nullable=False),
            sa.Column("created_by_id", sa.Integer(), nullable=True,
                      comment="Who triggered capture; also recorded as finalizer of closed check-ins"),
            sa.Column("organization_id", sa.Integer(), nullable=True,
                      comment="From the employee's active employment tenure at build time"),
            sa.Column("change_type", sa.String(length=50), nullable=False,
                      comment="bulk_check_in_finalization | check_in_finalization | "
                              "assignment_management | milestone_management"),
            sa.Column("reason", sa.Text(), nullable=False),
            sa.Column("maap_data", sa.JSON(), nullable=False),
            sa.Column("form_params", sa.JSON(), nullable=False),
            sa.Column("maap_digest", sa.String(length=64), nullable=False,
                      comment="sha256 of canonical maap_data JSON; equal digests mean identical builds"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["created_by_id"], ["employees.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["organization_id"], ["organizations.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_maap_snapshots_employee_id", "maap_snapshots", ["employee_id"])
        op.create_index("ix_maap_snapshots_processed_at", "maap_snapshots", ["processed_at"])
        op.create_index("ix_maap_snapshot_employee_processed", "maap_snapshots",
                        ["employee_id", "processed_at"])

    # ── Check-ins & milestones (reference maap_snapshots) ─────────────────
    if "assignment_check_ins" not in existing:
        op.create_table(
            "assignment_check_ins",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("employee_id", sa.Integer(), nullable=False),
            sa.Column("assignment_id", sa.Integer(), nullable=False),
            sa.Column("check_in_started_on", sa.Date(), nullable=False),
            sa.Column("actual_energy_percentage", sa.Integer(), nullable=True),
            sa.Column("employee_rating", sa.String(length=20), nullable=True),
            sa.Column("employee_completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("manager_rating", sa.String(length=20), nullable=True),
            sa.Column("manager_completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("shared_notes", sa.Text(), nullable=True),
            sa.Column("official_rating", sa.String(length=20), nullable=True),
            sa.Column("official_check_in_completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("finalized_by_id", sa.Integer(), nullable=True),
            sa.Column("maap_snapshot_id", sa.Integer(), nullable=True,
                      comment="Snapshot whose finalization closed this check-in"),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assignment_id"], ["assignments.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["finalized_by_id"], ["employees.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["maap_snapshot_id"], ["maap_snapshots.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_assignment_check_ins_employee_id", "assignment_check_ins", ["employee_id"])
        op.create_index("ix_assignment_check_ins_assignment_id", "assignment_check_ins", ["assignment_id"])
        op.create_index("ix_check_in_employee_assignment", "assignment_check_ins",
                        ["employee_id", "assignment_id"])

    if "milestones" not in existing:
        op.create_table(
            "milestones",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("employee_id", sa.Integer(), nullable=False),
            sa.Column("ability_id", sa.Integer(), nullable=False),
            sa.Column("milestone_level", sa.Integer(), nullable=False),
            sa.Column("certified_by_id", sa.Integer(), nullable=True),
            sa.Column("attained_at", sa.Date(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("maap_snapshot_id", sa.Integer(), nullable=True,
                      comment="Snapshot whose finalization certified this milestone"),
            sa.CheckConstraint("milestone_level >= 0", name="ck_milestone_level_non_negative"),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["ability_id"], ["abilities.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["certified_by_id"], ["employees.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["maap_snapshot_id"], ["maap_snapshots.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_milestones_employee_id", "milestones", ["employee_id"])
        op.create_index("ix_milestones_ability_id", "milestones", ["ability_id"])


def downgrade():
    for table in (
        "milestones",
        "assignment_check_ins",
        "maap_snapshots",
        "abilities",
        "assignment_tenures",
        "assignments",
        "employment_tenures",
        "employees",
        "organizations",
    ):
        op.drop_table(table)
