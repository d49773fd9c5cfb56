"""training_matrix

Creates the training matrix tables:
  - contracts           — read-only contract context
  - functions           — job functions with work regime
  - trainings           — training catalog (hours, validity)
  - matrix_entries      — (contract, function, training) → obligation
  - matrix_import_runs  — persisted spreadsheet import outcomes + change report

matrix_entries carries a NON-unique index on (contract_id, function_id,
training_id): legacy duplicates must stay representable so imports can
collapse them.

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7c1e5a9d2b40
Revises:
Create Date: 2026-10-19 09:12:41.208113
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c1e5a9d2b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Catalogs ──────────────────────────────────────────────────────────
    if "contracts" not in existing:
        op.create_table(
            "contracts",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("number", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("client", sa.String(length=200), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True, comment="active | suspended | closed"),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("end_date", sa.Date(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_contracts_number", "contracts", ["number"])

    if "functions" not in existing:
        op.create_table(
            "functions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("regime", sa.String(length=50), nullable=True,
                      comment="Shift-type tag, e.g. ONSHORE / OFFSHORE"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.PrimaryKeyConstraint("id"),
        )

    if "trainings" not in existing:
        op.create_table(
            "trainings",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("hours", sa.Integer(), nullable=True),
            sa.Column("validity_value", sa.Integer(), nullable=True,
                      comment="Numeric part of the validity period"),
            sa.Column("validity_unit", sa.String(length=20), nullable=True, comment="months / years / days"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.PrimaryKeyConstraint("id"),
        )

    # ── Matrix entries ────────────────────────────────────────────────────
    if "matrix_entries" not in existing:
        op.create_table(
            "matrix_entries",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("contract_id", sa.Integer(), nullable=False),
            sa.Column("function_id", sa.Integer(), nullable=False),
            sa.Column("training_id", sa.Integer(), nullable=True,
                      comment="NULL = placeholder (function tracked without trainings)"),
            sa.Column("obligation", sa.String(length=10), nullable=False, server_default="N/A"),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["contract_id"], ["contracts.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["function_id"], ["functions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["training_id"], ["trainings.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_matrix_entries_contract_id", "matrix_entries", ["contract_id"])
        op.create_index("ix_matrix_entries_function_id", "matrix_entries", ["function_id"])
        op.create_index("ix_matrix_entries_training_id", "matrix_entries", ["training_id"])
        op.create_index("ix_matrix_entries_contract_function_training", "matrix_entries",
                        ["contract_id", "function_id", "training_id"])

    # ── Import runs ───────────────────────────────────────────────────────
    if "matrix_import_runs" not in existing:
        op.create_table(
            "matrix_import_runs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("contract_id", sa.Integer(), nullable=False),
            sa.Column("filename", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True, comment="completed / partial"),
            sa.Column("stats", sa.JSON(), nullable=True),
            sa.Column("errors", sa.JSON(), nullable=True),
            sa.Column("report", sa.LargeBinary(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["contract_id"], ["contracts.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_matrix_import_runs_contract_id", "matrix_import_runs", ["contract_id"])


def downgrade():
    op.drop_table("matrix_import_runs")
    op.drop_table("matrix_entries")
    op.drop_table("trainings")
    op.drop_table("functions")
    op.drop_table("contracts")
