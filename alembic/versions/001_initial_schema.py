"""initial_schema

Hospital number counters and patient identities, with the uniqueness rules
enforced by the database, and the current year's counter pre-seeded.

Revision ID: 001
Revises:
Create Date: 2025-01-06 00:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from hn_registry.utils.date_utils import allocation_year

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema - create tables, constraints and seed the counter."""

    # ========================================
    # Tables
    # ========================================

    # One counter per two-digit year
    counters = op.create_table(
        "hospital_number_counters",
        sa.Column("year", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("last_sequence", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.CheckConstraint("year >= 0 AND year <= 99", name="ck_hn_counter_year"),
        sa.CheckConstraint(
            "last_sequence >= 0 AND last_sequence <= 9999",
            name="ck_hn_counter_last_sequence",
        ),
        sa.PrimaryKeyConstraint("year"),
    )

    # One identity per patient
    op.create_table(
        "patient_identities",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column(
            "identity_type",
            sa.Enum("national_id", "passport", name="identitytype"),
            nullable=False,
        ),
        sa.Column("identity_value", sa.String(length=20), nullable=False),
        sa.Column("hospital_number", sa.String(length=8), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "identity_type", "identity_value", name="uq_patient_identity_value"
        ),
    )

    # ========================================
    # Indexes
    # ========================================

    op.create_index(
        "ix_patient_identities_hospital_number",
        "patient_identities",
        ["hospital_number"],
        unique=True,
    )
    op.create_index(
        "ix_patient_identities_year_sequence",
        "patient_identities",
        ["year", "sequence"],
    )

    # ========================================
    # Seed data
    # ========================================

    current_year = allocation_year()
    op.bulk_insert(counters, [{"year": current_year, "last_sequence": 0}])


def downgrade() -> None:
    """Downgrade schema - drop all tables."""
    op.drop_index("ix_patient_identities_year_sequence", table_name="patient_identities")
    op.drop_index("ix_patient_identities_hospital_number", table_name="patient_identities")
    op.drop_table("patient_identities")
    op.drop_table("hospital_number_counters")
    sa.Enum(name="identitytype").drop(op.get_bind(), checkfirst=True)
