"""Billing schema: cases, reference counters, documents and email attempts.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "cases",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("client_name", sa.Text(), nullable=False),
        sa.Column("internal_reference", sa.String(50), nullable=False, unique=True),
        sa.Column("external_reference", sa.String(20), nullable=True, unique=True),
        sa.Column("state", sa.String(20), nullable=False, server_default="open"),
        sa.Column("entry_date", sa.Date(), nullable=False),
        sa.Column("litigation_date", sa.Date(), nullable=True),
        sa.Column("litigation_district", sa.String(50), nullable=True),
        sa.Column("closure_date", sa.Date(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_cases_kind", "cases", ["kind"])
    op.create_index("ix_cases_state", "cases", ["state"])

    op.create_table(
        "reference_counters",
        sa.Column("scheme_key", sa.String(50), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )

    op.create_table(
        "generated_documents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "case_id",
            sa.Integer(),
            sa.ForeignKey("cases.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("document_kind", sa.String(30), nullable=False),
        sa.Column("storage_path", sa.Text(), nullable=False, unique=True),
        sa.Column("signed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("base_fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("vat_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("district", sa.String(50), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_generated_documents_case_id", "generated_documents", ["case_id"])
    op.create_index(
        "ix_generated_documents_case_created", "generated_documents", ["case_id", "created_at"]
    )

    op.create_table(
        "email_attempts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "case_id",
            sa.Integer(),
            sa.ForeignKey("cases.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "document_id",
            sa.Integer(),
            sa.ForeignKey("generated_documents.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("recipient", sa.String(254), nullable=False),
        sa.Column("subject", sa.Text(), nullable=False),
        sa.Column("status", sa.String(10), nullable=False),
        sa.Column("error_detail", sa.Text(), nullable=True),
        sa.Column(
            "attempted_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_email_attempts_case_id", "email_attempts", ["case_id"])
    op.create_index("ix_email_attempts_status", "email_attempts", ["status"])
    op.create_index(
        "ix_email_attempts_case_attempted", "email_attempts", ["case_id", "attempted_at"]
    )


def downgrade() -> None:
    op.drop_table("email_attempts")
    op.drop_table("generated_documents")
    op.drop_table("reference_counters")
    op.drop_table("cases")
