"""initial schema: projects, quotes, revisions, escrows, events

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

MONEY = sa.Numeric(14, 2)
PERCENT = sa.Numeric(5, 2)


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("client_id", sa.Uuid(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('open', 'quote_received', 'quote_accepted', 'payment_pending', "
            "'in_progress', 'completion_requested', 'completed', 'cancelled', 'expired', "
            "'abandoned')",
            name="ck_project_valid_status",
        ),
    )
    op.create_index("idx_project_client", "projects", ["client_id"])
    op.create_index("idx_project_status", "projects", ["status"])

    op.create_table(
        "quotes",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("labor_cost", MONEY, nullable=True),
        sa.Column("materials_cost", MONEY, nullable=True),
        sa.Column("urgent_surcharge_percent", PERCENT, nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("estimated_duration", sa.String(100), nullable=True),
        sa.Column("provider_verified", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'viewed', 'accepted', 'rejected', 'expired')",
            name="ck_quote_valid_status",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_quote_non_negative_amount"),
    )
    op.create_index("idx_quote_project", "quotes", ["project_id"])
    op.create_index("idx_quote_provider", "quotes", ["provider_id"])
    op.create_index("idx_quote_project_status", "quotes", ["project_id", "status"])

    op.create_table(
        "quote_revisions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "quote_id",
            sa.Uuid(),
            sa.ForeignKey("quotes.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "project_id",
            sa.Uuid(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("requested_by", sa.Uuid(), nullable=False),
        sa.Column("suggested_price", MONEY, nullable=True),
        sa.Column("additional_fees", MONEY, nullable=True),
        sa.Column("client_comments", sa.Text(), nullable=True),
        sa.Column("provider_response", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column(
            "modified_quote_id",
            sa.Uuid(),
            sa.ForeignKey("quotes.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'modified')",
            name="ck_revision_valid_status",
        ),
        sa.CheckConstraint(
            "suggested_price IS NULL OR suggested_price >= 0",
            name="ck_revision_non_negative_price",
        ),
        sa.CheckConstraint(
            "additional_fees IS NULL OR additional_fees >= 0",
            name="ck_revision_non_negative_fees",
        ),
        sa.CheckConstraint(
            "(status = 'modified') = (modified_quote_id IS NOT NULL)",
            name="ck_revision_modified_quote_link",
        ),
    )
    op.create_index("idx_revision_quote", "quote_revisions", ["quote_id"])
    op.create_index("idx_revision_project", "quote_revisions", ["project_id"])
    op.create_index(
        "uq_revision_one_pending_per_quote",
        "quote_revisions",
        ["quote_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "escrows",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("commission_percent", PERCENT, nullable=False),
        sa.Column("commission_amount", MONEY, nullable=False),
        sa.Column("vat_amount", MONEY, nullable=False),
        sa.Column("provider_payout", MONEY, nullable=False),
        sa.Column("advance_percent", PERCENT, nullable=False),
        sa.Column("advance_amount", MONEY, nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'held', 'released', 'disputed')",
            name="ck_escrow_valid_status",
        ),
        sa.CheckConstraint("total_amount >= 0", name="ck_escrow_non_negative_amount"),
    )
    op.create_index("idx_escrow_status", "escrows", ["status"])

    op.create_table(
        "transaction_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "project_id",
            sa.Uuid(),
            sa.ForeignKey("projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("old_status", sa.String(30), nullable=True),
        sa.Column("new_status", sa.String(30), nullable=False),
        sa.Column("actor", sa.String(64), nullable=False),
        sa.Column(
            "metadata",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_event_project", "transaction_events", ["project_id"])
    op.create_index("idx_event_entity", "transaction_events", ["entity_type", "entity_id"])
    op.create_index("idx_event_created_at", "transaction_events", ["created_at"])


def downgrade() -> None:
    op.drop_table("transaction_events")
    op.drop_table("escrows")
    op.drop_table("quote_revisions")
    op.drop_table("quotes")
    op.drop_table("projects")
