"""SQLAlchemy 2.0 ORM models for the marketplace deal coordinator.

Five tables:
    1. projects            — A client's job request; anchor of the lifecycle.
    2. quotes              — Priced offers from providers against a project.
    3. quote_revisions     — One negotiation round against one quote.
    4. escrows             — The held-funds record, one per project.
    5. transaction_events  — Append-only audit log of every applied transition.

Design decisions:
    - UUIDs as primary keys (no sequential leakage across tenants).
    - Decimal for money (no floating point rounding errors).
    - Portable Uuid/JSON types so the same models run on PostgreSQL and SQLite.
    - CHECK constraints on every status column and on non-negative amounts.
    - A `version` column on every mutable row; SQLAlchemy adds it to the
      WHERE clause of each UPDATE, so a write based on a stale read fails
      with StaleDataError instead of silently overwriting a concurrent one.
    - escrows.project_id is unique, and a partial unique index allows only
      one pending revision per quote.
    - transaction_events is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from marketplace_deals.domain.enums import (
    EscrowStatus,
    ProjectStatus,
    QuoteStatus,
    RevisionStatus,
)

Money = Numeric(14, 2)
Percent = Numeric(5, 2)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def _now() -> datetime:
    return datetime.now(UTC)


def _status_check(column: str, enum_cls: type, name: str) -> CheckConstraint:
    values = ", ".join(f"'{member.value}'" for member in enum_cls)
    return CheckConstraint(f"{column} IN ({values})", name=name)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _now()


# ---------------------------------------------------------------------------
# 1. projects
# ---------------------------------------------------------------------------
class Project(Base):
    """A client's job request."""

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        nullable=False,
        comment="Owning client (the only user who may accept or reject quotes)",
    )
    category_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=ProjectStatus.OPEN.value,
        comment="Current lifecycle state (guarded by ProjectStateMachine)",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        _status_check("status", ProjectStatus, "ck_project_valid_status"),
        Index("idx_project_client", "client_id"),
        Index("idx_project_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Project id={self.id} status={self.status}>"


# ---------------------------------------------------------------------------
# 2. quotes
# ---------------------------------------------------------------------------
class Quote(Base):
    """A priced offer from one provider for one project."""

    __tablename__ = "quotes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    # --- Pricing ---
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    labor_cost: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    materials_cost: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    urgent_surcharge_percent: Mapped[Decimal] = mapped_column(
        Percent, nullable=False, default=Decimal("0")
    )

    # --- Terms ---
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_duration: Mapped[str | None] = mapped_column(String(100), nullable=True)
    provider_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Provider identity verified at submission (drives the escrow advance)",
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=QuoteStatus.PENDING.value,
        comment="Current state (guarded by QuoteStateMachine)",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        _status_check("status", QuoteStatus, "ck_quote_valid_status"),
        CheckConstraint("amount >= 0", name="ck_quote_non_negative_amount"),
        Index("idx_quote_project", "project_id"),
        Index("idx_quote_provider", "provider_id"),
        Index("idx_quote_project_status", "project_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Quote id={self.id} status={self.status} amount={self.amount}>"


# ---------------------------------------------------------------------------
# 3. quote_revisions
# ---------------------------------------------------------------------------
class QuoteRevision(Base):
    """A client's request to renegotiate one quote, answered once by its provider."""

    __tablename__ = "quote_revisions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    quote_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    requested_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    suggested_price: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    additional_fees: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    client_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_response: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RevisionStatus.PENDING.value,
        comment="pending until the provider answers; immutable afterwards",
    )
    modified_quote_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("quotes.id", ondelete="SET NULL"),
        nullable=True,
        comment="Replacement quote, set only when status = modified",
    )
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        _status_check("status", RevisionStatus, "ck_revision_valid_status"),
        CheckConstraint(
            "suggested_price IS NULL OR suggested_price >= 0",
            name="ck_revision_non_negative_price",
        ),
        CheckConstraint(
            "additional_fees IS NULL OR additional_fees >= 0",
            name="ck_revision_non_negative_fees",
        ),
        CheckConstraint(
            "(status = 'modified') = (modified_quote_id IS NOT NULL)",
            name="ck_revision_modified_quote_link",
        ),
        Index("idx_revision_quote", "quote_id"),
        Index("idx_revision_project", "project_id"),
        Index(
            "uq_revision_one_pending_per_quote",
            "quote_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<QuoteRevision id={self.id} quote={self.quote_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 4. escrows
# ---------------------------------------------------------------------------
class Escrow(Base):
    """Funds held for a project at the currently accepted price."""

    __tablename__ = "escrows"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    # --- Financials ---
    total_amount: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
        comment="Must equal the accepted quote's amount while pending or held",
    )
    commission_percent: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    provider_payout: Mapped[Decimal] = mapped_column(Money, nullable=False)
    advance_percent: Mapped[Decimal] = mapped_column(Percent, nullable=False)
    advance_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=EscrowStatus.PENDING.value,
        comment="Current state (guarded by EscrowStateMachine)",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        _status_check("status", EscrowStatus, "ck_escrow_valid_status"),
        CheckConstraint("total_amount >= 0", name="ck_escrow_non_negative_amount"),
        Index("idx_escrow_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<Escrow id={self.id} project={self.project_id} status={self.status} total={self.total_amount}>"


# ---------------------------------------------------------------------------
# 5. transaction_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class TransactionEvent(Base):
    """Immutable record of one transition applied to one entity.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "transaction_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., QUOTE_ACCEPTED, ESCROW_RESYNCHRONIZED)",
    )
    old_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    new_status: Mapped[str] = mapped_column(String(30), nullable=False)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="system",
        comment="role:user_id of whoever triggered the action",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONDocument,
        nullable=True,
        default=None,
        comment="Command details: amounts, superseded quote ids, failure causes",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now
    )

    __table_args__ = (
        Index("idx_event_project", "project_id"),
        Index("idx_event_entity", "entity_type", "entity_id"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<TransactionEvent {self.entity_type}:{self.entity_id} "
            f"{self.event_type} {self.old_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
for _model in (Project, Quote, Escrow):
    event.listen(_model, "before_update", _set_updated_at)
