"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the Transition Coordinator's job).

Every read that can drive a transition decision is issued with
`populate_existing` so the identity map never hands back a row as it was
before another request changed it, and optionally `FOR UPDATE` so the row
stays locked until the caller commits.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import select

from marketplace_deals.domain.enums import OPEN_QUOTE_STATUSES, QuoteStatus, RevisionStatus
from marketplace_deals.infrastructure.database.orm_models import (
    Escrow,
    Project,
    Quote,
    QuoteRevision,
    TransactionEvent,
)

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_deals.domain.enums import (
        EntityType,
        EscrowStatus,
        EventType,
        ProjectStatus,
    )
    from marketplace_deals.domain.pricing import EscrowBreakdown


def _fresh(stmt: Select, for_update: bool) -> Select:
    stmt = stmt.execution_options(populate_existing=True)
    if for_update:
        stmt = stmt.with_for_update()
    return stmt


class ProjectRepository:
    """Data access for projects."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, project: Project) -> Project:
        self._session.add(project)
        await self._session.flush()
        return project

    async def get_by_id(self, project_id: uuid.UUID, for_update: bool = False) -> Project | None:
        result = await self._session.execute(
            _fresh(select(Project).where(Project.id == project_id), for_update)
        )
        return result.scalar_one_or_none()

    async def update_status(self, project: Project, new_status: ProjectStatus) -> Project:
        """Update the status of a project (call AFTER state machine validation)."""
        project.status = new_status.value
        await self._session.flush()
        return project


class QuoteRepository:
    """Data access for quotes."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, quote: Quote) -> Quote:
        self._session.add(quote)
        await self._session.flush()
        return quote

    async def get_by_id(self, quote_id: uuid.UUID, for_update: bool = False) -> Quote | None:
        result = await self._session.execute(
            _fresh(select(Quote).where(Quote.id == quote_id), for_update)
        )
        return result.scalar_one_or_none()

    async def get_by_project(self, project_id: uuid.UUID) -> list[Quote]:
        """All quotes on a project, oldest first."""
        result = await self._session.execute(
            _fresh(
                select(Quote)
                .where(Quote.project_id == project_id)
                .order_by(Quote.created_at.asc()),
                for_update=False,
            )
        )
        return list(result.scalars().all())

    async def get_open_siblings(
        self,
        project_id: uuid.UUID,
        exclude: tuple[uuid.UUID, ...] = (),
        provider_id: uuid.UUID | None = None,
        for_update: bool = True,
    ) -> list[Quote]:
        """Pending or viewed quotes on a project, minus `exclude`.

        These are the rows a cascade rejection (or a provider's replacement
        quote) is about to write, so they are locked by default.
        """
        stmt = select(Quote).where(
            Quote.project_id == project_id,
            Quote.status.in_([s.value for s in OPEN_QUOTE_STATUSES]),
        )
        if exclude:
            stmt = stmt.where(Quote.id.not_in(exclude))
        if provider_id is not None:
            stmt = stmt.where(Quote.provider_id == provider_id)
        result = await self._session.execute(_fresh(stmt.order_by(Quote.created_at.asc()), for_update))
        return list(result.scalars().all())

    async def get_accepted(self, project_id: uuid.UUID, for_update: bool = False) -> list[Quote]:
        """Accepted quotes on a project. More than one means the invariant is broken."""
        result = await self._session.execute(
            _fresh(
                select(Quote).where(
                    Quote.project_id == project_id,
                    Quote.status == QuoteStatus.ACCEPTED.value,
                ),
                for_update,
            )
        )
        return list(result.scalars().all())

    async def update_status(self, quote: Quote, new_status: QuoteStatus) -> Quote:
        """Update the status of a quote (call AFTER state machine validation)."""
        quote.status = new_status.value
        await self._session.flush()
        return quote

    async def update_amount(self, quote: Quote, amount: Decimal) -> Quote:
        quote.amount = amount
        await self._session.flush()
        return quote


class RevisionRepository:
    """Data access for quote revisions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, revision: QuoteRevision) -> QuoteRevision:
        self._session.add(revision)
        await self._session.flush()
        return revision

    async def get_by_id(
        self, revision_id: uuid.UUID, for_update: bool = False
    ) -> QuoteRevision | None:
        result = await self._session.execute(
            _fresh(select(QuoteRevision).where(QuoteRevision.id == revision_id), for_update)
        )
        return result.scalar_one_or_none()

    async def get_by_quote(self, quote_id: uuid.UUID) -> list[QuoteRevision]:
        """All revisions requested against a quote, newest first."""
        result = await self._session.execute(
            _fresh(
                select(QuoteRevision)
                .where(QuoteRevision.quote_id == quote_id)
                .order_by(QuoteRevision.created_at.desc()),
                for_update=False,
            )
        )
        return list(result.scalars().all())

    async def get_pending_for_quote(self, quote_id: uuid.UUID) -> QuoteRevision | None:
        result = await self._session.execute(
            _fresh(
                select(QuoteRevision).where(
                    QuoteRevision.quote_id == quote_id,
                    QuoteRevision.status == RevisionStatus.PENDING.value,
                ),
                for_update=True,
            )
        )
        return result.scalars().first()

    async def resolve(
        self,
        revision: QuoteRevision,
        new_status: RevisionStatus,
        provider_response: str | None = None,
        modified_quote_id: uuid.UUID | None = None,
    ) -> QuoteRevision:
        """Record the provider's answer (call AFTER state machine validation)."""
        revision.status = new_status.value
        revision.provider_response = provider_response
        revision.modified_quote_id = modified_quote_id
        revision.responded_at = datetime.now(UTC)
        await self._session.flush()
        return revision


class EscrowRepository:
    """Data access for escrow records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, escrow: Escrow) -> Escrow:
        self._session.add(escrow)
        await self._session.flush()
        return escrow

    async def get_by_project(
        self, project_id: uuid.UUID, for_update: bool = False
    ) -> Escrow | None:
        result = await self._session.execute(
            _fresh(select(Escrow).where(Escrow.project_id == project_id), for_update)
        )
        return result.scalar_one_or_none()

    async def apply_breakdown(self, escrow: Escrow, breakdown: EscrowBreakdown) -> Escrow:
        """Overwrite every figure of the escrow with a freshly computed breakdown."""
        escrow.total_amount = breakdown.total_amount
        escrow.commission_percent = breakdown.commission_percent
        escrow.commission_amount = breakdown.commission_amount
        escrow.vat_amount = breakdown.vat_amount
        escrow.provider_payout = breakdown.provider_payout
        escrow.advance_percent = breakdown.advance_percent
        escrow.advance_amount = breakdown.advance_amount
        await self._session.flush()
        return escrow

    async def update_status(self, escrow: Escrow, new_status: EscrowStatus) -> Escrow:
        """Update the status of an escrow (call AFTER state machine validation)."""
        escrow.status = new_status.value
        await self._session.flush()
        return escrow


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        project_id: uuid.UUID,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        event_type: EventType,
        old_status: str | None,
        new_status: str,
        actor: str = "system",
        metadata: dict | None = None,
    ) -> TransactionEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = TransactionEvent(
            project_id=project_id,
            entity_type=entity_type.value,
            entity_id=entity_id,
            event_type=event_type.value,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_project(self, project_id: uuid.UUID) -> list[TransactionEvent]:
        """Fetch all events for a project in chronological order."""
        result = await self._session.execute(
            select(TransactionEvent)
            .where(TransactionEvent.project_id == project_id)
            .order_by(TransactionEvent.created_at.asc())
        )
        return list(result.scalars().all())
