"""Escrow Synchronizer — keeps the held-funds record on the accepted price.

Given a project and the amount of its currently accepted quote:
    - no escrow yet and amount > 0  -> create one (pending) with its fee
      breakdown, and bring the project up to quote_accepted if it lags;
    - escrow pending or held        -> overwrite the total and recompute
      the breakdown with the escrow's existing percentages;
    - escrow released or disputed   -> EscrowIneligibleForUpdateError.

The synchronizer flushes but never commits. The caller decides whether
its writes belong to the primary unit of work or to a best-effort one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_deals.config import get_settings
from marketplace_deals.domain.enums import (
    PROJECT_PROGRESSION,
    SYNCABLE_ESCROW_STATUSES,
    EntityType,
    EscrowStatus,
    EventType,
    ProjectStatus,
)
from marketplace_deals.domain.exceptions import (
    EntityNotFoundError,
    EscrowIneligibleForUpdateError,
)
from marketplace_deals.domain.pricing import HUNDRED, ZERO, escrow_breakdown
from marketplace_deals.domain.state_machine import ProjectStateMachine, fire
from marketplace_deals.infrastructure.database.orm_models import Escrow
from marketplace_deals.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    ProjectRepository,
)
from marketplace_deals.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_deals.config import Settings
    from marketplace_deals.domain.actor import Actor
    from marketplace_deals.domain.commands import SynchronizeEscrow
    from marketplace_deals.infrastructure.database.orm_models import Project

logger = get_logger(__name__)

# Events that walk a lagging project up to quote_accepted.
_CATCH_UP_EVENTS: dict[ProjectStatus, tuple[str, ...]] = {
    ProjectStatus.OPEN: ("receive_quote", "accept_quote"),
    ProjectStatus.QUOTE_RECEIVED: ("accept_quote",),
}


class EscrowSynchronizer:
    """Creates or re-prices a project's escrow."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._project_repo = ProjectRepository(session)
        self._escrow_repo = EscrowRepository(session)
        self._event_repo = EventRepository(session)

    async def ensure_eligible(self, project_id: uuid.UUID) -> Escrow | None:
        """Refuse up front when the project's escrow can no longer change amount.

        Returns the (locked) escrow, or None if the project has none yet.
        """
        escrow = await self._escrow_repo.get_by_project(project_id, for_update=True)
        if escrow is not None and EscrowStatus(escrow.status) not in SYNCABLE_ESCROW_STATUSES:
            raise EscrowIneligibleForUpdateError(str(project_id), escrow.status)
        return escrow

    async def synchronize(self, command: SynchronizeEscrow, actor: Actor) -> Escrow | None:
        """Apply a SynchronizeEscrow command.

        Returns:
            The created or updated escrow, or None when there was nothing to
            hold (no escrow and a zero amount). The project is caught up to
            quote_accepted in both cases.

        Raises:
            EscrowIneligibleForUpdateError: Escrow is released or disputed.
        """
        escrow = await self.ensure_eligible(command.project_id)

        if escrow is None:
            if command.amount <= ZERO:
                # No escrow row for a zero price, the project still advances.
                await self._catch_up_project(command.project_id, actor)
                logger.info(
                    "escrow.sync_skipped",
                    project_id=str(command.project_id),
                    reason="nothing to hold",
                )
                return None
            escrow = await self._create(command, actor)
            await self._catch_up_project(command.project_id, actor)
            return escrow

        if escrow.total_amount == command.amount:
            logger.debug(
                "escrow.in_sync",
                project_id=str(command.project_id),
                amount=str(command.amount),
            )
            return escrow

        old_amount = escrow.total_amount
        breakdown = escrow_breakdown(
            command.amount,
            commission_percent=escrow.commission_percent,
            vat_rate=self._settings.escrow_vat_rate,
            advance_percent=escrow.advance_percent,
        )
        await self._escrow_repo.apply_breakdown(escrow, breakdown)

        await self._event_repo.record(
            project_id=command.project_id,
            entity_type=EntityType.ESCROW,
            entity_id=escrow.id,
            event_type=EventType.ESCROW_RESYNCHRONIZED,
            old_status=escrow.status,
            new_status=escrow.status,
            actor=str(actor),
            metadata={"old_amount": str(old_amount), "new_amount": str(command.amount)},
        )

        logger.info(
            "escrow.synchronized",
            project_id=str(command.project_id),
            escrow_id=str(escrow.id),
            old_amount=str(old_amount),
            new_amount=str(command.amount),
        )
        return escrow

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _create(self, command: SynchronizeEscrow, actor: Actor) -> Escrow:
        advance_percent = (
            self._settings.escrow_verified_advance_rate * HUNDRED
            if command.provider_verified
            else ZERO
        )
        breakdown = escrow_breakdown(
            command.amount,
            commission_percent=self._settings.escrow_commission_percent,
            vat_rate=self._settings.escrow_vat_rate,
            advance_percent=advance_percent,
        )
        escrow = await self._escrow_repo.create(
            Escrow(
                project_id=command.project_id,
                total_amount=breakdown.total_amount,
                commission_percent=breakdown.commission_percent,
                commission_amount=breakdown.commission_amount,
                vat_amount=breakdown.vat_amount,
                provider_payout=breakdown.provider_payout,
                advance_percent=breakdown.advance_percent,
                advance_amount=breakdown.advance_amount,
                status=EscrowStatus.PENDING.value,
            )
        )

        await self._event_repo.record(
            project_id=command.project_id,
            entity_type=EntityType.ESCROW,
            entity_id=escrow.id,
            event_type=EventType.ESCROW_CREATED,
            old_status=None,
            new_status=EscrowStatus.PENDING.value,
            actor=str(actor),
            metadata={
                "total_amount": str(breakdown.total_amount),
                "commission_amount": str(breakdown.commission_amount),
                "vat_amount": str(breakdown.vat_amount),
                "provider_payout": str(breakdown.provider_payout),
                "advance_amount": str(breakdown.advance_amount),
            },
        )

        logger.info(
            "escrow.created",
            project_id=str(command.project_id),
            escrow_id=str(escrow.id),
            amount=str(command.amount),
        )
        return escrow

    async def _catch_up_project(self, project_id: uuid.UUID, actor: Actor) -> Project:
        """Make sure a project with an agreed price is at least quote_accepted."""
        project = await self._project_repo.get_by_id(project_id, for_update=True)
        if project is None:
            raise EntityNotFoundError("project", str(project_id))

        current = ProjectStatus(project.status)
        if current in PROJECT_PROGRESSION and PROJECT_PROGRESSION.index(
            current
        ) >= PROJECT_PROGRESSION.index(ProjectStatus.QUOTE_ACCEPTED):
            return project

        # A terminal project has no catch-up path; fire() reports why.
        for event_name in _CATCH_UP_EVENTS.get(current, ("accept_quote",)):
            old_status = project.status
            new_status = fire(ProjectStateMachine, old_status, event_name)
            await self._project_repo.update_status(project, ProjectStatus(new_status))
            await self._event_repo.record(
                project_id=project.id,
                entity_type=EntityType.PROJECT,
                entity_id=project.id,
                event_type=(
                    EventType.PROJECT_QUOTE_ACCEPTED
                    if new_status == ProjectStatus.QUOTE_ACCEPTED
                    else EventType.PROJECT_QUOTE_RECEIVED
                ),
                old_status=old_status,
                new_status=new_status,
                actor=str(actor),
                metadata={"reason": "price agreed"},
            )

        logger.info("project.caught_up", project_id=str(project_id), status=project.status)
        return project
