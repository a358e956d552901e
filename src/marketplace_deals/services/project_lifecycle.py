"""Project lifecycle — the project and escrow moves around the quote negotiation.

Creation, cancellation, the scheduled expiry/abandon sweeps, payment,
completion and disputes. Each is a thin command: guard the actor, fire the
state machines, write, record, notify. The money itself (payment capture,
payouts) is handled by an external processor; this service only records
the outcomes it reports.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from marketplace_deals.domain.enums import (
    ActorRole,
    EntityType,
    EventType,
    NotificationKind,
    ProjectStatus,
    QuoteStatus,
)
from marketplace_deals.domain.exceptions import (
    InvalidStateTransitionError,
    PermissionDeniedError,
)
from marketplace_deals.domain.state_machine import EscrowStateMachine, ProjectStateMachine, fire
from marketplace_deals.infrastructure.database.orm_models import Project
from marketplace_deals.logging_config import bind_action_context, get_logger
from marketplace_deals.services.base import CoordinatedService, TransitionResult

if TYPE_CHECKING:
    import uuid

    from marketplace_deals.domain.actor import Actor
    from marketplace_deals.infrastructure.database.orm_models import (
        Escrow,
        Quote,
        TransactionEvent,
    )

logger = get_logger(__name__)


class ProjectLifecycleService(CoordinatedService):
    """Project creation, closing paths, payment and completion."""

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_project(
        self,
        actor: Actor,
        title: str,
        description: str | None = None,
        category_id: int | None = None,
    ) -> Project:
        """Post a new job request in OPEN state."""
        if actor.role is not ActorRole.CLIENT:
            raise PermissionDeniedError("create_project", "only clients can post projects")

        async with self._unit_of_work("project", "create_project"):
            project = await self._project_repo.create(
                Project(
                    client_id=actor.user_id,
                    title=title,
                    description=description,
                    category_id=category_id,
                    status=ProjectStatus.OPEN.value,
                )
            )
            await self._record(
                actor,
                project.id,
                EntityType.PROJECT,
                project.id,
                EventType.PROJECT_CREATED,
                None,
                project.status,
                {"title": title},
            )

        logger.info("project.created", project_id=str(project.id), client_id=str(actor.user_id))
        return project

    # ------------------------------------------------------------------
    # Closing paths
    # ------------------------------------------------------------------

    async def cancel_project(
        self, actor: Actor, project_id: uuid.UUID, reason: str | None = None
    ) -> TransitionResult:
        """Client withdraws the project; quotes still competing for it expire."""
        bind_action_context(actor=actor, project_id=project_id)
        async with self._unit_of_work("project", "cancel_project"):
            project = await self._get_project_or_raise(project_id)
            self._require_project_client(actor, project, "cancel_project")
            expired = await self._close(project, "cancel", EventType.PROJECT_CANCELLED, actor, reason)

        logger.info("project.cancelled", expired_quotes=len(expired))
        for quote in expired:
            await self._notify(
                NotificationKind.PROJECT_CANCELLED,
                project,
                actor,
                "cancelled",
                quote_id=quote.id,
                recipient_id=quote.provider_id,
            )
        return TransitionResult(command=None, project=project, related_quotes=expired)

    async def expire_project(self, actor: Actor, project_id: uuid.UUID) -> TransitionResult:
        """Scheduled sweep: an open project nobody closed in time."""
        bind_action_context(actor=actor, project_id=project_id)
        self._require_system(actor, "expire_project")
        async with self._unit_of_work("project", "expire_project"):
            project = await self._get_project_or_raise(project_id)
            expired = await self._close(project, "expire", EventType.PROJECT_EXPIRED, actor)

        logger.info("project.expired", expired_quotes=len(expired))
        return TransitionResult(command=None, project=project, related_quotes=expired)

    async def abandon_project(
        self, actor: Actor, project_id: uuid.UUID, reason: str | None = None
    ) -> TransitionResult:
        """Scheduled sweep: an agreed project that stopped moving."""
        bind_action_context(actor=actor, project_id=project_id)
        self._require_system(actor, "abandon_project")
        async with self._unit_of_work("project", "abandon_project"):
            project = await self._get_project_or_raise(project_id)
            await self._set_project_status(
                project, "abandon", EventType.PROJECT_ABANDONED, actor, {"reason": reason}
            )

        logger.info("project.abandoned")
        return TransitionResult(command=None, project=project)

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def start_payment(self, actor: Actor, project_id: uuid.UUID) -> TransitionResult:
        """Client moves on to paying; only allowed once the escrow matches the price."""
        bind_action_context(actor=actor, project_id=project_id)
        async with self._unit_of_work("project", "start_payment"):
            project = await self._get_project_or_raise(project_id)
            self._require_project_client(actor, project, "start_payment")
            fire(ProjectStateMachine, project.status, "request_payment")

            quote = await self._accepted_quote_or_raise(project, "start_payment")
            escrow = await self._escrow_repo.get_by_project(project.id, for_update=True)
            if escrow is None or escrow.total_amount != quote.amount:
                raise InvalidStateTransitionError(
                    "escrow",
                    escrow.status if escrow else "missing",
                    "start_payment",
                    reason=(
                        "the funds record does not match the accepted price yet, "
                        "please contact support"
                    ),
                )
            await self._set_project_status(
                project,
                "request_payment",
                EventType.PROJECT_PAYMENT_PENDING,
                actor,
                {"amount": str(escrow.total_amount)},
            )

        logger.info("project.payment_pending", amount=str(escrow.total_amount))
        return TransitionResult(command=None, project=project, quote=quote, escrow=escrow)

    async def record_funds_held(self, actor: Actor, project_id: uuid.UUID) -> TransitionResult:
        """Payment processor confirmed capture: escrow is held and work can start."""
        bind_action_context(actor=actor, project_id=project_id)
        self._require_system(actor, "record_funds_held")
        async with self._unit_of_work("escrow", "record_funds_held"):
            project = await self._get_project_or_raise(project_id)
            escrow = await self._get_escrow_or_raise(project.id)
            fire(EscrowStateMachine, escrow.status, "hold_funds")
            fire(ProjectStateMachine, project.status, "start_work")
            quote = await self._accepted_quote_or_raise(project, "record_funds_held")

            await self._set_escrow_status(escrow, "hold_funds", EventType.ESCROW_FUNDS_HELD, actor)
            await self._set_project_status(project, "start_work", EventType.PROJECT_WORK_STARTED, actor)

        logger.info("escrow.funds_held", escrow_id=str(escrow.id), amount=str(escrow.total_amount))
        await self._notify(
            NotificationKind.PAYMENT_RECEIVED,
            project,
            actor,
            "held",
            quote_id=quote.id,
            recipient_id=quote.provider_id,
        )
        return TransitionResult(command=None, project=project, quote=quote, escrow=escrow)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def request_completion(self, actor: Actor, project_id: uuid.UUID) -> TransitionResult:
        """Provider of the accepted quote reports the work done."""
        bind_action_context(actor=actor, project_id=project_id)
        async with self._unit_of_work("project", "request_completion"):
            project = await self._get_project_or_raise(project_id)
            quote = await self._accepted_quote_or_raise(project, "request_completion")
            self._require_quote_provider(actor, quote, "request_completion")
            await self._set_project_status(
                project, "request_completion", EventType.PROJECT_COMPLETION_REQUESTED, actor
            )

        logger.info("project.completion_requested")
        await self._notify(
            NotificationKind.COMPLETION_REQUESTED,
            project,
            actor,
            "completion_requested",
            quote_id=quote.id,
            recipient_id=project.client_id,
        )
        return TransitionResult(command=None, project=project, quote=quote)

    async def confirm_completion(self, actor: Actor, project_id: uuid.UUID) -> TransitionResult:
        """Client signs off: project completed, escrow released to the provider."""
        bind_action_context(actor=actor, project_id=project_id)
        async with self._unit_of_work("project", "confirm_completion"):
            project = await self._get_project_or_raise(project_id)
            self._require_project_client(actor, project, "confirm_completion")
            escrow = await self._get_escrow_or_raise(project.id)
            fire(ProjectStateMachine, project.status, "complete")
            fire(EscrowStateMachine, escrow.status, "release")
            quote = await self._accepted_quote_or_raise(project, "confirm_completion")

            await self._set_escrow_status(
                escrow,
                "release",
                EventType.ESCROW_RELEASED,
                actor,
                {"provider_payout": str(escrow.provider_payout)},
            )
            await self._set_project_status(project, "complete", EventType.PROJECT_COMPLETED, actor)

        logger.info("project.completed", payout=str(escrow.provider_payout))
        await self._notify(
            NotificationKind.PROJECT_COMPLETED,
            project,
            actor,
            "completed",
            quote_id=quote.id,
            recipient_id=quote.provider_id,
        )
        return TransitionResult(command=None, project=project, quote=quote, escrow=escrow)

    async def raise_dispute(
        self, actor: Actor, project_id: uuid.UUID, reason: str | None = None
    ) -> TransitionResult:
        """Either party freezes the escrow; its amount can no longer change."""
        bind_action_context(actor=actor, project_id=project_id)
        async with self._unit_of_work("escrow", "raise_dispute"):
            project = await self._get_project_or_raise(project_id)
            quote = await self._accepted_quote_or_raise(project, "raise_dispute")
            if actor.role is ActorRole.PROVIDER:
                self._require_quote_provider(actor, quote, "raise_dispute")
                counterparty = project.client_id
            else:
                self._require_project_client(actor, project, "raise_dispute")
                counterparty = quote.provider_id
            escrow = await self._get_escrow_or_raise(project.id)
            await self._set_escrow_status(
                escrow, "dispute", EventType.ESCROW_DISPUTED, actor, {"reason": reason}
            )

        logger.warning("escrow.disputed", escrow_id=str(escrow.id), raised_by=actor.role.value)
        await self._notify(
            NotificationKind.DISPUTE_RAISED,
            project,
            actor,
            "disputed",
            quote_id=quote.id,
            recipient_id=counterparty,
        )
        return TransitionResult(command=None, project=project, quote=quote, escrow=escrow)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_project(self, project_id: uuid.UUID) -> Project:
        return await self._get_project_or_raise(project_id, for_update=False)

    async def get_escrow(self, project_id: uuid.UUID) -> Escrow:
        await self._get_project_or_raise(project_id, for_update=False)
        return await self._get_escrow_or_raise(project_id, for_update=False)

    async def get_events(self, project_id: uuid.UUID) -> list[TransactionEvent]:
        """Audit trail of a project, oldest first."""
        await self._get_project_or_raise(project_id, for_update=False)
        return await self._event_repo.get_by_project(project_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _close(
        self,
        project: Project,
        event_name: str,
        event_type: EventType,
        actor: Actor,
        reason: str | None = None,
    ) -> list[Quote]:
        fire(ProjectStateMachine, project.status, event_name)
        open_quotes = await self._quote_repo.get_open_siblings(project.id)
        for quote in open_quotes:
            await self._set_quote_status(
                quote, QuoteStatus.EXPIRED, EventType.QUOTE_EXPIRED, actor, {"reason": event_name}
            )
        await self._set_project_status(project, event_name, event_type, actor, {"reason": reason})
        return open_quotes

    async def _accepted_quote_or_raise(self, project: Project, attempted: str) -> Quote:
        accepted = await self._quote_repo.get_accepted(project.id, for_update=True)
        if not accepted:
            raise InvalidStateTransitionError(
                "project",
                project.status,
                attempted,
                reason="no quote on this project has been accepted",
            )
        return accepted[0]
