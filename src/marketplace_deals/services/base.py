"""Plumbing shared by the services that apply transitions.

A user action runs as one or two units of work:

    1. The primary unit: every status the actor's decision implies
       (quote, cascade, revision, project). Atomic. A version conflict or
       uniqueness violation anywhere in it becomes ConcurrentUpdateError.
    2. The escrow follow-up, only for money-relevant actions. Best effort:
       once the primary unit is committed its failure is logged, recorded
       in the audit trail and handed back as a PartialSynchronizationFailure
       warning instead of being raised.

Notifications go out after the commits and never fail the action.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.orm.exc import StaleDataError

from marketplace_deals.config import get_settings
from marketplace_deals.domain.enums import (
    ActorRole,
    EntityType,
    EscrowStatus,
    EventType,
    ProjectStatus,
    QuoteStatus,
)
from marketplace_deals.domain.exceptions import (
    ConcurrentUpdateError,
    EntityNotFoundError,
    PartialSynchronizationFailure,
    PermissionDeniedError,
)
from marketplace_deals.domain.notifier_protocol import Notification
from marketplace_deals.domain.state_machine import (
    EscrowStateMachine,
    ProjectStateMachine,
    QuoteStateMachine,
    fire,
)
from marketplace_deals.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    ProjectRepository,
    QuoteRepository,
    RevisionRepository,
)
from marketplace_deals.infrastructure.notifications import emit_notification
from marketplace_deals.logging_config import get_logger
from marketplace_deals.services.escrow_synchronizer import EscrowSynchronizer

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession

    from marketplace_deals.config import Settings
    from marketplace_deals.domain.actor import Actor
    from marketplace_deals.domain.commands import SynchronizeEscrow
    from marketplace_deals.domain.enums import NotificationKind
    from marketplace_deals.domain.notifier_protocol import NotificationEmitter
    from marketplace_deals.infrastructure.database.orm_models import (
        Escrow,
        Project,
        Quote,
        QuoteRevision,
    )

logger = get_logger(__name__)

_QUOTE_EVENTS: dict[QuoteStatus, str] = {
    QuoteStatus.REJECTED: "reject",
    QuoteStatus.EXPIRED: "expire",
}


def _column_values(row: object) -> dict[str, object]:
    return {attr.key: getattr(row, attr.key) for attr in inspect(row).mapper.column_attrs}


def _restore(committed: list[tuple[object, dict[str, object]]]) -> None:
    for row, values in committed:
        for key, value in values.items():
            set_committed_value(row, key, value)


@dataclass
class TransitionResult:
    """What an applied command left behind.

    Attributes:
        command: The command value that was applied.
        project: The project, as committed.
        quote: The quote the action was about (the replacement for a modify).
        revision: The revision, for negotiation actions.
        escrow: The escrow after synchronization, if there is one.
        related_quotes: Other quotes the command changed (cascade, demotion).
        warning: Set when the escrow follow-up failed after the commit.
    """

    command: object
    project: Project
    quote: Quote | None = None
    revision: QuoteRevision | None = None
    escrow: Escrow | None = None
    related_quotes: list[Quote] = field(default_factory=list)
    warning: PartialSynchronizationFailure | None = None


class CoordinatedService:
    """Base for services that read, validate and write several entities at once."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationEmitter | None = None,
        settings: Settings | None = None,
        synchronizer: EscrowSynchronizer | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._notifier = notifier
        self._project_repo = ProjectRepository(session)
        self._quote_repo = QuoteRepository(session)
        self._revision_repo = RevisionRepository(session)
        self._escrow_repo = EscrowRepository(session)
        self._event_repo = EventRepository(session)
        self._synchronizer = synchronizer or EscrowSynchronizer(session, self._settings)

    # ------------------------------------------------------------------
    # Units of work
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _unit_of_work(self, entity: str, attempted: str) -> AsyncIterator[None]:
        """Commit everything written inside the block, or nothing."""
        try:
            yield
            await self._session.commit()
        except (StaleDataError, IntegrityError) as err:
            await self._session.rollback()
            logger.warning(
                "transition.conflict",
                entity=entity,
                attempted=attempted,
                error=err.__class__.__name__,
            )
            raise ConcurrentUpdateError(entity, attempted) from err
        except Exception:
            await self._session.rollback()
            raise

    async def _synchronize_after_commit(
        self,
        command: SynchronizeEscrow,
        actor: Actor,
        step: str,
        project: Project,
        *rows: object,
    ) -> tuple[Escrow | None, PartialSynchronizationFailure | None]:
        """Run the escrow follow-up of an already committed decision.

        On failure the committed rows are re-read so the caller reports
        what is actually stored, and the failure is returned, not raised.
        If the store cannot even be read back, the rows keep the values the
        primary unit committed and no escrow is reported.
        """
        committed = [(row, _column_values(row)) for row in (project, *rows)]
        try:
            async with self._unit_of_work("escrow", step):
                escrow = await self._synchronizer.synchronize(command, actor)
        except Exception as exc:
            logger.exception(
                "escrow.sync_failed",
                project_id=str(command.project_id),
                step=step,
                amount=str(command.amount),
            )
            warning = PartialSynchronizationFailure(
                str(command.project_id), step, cause=f"{exc.__class__.__name__}: {exc}"
            )
        else:
            return escrow, None

        # A rollback expires every loaded row; fall back to the committed values.
        reloaded = await self._reload(committed)
        recorded = await self._record_sync_failure(command, actor, project, warning)
        if not (reloaded and recorded):
            _restore(committed)
            return None, warning
        try:
            escrow = await self._escrow_repo.get_by_project(command.project_id)
        except Exception:
            logger.exception("escrow.sync_failure_reload_failed", project_id=str(command.project_id))
            return None, warning
        return escrow, warning

    async def _reload(self, committed: list[tuple[object, dict[str, object]]]) -> bool:
        try:
            for row, _ in committed:
                await self._session.refresh(row)
        except Exception:
            logger.exception("escrow.sync_failure_reload_failed")
            _restore(committed)
            return False
        return True

    async def _record_sync_failure(
        self,
        command: SynchronizeEscrow,
        actor: Actor,
        project: Project,
        warning: PartialSynchronizationFailure,
    ) -> bool:
        try:
            async with self._unit_of_work("escrow", "record_sync_failure"):
                await self._record(
                    actor,
                    project.id,
                    EntityType.PROJECT,
                    project.id,
                    EventType.ESCROW_SYNC_FAILED,
                    project.status,
                    project.status,
                    {"step": warning.step, "amount": str(command.amount), "cause": warning.cause},
                )
        except Exception:
            logger.exception("escrow.sync_failure_not_recorded", project_id=str(command.project_id))
            return False
        return True

    # ------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------

    async def _get_project_or_raise(self, project_id: uuid.UUID, for_update: bool = True) -> Project:
        project = await self._project_repo.get_by_id(project_id, for_update=for_update)
        if project is None:
            raise EntityNotFoundError("project", str(project_id))
        return project

    async def _get_quote_or_raise(self, quote_id: uuid.UUID, for_update: bool = True) -> Quote:
        quote = await self._quote_repo.get_by_id(quote_id, for_update=for_update)
        if quote is None:
            raise EntityNotFoundError("quote", str(quote_id))
        return quote

    async def _get_revision_or_raise(
        self, revision_id: uuid.UUID, for_update: bool = True
    ) -> QuoteRevision:
        revision = await self._revision_repo.get_by_id(revision_id, for_update=for_update)
        if revision is None:
            raise EntityNotFoundError("revision", str(revision_id))
        return revision

    async def _get_escrow_or_raise(self, project_id: uuid.UUID, for_update: bool = True) -> Escrow:
        escrow = await self._escrow_repo.get_by_project(project_id, for_update=for_update)
        if escrow is None:
            raise EntityNotFoundError("escrow", str(project_id))
        return escrow

    # ------------------------------------------------------------------
    # Permission guards
    # ------------------------------------------------------------------

    @staticmethod
    def _require_project_client(actor: Actor, project: Project, action: str) -> None:
        if actor.role is not ActorRole.CLIENT:
            raise PermissionDeniedError(action, "only the client who posted this project can do that")
        if actor.user_id != project.client_id:
            raise PermissionDeniedError(action, "this project belongs to another client")

    @staticmethod
    def _require_quote_provider(actor: Actor, quote: Quote, action: str) -> None:
        if actor.role is not ActorRole.PROVIDER:
            raise PermissionDeniedError(action, "only the provider who sent this quote can do that")
        if actor.user_id != quote.provider_id:
            raise PermissionDeniedError(action, "this quote belongs to another provider")

    @staticmethod
    def _require_system(actor: Actor, action: str) -> None:
        if not actor.is_system:
            raise PermissionDeniedError(action, "this is handled by the platform, not by users")

    # ------------------------------------------------------------------
    # Guarded status writes (each appends its audit event)
    # ------------------------------------------------------------------

    async def _set_quote_status(
        self,
        quote: Quote,
        new_status: QuoteStatus,
        event_type: EventType,
        actor: Actor,
        metadata: dict | None = None,
    ) -> None:
        old_status = quote.status
        if new_status is QuoteStatus.ACCEPTED:
            event_name = "confirm_revision" if old_status == QuoteStatus.ACCEPTED else "accept"
        elif new_status is QuoteStatus.VIEWED:
            event_name = "demote" if old_status == QuoteStatus.ACCEPTED else "mark_viewed"
        else:
            event_name = _QUOTE_EVENTS[new_status]
        fire(QuoteStateMachine, old_status, event_name)
        await self._quote_repo.update_status(quote, new_status)
        await self._record(
            actor,
            quote.project_id,
            EntityType.QUOTE,
            quote.id,
            event_type,
            old_status,
            new_status.value,
            metadata,
        )

    async def _set_project_status(
        self,
        project: Project,
        event_name: str,
        event_type: EventType,
        actor: Actor,
        metadata: dict | None = None,
    ) -> None:
        old_status = project.status
        new_status = fire(ProjectStateMachine, old_status, event_name)
        await self._project_repo.update_status(project, ProjectStatus(new_status))
        await self._record(
            actor, project.id, EntityType.PROJECT, project.id, event_type, old_status, new_status, metadata
        )

    async def _set_escrow_status(
        self,
        escrow: Escrow,
        event_name: str,
        event_type: EventType,
        actor: Actor,
        metadata: dict | None = None,
    ) -> None:
        old_status = escrow.status
        new_status = fire(EscrowStateMachine, old_status, event_name)
        await self._escrow_repo.update_status(escrow, EscrowStatus(new_status))
        await self._record(
            actor, escrow.project_id, EntityType.ESCROW, escrow.id, event_type, old_status, new_status, metadata
        )

    # ------------------------------------------------------------------
    # Audit + notifications
    # ------------------------------------------------------------------

    async def _record(
        self,
        actor: Actor,
        project_id: uuid.UUID,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        event_type: EventType,
        old_status: str | None,
        new_status: str,
        metadata: dict | None = None,
    ) -> None:
        await self._event_repo.record(
            project_id=project_id,
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type,
            old_status=old_status,
            new_status=new_status,
            actor=str(actor),
            metadata=metadata,
        )

    async def _notify(
        self,
        kind: NotificationKind,
        project: Project,
        actor: Actor,
        outcome: str,
        quote_id: uuid.UUID | None = None,
        revision_id: uuid.UUID | None = None,
        recipient_id: uuid.UUID | None = None,
    ) -> bool:
        return await emit_notification(
            self._notifier,
            Notification(
                event_kind=kind,
                project_id=project.id,
                actor_role=actor.role,
                outcome=outcome,
                quote_id=quote_id,
                revision_id=revision_id,
                recipient_id=recipient_id,
            ),
        )
