"""Transition Coordinator — applies quote and revision decisions across entities.

Every action follows the same shape:

    1. Load the rows involved, fresh and locked.
    2. Check the actor, then every state precondition, before any write.
    3. Build a named command (AcceptQuote, ResolveRevision, ...) listing
       every consequence: the cascade, the demotion, the escrow amount.
    4. Apply it as one atomic unit and append one audit event per
       entity transition.
    5. For money-relevant actions, synchronize the escrow in a second,
       best-effort unit (see services/base.py).
    6. Tell the notification service (fire-and-forget).

Consequences a provider could not write themselves (their quote becoming
accepted, competing quotes being rejected, the project advancing) are
applied here with the coordinator's own rights, never by the actor.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from marketplace_deals.domain.commands import (
    AcceptQuote,
    RejectQuote,
    RequestRevision,
    ResolveRevision,
    SubmitQuote,
    SynchronizeEscrow,
)
from marketplace_deals.domain.enums import (
    ActorRole,
    EntityType,
    EventType,
    NotificationKind,
    ProjectStatus,
    QuoteStatus,
    RevisionResolution,
    RevisionStatus,
)
from marketplace_deals.domain.exceptions import (
    InvalidStateTransitionError,
    MarketplaceError,
    PermissionDeniedError,
)
from marketplace_deals.domain.pricing import revised_amount
from marketplace_deals.domain.state_machine import (
    ProjectStateMachine,
    QuoteStateMachine,
    RevisionStateMachine,
    fire,
)
from marketplace_deals.infrastructure.database.orm_models import Quote, QuoteRevision
from marketplace_deals.logging_config import bind_action_context, get_logger
from marketplace_deals.services.base import CoordinatedService, TransitionResult

if TYPE_CHECKING:
    from decimal import Decimal

    from marketplace_deals.domain.actor import Actor
    from marketplace_deals.domain.commands import QuoteTerms
    from marketplace_deals.infrastructure.database.orm_models import Project

logger = get_logger(__name__)

_REVISION_EVENTS: dict[RevisionResolution, tuple[str, EventType]] = {
    RevisionResolution.ACCEPT: ("accept", EventType.REVISION_ACCEPTED),
    RevisionResolution.REJECT: ("reject", EventType.REVISION_REJECTED),
    RevisionResolution.MODIFY: ("modify", EventType.REVISION_MODIFIED),
}

_REVISABLE_QUOTE_STATUSES = frozenset({QuoteStatus.PENDING, QuoteStatus.VIEWED, QuoteStatus.ACCEPTED})


class TransitionCoordinator(CoordinatedService):
    """Quote submission, acceptance, rejection and revision negotiation."""

    # ------------------------------------------------------------------
    # Quote submission (provider)
    # ------------------------------------------------------------------

    async def submit_quote(
        self,
        actor: Actor,
        project_id: uuid.UUID,
        terms: QuoteTerms,
        provider_verified: bool = False,
    ) -> TransitionResult:
        """Create a quote; the provider's older open quotes on the project lapse."""
        bind_action_context(actor=actor, project_id=project_id)
        if actor.role is not ActorRole.PROVIDER:
            raise PermissionDeniedError("submit_quote", "only providers can send quotes")
        amount = terms.price()

        async with self._unit_of_work("quote", "submit_quote"):
            project = await self._get_project_or_raise(project_id)
            new_project_status = fire(ProjectStateMachine, project.status, "receive_quote")

            previous = await self._quote_repo.get_open_siblings(
                project.id, provider_id=actor.user_id
            )
            command = SubmitQuote(
                project_id=project.id,
                provider_id=actor.user_id,
                amount=amount,
                superseded=tuple(q.id for q in previous),
            )

            for old in previous:
                await self._set_quote_status(
                    old, QuoteStatus.EXPIRED, EventType.QUOTE_SUPERSEDED, actor, command.describe()
                )

            validity = terms.validity_hours or self._settings.quote_validity_hours
            quote = await self._quote_repo.create(
                Quote(
                    project_id=project.id,
                    provider_id=actor.user_id,
                    amount=amount,
                    labor_cost=terms.labor_cost,
                    materials_cost=terms.materials_cost,
                    urgent_surcharge_percent=terms.urgent_surcharge_percent or 0,
                    message=terms.message,
                    estimated_duration=terms.estimated_duration,
                    provider_verified=provider_verified,
                    expires_at=datetime.now(UTC) + timedelta(hours=validity),
                    status=QuoteStatus.PENDING.value,
                )
            )
            await self._record(
                actor,
                project.id,
                EntityType.QUOTE,
                quote.id,
                EventType.QUOTE_SUBMITTED,
                None,
                quote.status,
                command.describe(),
            )

            if new_project_status != project.status:
                await self._set_project_status(
                    project, "receive_quote", EventType.PROJECT_QUOTE_RECEIVED, actor
                )

        logger.info(
            "quote.submitted",
            quote_id=str(quote.id),
            amount=str(amount),
            superseded=len(previous),
        )
        await self._notify(
            NotificationKind.NEW_QUOTE,
            project,
            actor,
            "submitted",
            quote_id=quote.id,
            recipient_id=project.client_id,
        )
        return TransitionResult(command=command, project=project, quote=quote, related_quotes=previous)

    # ------------------------------------------------------------------
    # Client decisions on quotes
    # ------------------------------------------------------------------

    async def mark_quote_viewed(self, actor: Actor, quote_id: uuid.UUID) -> TransitionResult:
        """Read receipt. Only a pending quote changes; anything else is left as is."""
        async with self._unit_of_work("quote", "mark_viewed"):
            quote = await self._get_quote_or_raise(quote_id)
            project = await self._get_project_or_raise(quote.project_id, for_update=False)
            bind_action_context(actor=actor, project_id=project.id)
            self._require_project_client(actor, project, "view_quote")

            if quote.status == QuoteStatus.PENDING:
                await self._set_quote_status(quote, QuoteStatus.VIEWED, EventType.QUOTE_VIEWED, actor)
                logger.debug("quote.viewed", quote_id=str(quote.id))

        return TransitionResult(command=None, project=project, quote=quote)

    async def accept_quote(self, actor: Actor, quote_id: uuid.UUID) -> TransitionResult:
        """Accept one quote, reject its open competitors, and open the escrow.

        The quote, the cascade and the project advance commit together. The
        escrow follows in its own unit; if it fails the acceptance stands
        and the result carries a PartialSynchronizationFailure warning.
        """
        async with self._unit_of_work("quote", "accept_quote"):
            quote = await self._get_quote_or_raise(quote_id)
            project = await self._get_project_or_raise(quote.project_id)
            bind_action_context(actor=actor, project_id=project.id, quote_id=quote.id)
            self._require_project_client(actor, project, "accept_quote")

            # Both checks run on the rows just locked, so a second accept
            # racing this one fails here instead of double-accepting.
            fire(QuoteStateMachine, quote.status, "accept")
            await self._ensure_no_other_accepted(project, quote, "accept_quote")
            fire(ProjectStateMachine, project.status, "accept_quote")

            siblings = await self._quote_repo.get_open_siblings(project.id, exclude=(quote.id,))
            command = AcceptQuote(
                project_id=project.id,
                primary=quote.id,
                amount=quote.amount,
                superseded=tuple(q.id for q in siblings),
            )

            await self._set_quote_status(
                quote, QuoteStatus.ACCEPTED, EventType.QUOTE_ACCEPTED, actor, command.describe()
            )
            await self._cascade_reject(siblings, actor, command.describe())
            await self._set_project_status(
                project, "accept_quote", EventType.PROJECT_QUOTE_ACCEPTED, actor
            )

        logger.info(
            "quote.accepted",
            quote_id=str(quote.id),
            amount=str(quote.amount),
            cascade_rejected=len(siblings),
        )

        escrow, warning = await self._synchronize_after_commit(
            SynchronizeEscrow(project.id, quote.amount, quote.provider_verified),
            actor,
            "accept_quote",
            project,
            quote,
            *siblings,
        )

        await self._notify(
            NotificationKind.QUOTE_ACCEPTED,
            project,
            actor,
            "accepted",
            quote_id=quote.id,
            recipient_id=quote.provider_id,
        )
        for sibling in siblings:
            await self._notify(
                NotificationKind.QUOTE_REJECTED,
                project,
                actor,
                "rejected",
                quote_id=sibling.id,
                recipient_id=sibling.provider_id,
            )
        return TransitionResult(
            command=command,
            project=project,
            quote=quote,
            escrow=escrow,
            related_quotes=siblings,
            warning=warning,
        )

    async def reject_quote(self, actor: Actor, quote_id: uuid.UUID) -> TransitionResult:
        """Decline a single quote. No cascade, the project is unaffected."""
        async with self._unit_of_work("quote", "reject_quote"):
            quote = await self._get_quote_or_raise(quote_id)
            project = await self._get_project_or_raise(quote.project_id, for_update=False)
            bind_action_context(actor=actor, project_id=project.id, quote_id=quote.id)
            self._require_project_client(actor, project, "reject_quote")

            fire(QuoteStateMachine, quote.status, "reject")
            command = RejectQuote(project_id=project.id, quote_id=quote.id)
            await self._set_quote_status(
                quote, QuoteStatus.REJECTED, EventType.QUOTE_REJECTED, actor, command.describe()
            )

        logger.info("quote.rejected", quote_id=str(quote.id))
        await self._notify(
            NotificationKind.QUOTE_REJECTED,
            project,
            actor,
            "rejected",
            quote_id=quote.id,
            recipient_id=quote.provider_id,
        )
        return TransitionResult(command=command, project=project, quote=quote)

    # ------------------------------------------------------------------
    # Revision negotiation
    # ------------------------------------------------------------------

    async def request_revision(
        self,
        actor: Actor,
        quote_id: uuid.UUID,
        suggested_price: Decimal | None = None,
        additional_fees: Decimal | None = None,
        client_comments: str | None = None,
    ) -> TransitionResult:
        """Open a negotiation round on a pending, viewed or accepted quote."""
        if (suggested_price is not None and suggested_price < 0) or (
            additional_fees is not None and additional_fees < 0
        ):
            raise MarketplaceError(
                "A suggested price or additional fee cannot be negative.",
                code="INVALID_REVISION_PRICE",
            )

        async with self._unit_of_work("revision", "request_revision"):
            quote = await self._get_quote_or_raise(quote_id)
            project = await self._get_project_or_raise(quote.project_id)
            bind_action_context(actor=actor, project_id=project.id, quote_id=quote.id)
            self._require_project_client(actor, project, "request_revision")

            if ProjectStatus(project.status).is_terminal:
                raise InvalidStateTransitionError("project", project.status, "request_revision")
            if QuoteStatus(quote.status) not in _REVISABLE_QUOTE_STATUSES:
                raise InvalidStateTransitionError("quote", quote.status, "request_revision")
            await self._ensure_no_other_accepted(project, quote, "request_revision")

            outstanding = await self._revision_repo.get_pending_for_quote(quote.id)
            if outstanding is not None:
                raise InvalidStateTransitionError(
                    "revision",
                    outstanding.status,
                    "request_revision",
                    reason="a revision on this quote is still waiting for the provider's answer",
                )

            command = RequestRevision(
                project_id=project.id,
                quote_id=quote.id,
                suggested_price=suggested_price,
                additional_fees=additional_fees,
            )
            revision = await self._revision_repo.create(
                QuoteRevision(
                    quote_id=quote.id,
                    project_id=project.id,
                    requested_by=actor.user_id,
                    suggested_price=suggested_price,
                    additional_fees=additional_fees,
                    client_comments=client_comments,
                    status=RevisionStatus.PENDING.value,
                )
            )
            await self._record(
                actor,
                project.id,
                EntityType.REVISION,
                revision.id,
                EventType.REVISION_REQUESTED,
                None,
                revision.status,
                command.describe(),
            )

        logger.info("revision.requested", revision_id=str(revision.id), quote_id=str(quote.id))
        await self._notify(
            NotificationKind.QUOTE_REVISION_REQUESTED,
            project,
            actor,
            "requested",
            quote_id=quote.id,
            revision_id=revision.id,
            recipient_id=quote.provider_id,
        )
        return TransitionResult(command=command, project=project, quote=quote, revision=revision)

    async def resolve_revision(
        self,
        actor: Actor,
        revision_id: uuid.UUID,
        resolution: RevisionResolution,
        provider_response: str | None = None,
        terms: QuoteTerms | None = None,
    ) -> TransitionResult:
        """Provider's one-time answer to a revision.

        Args:
            actor: Must be the provider who owns the revised quote.
            revision_id: The pending revision.
            resolution: accept, reject or modify.
            provider_response: Optional note to the client.
            terms: The counter-offer; required for modify, ignored otherwise.

        Raises:
            InvalidStateTransitionError: The revision was already answered,
                the quote or project can no longer take the outcome, or a
                different quote on the project is already accepted.
            EscrowIneligibleForUpdateError: The price would change on a
                released or disputed escrow. Nothing is written.
        """
        resolution = RevisionResolution(resolution)
        if resolution is RevisionResolution.MODIFY and terms is None:
            raise MarketplaceError(
                "A counter-offer needs the terms of the new quote.",
                code="INVALID_QUOTE_PRICE",
            )
        new_quote_amount = terms.price() if resolution is RevisionResolution.MODIFY else None
        attempted = f"{resolution.value}_revision"

        async with self._unit_of_work("revision", attempted):
            revision = await self._get_revision_or_raise(revision_id)
            quote = await self._get_quote_or_raise(revision.quote_id)
            project = await self._get_project_or_raise(revision.project_id)
            bind_action_context(
                actor=actor, project_id=project.id, quote_id=quote.id, revision_id=revision.id
            )
            self._require_quote_provider(actor, quote, attempted)

            revision_event, audit_event = _REVISION_EVENTS[resolution]
            fire(RevisionStateMachine, revision.status, revision_event)

            if resolution is RevisionResolution.REJECT:
                command = ResolveRevision(
                    project_id=project.id,
                    revision_id=revision.id,
                    quote_id=quote.id,
                    resolution=resolution,
                )
                await self._resolve(
                    revision, RevisionStatus.REJECTED, audit_event, actor, command, provider_response
                )
                related: list[Quote] = []
                escrow_amount = None
            else:
                if ProjectStatus(project.status).is_terminal:
                    raise InvalidStateTransitionError("project", project.status, attempted)
                await self._ensure_no_other_accepted(project, quote, attempted)
                # Refuse before writing anything if the money is already settled.
                await self._synchronizer.ensure_eligible(project.id)

                if resolution is RevisionResolution.ACCEPT:
                    command, related = await self._apply_revision_accept(
                        project, quote, revision, actor, provider_response
                    )
                else:
                    command, quote, related = await self._apply_revision_modify(
                        project, quote, revision, actor, provider_response, terms, new_quote_amount
                    )
                escrow_amount = command.escrow_amount

        logger.info(
            "revision.resolved",
            revision_id=str(revision.id),
            resolution=resolution.value,
            accepted_quote_id=str(command.accepted_quote_id) if command.accepted_quote_id else None,
            escrow_amount=str(escrow_amount) if escrow_amount is not None else None,
        )

        escrow = warning = None
        if escrow_amount is not None:
            escrow, warning = await self._synchronize_after_commit(
                SynchronizeEscrow(project.id, escrow_amount, quote.provider_verified),
                actor,
                attempted,
                project,
                quote,
                revision,
                *related,
            )

        await self._notify(
            NotificationKind.QUOTE_REVISION_RESPONDED,
            project,
            actor,
            revision.status,
            quote_id=quote.id,
            revision_id=revision.id,
            recipient_id=revision.requested_by,
        )
        return TransitionResult(
            command=command,
            project=project,
            quote=quote,
            revision=revision,
            escrow=escrow,
            related_quotes=related,
            warning=warning,
        )

    async def _apply_revision_accept(
        self,
        project: Project,
        quote: Quote,
        revision: QuoteRevision,
        actor: Actor,
        provider_response: str | None,
    ) -> tuple[ResolveRevision, list[Quote]]:
        fire(QuoteStateMachine, quote.status, "confirm_revision")
        new_amount = revised_amount(revision.suggested_price, revision.additional_fees)
        siblings = await self._quote_repo.get_open_siblings(project.id, exclude=(quote.id,))
        command = ResolveRevision(
            project_id=project.id,
            revision_id=revision.id,
            quote_id=quote.id,
            resolution=RevisionResolution.ACCEPT,
            new_amount=new_amount,
            superseded=tuple(q.id for q in siblings),
            escrow_amount=new_amount if new_amount is not None else quote.amount,
        )

        if new_amount is not None and new_amount != quote.amount:
            old_amount = quote.amount
            await self._quote_repo.update_amount(quote, new_amount)
            await self._record(
                actor,
                project.id,
                EntityType.QUOTE,
                quote.id,
                EventType.QUOTE_REPRICED,
                quote.status,
                quote.status,
                {"old_amount": str(old_amount), "new_amount": str(new_amount)},
            )
        if quote.status != QuoteStatus.ACCEPTED:
            await self._set_quote_status(
                quote, QuoteStatus.ACCEPTED, EventType.QUOTE_ACCEPTED, actor, command.describe()
            )
        await self._cascade_reject(siblings, actor, command.describe())
        await self._resolve(
            revision, RevisionStatus.ACCEPTED, EventType.REVISION_ACCEPTED, actor, command, provider_response
        )
        return command, siblings

    async def _apply_revision_modify(
        self,
        project: Project,
        original: Quote,
        revision: QuoteRevision,
        actor: Actor,
        provider_response: str | None,
        terms: QuoteTerms,
        amount: Decimal,
    ) -> tuple[ResolveRevision, Quote, list[Quote]]:
        status = QuoteStatus(original.status)
        if status not in _REVISABLE_QUOTE_STATUSES:
            raise InvalidStateTransitionError("quote", original.status, "modify_revision")

        siblings = await self._quote_repo.get_open_siblings(project.id, exclude=(original.id,))
        replacement_id = uuid.uuid4()
        command = ResolveRevision(
            project_id=project.id,
            revision_id=revision.id,
            quote_id=original.id,
            resolution=RevisionResolution.MODIFY,
            replacement_quote_id=replacement_id,
            superseded=tuple(q.id for q in siblings),
            escrow_amount=amount,
        )

        # The original keeps its price and steps back to viewed.
        if status is QuoteStatus.ACCEPTED:
            await self._set_quote_status(
                original, QuoteStatus.VIEWED, EventType.QUOTE_DEMOTED, actor, command.describe()
            )
        elif status is QuoteStatus.PENDING:
            await self._set_quote_status(
                original, QuoteStatus.VIEWED, EventType.QUOTE_VIEWED, actor, command.describe()
            )

        validity = terms.validity_hours or self._settings.quote_validity_hours
        replacement = await self._quote_repo.create(
            Quote(
                id=replacement_id,
                project_id=project.id,
                provider_id=original.provider_id,
                amount=amount,
                labor_cost=terms.labor_cost,
                materials_cost=terms.materials_cost,
                urgent_surcharge_percent=terms.urgent_surcharge_percent or 0,
                message=terms.message,
                estimated_duration=terms.estimated_duration,
                provider_verified=original.provider_verified,
                expires_at=datetime.now(UTC) + timedelta(hours=validity),
                status=QuoteStatus.PENDING.value,
            )
        )
        await self._record(
            actor,
            project.id,
            EntityType.QUOTE,
            replacement.id,
            EventType.QUOTE_SUBMITTED,
            None,
            replacement.status,
            command.describe(),
        )
        await self._set_quote_status(
            replacement, QuoteStatus.ACCEPTED, EventType.QUOTE_ACCEPTED, actor, command.describe()
        )
        await self._cascade_reject(siblings, actor, command.describe())
        await self._resolve(
            revision,
            RevisionStatus.MODIFIED,
            EventType.REVISION_MODIFIED,
            actor,
            command,
            provider_response,
            modified_quote_id=replacement.id,
        )
        return command, replacement, [original, *siblings]

    # ------------------------------------------------------------------
    # Explicit re-synchronization (support)
    # ------------------------------------------------------------------

    async def resynchronize_escrow(self, actor: Actor, project_id: uuid.UUID) -> TransitionResult:
        """Bring the escrow back onto the accepted quote's price.

        The repair path after a PartialSynchronizationFailure. Unlike the
        follow-up inside user actions, failures here are raised.
        """
        bind_action_context(actor=actor, project_id=project_id)
        self._require_system(actor, "resynchronize_escrow")

        async with self._unit_of_work("escrow", "resynchronize_escrow"):
            project = await self._get_project_or_raise(project_id)
            accepted = await self._quote_repo.get_accepted(project.id, for_update=True)
            if not accepted:
                raise InvalidStateTransitionError(
                    "escrow",
                    project.status,
                    "resynchronize_escrow",
                    reason="no quote on this project is accepted",
                )
            quote = accepted[0]
            command = SynchronizeEscrow(project.id, quote.amount, quote.provider_verified)
            escrow = await self._synchronizer.synchronize(command, actor)

        logger.info(
            "escrow.resynchronized",
            quote_id=str(quote.id),
            amount=str(quote.amount),
        )
        return TransitionResult(command=command, project=project, quote=quote, escrow=escrow)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def list_quotes(self, project_id: uuid.UUID) -> list[Quote]:
        await self._get_project_or_raise(project_id, for_update=False)
        return await self._quote_repo.get_by_project(project_id)

    async def get_quote(self, quote_id: uuid.UUID) -> Quote:
        return await self._get_quote_or_raise(quote_id, for_update=False)

    async def list_revisions(self, quote_id: uuid.UUID) -> list[QuoteRevision]:
        await self._get_quote_or_raise(quote_id, for_update=False)
        return await self._revision_repo.get_by_quote(quote_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _ensure_no_other_accepted(self, project: Project, quote: Quote, attempted: str) -> None:
        accepted = await self._quote_repo.get_accepted(project.id, for_update=True)
        if any(other.id != quote.id for other in accepted):
            raise InvalidStateTransitionError(
                "quote",
                quote.status,
                attempted,
                reason="a different quote on this project has already been accepted",
            )

    async def _cascade_reject(self, siblings: list[Quote], actor: Actor, metadata: dict) -> None:
        for sibling in siblings:
            await self._set_quote_status(
                sibling, QuoteStatus.REJECTED, EventType.QUOTE_CASCADE_REJECTED, actor, metadata
            )

    async def _resolve(
        self,
        revision: QuoteRevision,
        new_status: RevisionStatus,
        event_type: EventType,
        actor: Actor,
        command: ResolveRevision,
        provider_response: str | None,
        modified_quote_id: uuid.UUID | None = None,
    ) -> None:
        old_status = revision.status
        await self._revision_repo.resolve(
            revision, new_status, provider_response=provider_response, modified_quote_id=modified_quote_id
        )
        await self._record(
            actor,
            revision.project_id,
            EntityType.REVISION,
            revision.id,
            event_type,
            old_status,
            new_status.value,
            command.describe(),
        )
