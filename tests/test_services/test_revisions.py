"""Tests for the revision negotiation: request, accept, reject, modify."""

from __future__ import annotations

from decimal import Decimal

import pytest

from marketplace_deals.domain import (
    InvalidStateTransitionError,
    MarketplaceError,
    PermissionDeniedError,
    QuoteTerms,
    RevisionResolution,
)


class TestRequestRevision:
    @pytest.mark.asyncio
    async def test_opens_a_pending_revision(
        self, coordinator, make_project, make_quote, client, provider_a, notifier
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")

        result = await coordinator.request_revision(
            client, quote.id, suggested_price=Decimal("90000"), client_comments="Tighter budget"
        )

        assert result.revision.status == "pending"
        assert result.revision.requested_by == client.user_id
        assert result.quote.status == "pending"
        assert notifier.sent[-1].event_kind.value == "quote_revision_requested"
        assert notifier.sent[-1].recipient_id == provider_a.user_id

    @pytest.mark.asyncio
    async def test_second_pending_revision_is_refused(
        self, coordinator, make_project, make_quote, make_revision, client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        quote_id = quote.id
        await make_revision(quote_id, suggested_price="90000")

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            await coordinator.request_revision(client, quote_id, suggested_price=Decimal("85000"))
        assert exc_info.value.entity == "revision"
        assert len(await coordinator.list_revisions(quote_id)) == 1

    @pytest.mark.asyncio
    async def test_negative_price_is_refused(
        self, coordinator, make_project, make_quote, client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")

        with pytest.raises(MarketplaceError) as exc_info:
            await coordinator.request_revision(client, quote.id, suggested_price=Decimal("-5"))
        assert exc_info.value.code == "INVALID_REVISION_PRICE"

    @pytest.mark.asyncio
    async def test_rejected_quote_cannot_be_revised(
        self, coordinator, make_project, make_quote, client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        quote_id = quote.id
        await coordinator.reject_quote(client, quote_id)

        with pytest.raises(InvalidStateTransitionError):
            await coordinator.request_revision(client, quote_id, suggested_price=Decimal("90000"))

    @pytest.mark.asyncio
    async def test_cancelled_project_cannot_be_revised(
        self, coordinator, lifecycle, make_project, make_quote, client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        quote_id = quote.id
        await lifecycle.cancel_project(client, project.id)

        with pytest.raises(InvalidStateTransitionError):
            await coordinator.request_revision(client, quote_id, suggested_price=Decimal("90000"))

    @pytest.mark.asyncio
    async def test_only_the_owning_client_requests(
        self, coordinator, make_project, make_quote, other_client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        with pytest.raises(PermissionDeniedError):
            await coordinator.request_revision(other_client, quote.id, suggested_price=Decimal("1"))


class TestAcceptRevision:
    @pytest.mark.asyncio
    async def test_price_plus_fees_becomes_the_quote_amount(
        self, coordinator, lifecycle, make_project, make_quote, make_revision, provider_a, provider_b
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "160000")
        sibling = await make_quote(provider_b, project.id, "170000")
        revision = await make_revision(quote.id, suggested_price="150000", additional_fees="5000")

        result = await coordinator.resolve_revision(
            provider_a, revision.id, RevisionResolution.ACCEPT, provider_response="Deal"
        )

        assert result.warning is None
        assert result.revision.status == "accepted"
        assert result.revision.responded_at is not None
        assert result.revision.provider_response == "Deal"
        assert result.quote.status == "accepted"
        assert result.quote.amount == Decimal("155000")
        assert result.escrow.total_amount == Decimal("155000")
        assert result.project.status == "quote_accepted"
        assert [q.id for q in result.related_quotes] == [sibling.id]
        assert result.related_quotes[0].status == "rejected"

        events = [e.event_type for e in await lifecycle.get_events(project.id)]
        assert "QUOTE_REPRICED" in events
        assert "REVISION_ACCEPTED" in events
        assert "QUOTE_CASCADE_REJECTED" in events

    @pytest.mark.asyncio
    async def test_revision_on_a_pending_quote_opens_the_escrow(
        self, coordinator, lifecycle, make_project, make_quote, make_revision, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        assert (await lifecycle.get_project(project.id)).status == "quote_received"
        revision = await make_revision(quote.id, suggested_price="90000")

        result = await coordinator.resolve_revision(provider_a, revision.id, RevisionResolution.ACCEPT)

        assert result.warning is None
        assert result.quote.amount == Decimal("90000")
        assert result.quote.status == "accepted"
        assert result.escrow.total_amount == Decimal("90000")
        assert result.escrow.status == "pending"
        assert result.project.status == "quote_accepted"
        events = [e.event_type for e in await lifecycle.get_events(project.id)]
        assert events.count("ESCROW_CREATED") == 1
        assert "PROJECT_QUOTE_ACCEPTED" in events

    @pytest.mark.asyncio
    async def test_zero_price_revision_still_advances_the_project(
        self, coordinator, lifecycle, make_project, make_quote, make_revision, provider_a, provider_b
    ) -> None:
        project = await make_project()
        project_id = project.id
        quote = await make_quote(provider_a, project_id, "100000")
        other = await make_quote(provider_b, project_id, "80000")
        revision = await make_revision(quote.id, suggested_price="0")

        result = await coordinator.resolve_revision(provider_a, revision.id, RevisionResolution.ACCEPT)

        assert result.warning is None
        assert result.quote.status == "accepted"
        assert result.quote.amount == Decimal("0")
        assert result.escrow is None
        assert result.project.status == "quote_accepted"
        assert [(q.id, q.status) for q in result.related_quotes] == [(other.id, "rejected")]
        events = [e.event_type for e in await lifecycle.get_events(project_id)]
        assert "PROJECT_QUOTE_ACCEPTED" in events
        assert "ESCROW_CREATED" not in events

    @pytest.mark.asyncio
    async def test_zero_price_counter_offer_still_advances_the_project(
        self, coordinator, make_project, make_quote, make_revision, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        revision = await make_revision(quote.id, suggested_price="50000")

        result = await coordinator.resolve_revision(
            provider_a,
            revision.id,
            RevisionResolution.MODIFY,
            terms=QuoteTerms(amount=Decimal("0")),
        )

        assert result.quote.status == "accepted"
        assert result.escrow is None
        assert result.project.status == "quote_accepted"

    @pytest.mark.asyncio
    async def test_revision_without_price_keeps_the_amount(
        self, coordinator, make_project, make_quote, make_revision, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        revision = await make_revision(quote.id)

        result = await coordinator.resolve_revision(provider_a, revision.id, RevisionResolution.ACCEPT)

        assert result.quote.amount == Decimal("100000")
        assert result.escrow.total_amount == Decimal("100000")

    @pytest.mark.asyncio
    async def test_repricing_an_accepted_quote_resynchronizes_escrow(
        self, coordinator, lifecycle, make_project, make_quote, make_revision, client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        await coordinator.accept_quote(client, quote.id)
        revision = await make_revision(quote.id, suggested_price="90000")

        result = await coordinator.resolve_revision(provider_a, revision.id, RevisionResolution.ACCEPT)

        assert result.quote.status == "accepted"
        assert result.escrow.total_amount == Decimal("90000")
        assert result.escrow.commission_amount == Decimal("9000.00")
        assert result.project.status == "quote_accepted"
        events = [e.event_type for e in await lifecycle.get_events(project.id)]
        assert events.count("ESCROW_CREATED") == 1
        assert events.count("ESCROW_RESYNCHRONIZED") == 1

    @pytest.mark.asyncio
    async def test_answered_revision_cannot_be_answered_again(
        self, coordinator, lifecycle, make_project, make_quote, make_revision, provider_a
    ) -> None:
        project = await make_project()
        project_id = project.id
        quote = await make_quote(provider_a, project_id, "100000")
        revision = await make_revision(quote.id, suggested_price="90000")
        revision_id = revision.id
        await coordinator.resolve_revision(provider_a, revision_id, RevisionResolution.ACCEPT)
        events_before = len(await lifecycle.get_events(project_id))

        for resolution in RevisionResolution:
            terms = QuoteTerms(amount=Decimal("1")) if resolution is RevisionResolution.MODIFY else None
            with pytest.raises(InvalidStateTransitionError) as exc_info:
                await coordinator.resolve_revision(provider_a, revision_id, resolution, terms=terms)
            assert exc_info.value.entity == "revision"

        assert len(await lifecycle.get_events(project_id)) == events_before
        quote_after = (await coordinator.list_quotes(project_id))[0]
        assert quote_after.amount == Decimal("90000")

    @pytest.mark.asyncio
    async def test_other_provider_cannot_answer(
        self, coordinator, make_project, make_quote, make_revision, provider_a, provider_b
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        revision = await make_revision(quote.id, suggested_price="90000")

        with pytest.raises(PermissionDeniedError):
            await coordinator.resolve_revision(provider_b, revision.id, RevisionResolution.ACCEPT)


class TestRejectRevision:
    @pytest.mark.asyncio
    async def test_only_the_revision_changes(
        self, coordinator, lifecycle, make_project, make_quote, make_revision, provider_a, notifier
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        revision = await make_revision(quote.id, suggested_price="50000")

        result = await coordinator.resolve_revision(provider_a, revision.id, RevisionResolution.REJECT)

        assert result.revision.status == "rejected"
        assert result.quote.status == "pending"
        assert result.quote.amount == Decimal("100000")
        assert result.escrow is None
        assert result.project.status == "quote_received"
        assert notifier.sent[-1].outcome == "rejected"

    @pytest.mark.asyncio
    async def test_new_revision_allowed_after_rejection(
        self, coordinator, make_project, make_quote, make_revision, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        first = await make_revision(quote.id, suggested_price="50000")
        await coordinator.resolve_revision(provider_a, first.id, RevisionResolution.REJECT)

        second = await make_revision(quote.id, suggested_price="80000")

        assert second.status == "pending"
        revisions = await coordinator.list_revisions(quote.id)
        assert {r.status for r in revisions} == {"rejected", "pending"}


class TestModifyRevision:
    @pytest.mark.asyncio
    async def test_counter_offer_creates_an_independent_quote(
        self, coordinator, make_project, make_quote, make_revision, provider_a, provider_b
    ) -> None:
        project = await make_project()
        original = await make_quote(provider_a, project.id, "100000", verified=True)
        sibling = await make_quote(provider_b, project.id, "105000")
        revision = await make_revision(original.id, suggested_price="90000")

        result = await coordinator.resolve_revision(
            provider_a,
            revision.id,
            RevisionResolution.MODIFY,
            provider_response="Meet in the middle",
            terms=QuoteTerms(amount=Decimal("95000"), estimated_duration="6 days"),
        )

        replacement = result.quote
        assert replacement.id != original.id
        assert replacement.status == "accepted"
        assert replacement.amount == Decimal("95000")
        assert replacement.provider_id == provider_a.user_id
        assert replacement.provider_verified is True

        related = {q.id: q for q in result.related_quotes}
        assert related[original.id].status == "viewed"
        assert related[original.id].amount == Decimal("100000")
        assert related[sibling.id].status == "rejected"

        assert result.revision.status == "modified"
        assert result.revision.modified_quote_id == replacement.id
        assert result.escrow.total_amount == Decimal("95000")
        assert result.project.status == "quote_accepted"

    @pytest.mark.asyncio
    async def test_counter_offer_on_accepted_quote_demotes_it(
        self, coordinator, lifecycle, make_project, make_quote, make_revision, client, provider_a
    ) -> None:
        project = await make_project()
        original = await make_quote(provider_a, project.id, "100000")
        await coordinator.accept_quote(client, original.id)
        revision = await make_revision(original.id, suggested_price="90000")

        result = await coordinator.resolve_revision(
            provider_a,
            revision.id,
            RevisionResolution.MODIFY,
            terms=QuoteTerms(amount=Decimal("95000")),
        )

        assert result.related_quotes[0].id == original.id
        assert result.related_quotes[0].status == "viewed"
        assert result.escrow.total_amount == Decimal("95000")

        quotes = await coordinator.list_quotes(project.id)
        assert [q.amount for q in quotes if q.status == "accepted"] == [Decimal("95000")]
        events = [e.event_type for e in await lifecycle.get_events(project.id)]
        assert "QUOTE_DEMOTED" in events
        assert "ESCROW_RESYNCHRONIZED" in events

    @pytest.mark.asyncio
    async def test_counter_offer_needs_terms(
        self, coordinator, make_project, make_quote, make_revision, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        revision = await make_revision(quote.id, suggested_price="90000")

        with pytest.raises(MarketplaceError) as exc_info:
            await coordinator.resolve_revision(provider_a, revision.id, RevisionResolution.MODIFY)
        assert exc_info.value.code == "INVALID_QUOTE_PRICE"
