"""Tests for quote submission, viewing, acceptance and rejection.

Runs the TransitionCoordinator against an in-memory SQLite database.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.orm.exc import StaleDataError

from marketplace_deals.domain import (
    ConcurrentUpdateError,
    EntityNotFoundError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    QuoteTerms,
)
from marketplace_deals.infrastructure.database.orm_models import Quote


class TestSubmitQuote:
    @pytest.mark.asyncio
    async def test_first_quote_moves_project_to_quote_received(
        self, coordinator, lifecycle, make_project, provider_a, notifier
    ) -> None:
        project = await make_project()
        result = await coordinator.submit_quote(
            provider_a, project.id, QuoteTerms(amount=Decimal("100000"), estimated_duration="5 days")
        )

        assert result.quote.status == "pending"
        assert result.quote.expires_at is not None
        assert result.project.status == "quote_received"
        assert notifier.kinds() == ["new_quote"]
        assert notifier.sent[0].recipient_id == project.client_id

        events = [e.event_type for e in await lifecycle.get_events(project.id)]
        assert events.count("PROJECT_QUOTE_RECEIVED") == 1
        assert "QUOTE_SUBMITTED" in events

    @pytest.mark.asyncio
    async def test_later_quotes_keep_project_status(
        self, coordinator, lifecycle, make_project, make_quote, provider_a, provider_b
    ) -> None:
        project = await make_project()
        await make_quote(provider_a, project.id, "100000")
        await make_quote(provider_b, project.id, "95000")

        events = [e.event_type for e in await lifecycle.get_events(project.id)]
        assert events.count("PROJECT_QUOTE_RECEIVED") == 1
        assert events.count("QUOTE_SUBMITTED") == 2

    @pytest.mark.asyncio
    async def test_priced_from_cost_lines(self, coordinator, make_project, provider_a) -> None:
        project = await make_project()
        terms = QuoteTerms(
            labor_cost=Decimal("1000"),
            materials_cost=Decimal("500"),
            urgent_surcharge_percent=Decimal("10"),
        )
        result = await coordinator.submit_quote(provider_a, project.id, terms)
        assert result.quote.amount == Decimal("1650.00")

    @pytest.mark.asyncio
    async def test_resubmission_supersedes_own_open_quote(
        self, coordinator, lifecycle, make_project, make_quote, provider_a, provider_b
    ) -> None:
        project = await make_project()
        first = await make_quote(provider_a, project.id, "100000")
        other = await make_quote(provider_b, project.id, "110000")

        result = await coordinator.submit_quote(
            provider_a, project.id, QuoteTerms(amount=Decimal("98000"))
        )

        assert [q.id for q in result.related_quotes] == [first.id]
        assert result.related_quotes[0].status == "expired"
        assert (await coordinator.get_quote(other.id)).status == "pending"
        events = [e.event_type for e in await lifecycle.get_events(project.id)]
        assert "QUOTE_SUPERSEDED" in events

    @pytest.mark.asyncio
    async def test_client_cannot_quote(self, coordinator, make_project, client) -> None:
        project = await make_project()
        with pytest.raises(PermissionDeniedError):
            await coordinator.submit_quote(client, project.id, QuoteTerms(amount=Decimal("1")))

    @pytest.mark.asyncio
    async def test_unknown_project(self, coordinator, provider_a) -> None:
        with pytest.raises(EntityNotFoundError) as exc_info:
            await coordinator.submit_quote(provider_a, uuid.uuid4(), QuoteTerms(amount=Decimal("1")))
        assert exc_info.value.code == "PROJECT_NOT_FOUND"


class TestMarkViewed:
    @pytest.mark.asyncio
    async def test_pending_becomes_viewed_once(
        self, coordinator, lifecycle, make_project, make_quote, client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")

        first = await coordinator.mark_quote_viewed(client, quote.id)
        second = await coordinator.mark_quote_viewed(client, quote.id)

        assert first.quote.status == "viewed"
        assert second.quote.status == "viewed"
        events = [e.event_type for e in await lifecycle.get_events(project.id)]
        assert events.count("QUOTE_VIEWED") == 1

    @pytest.mark.asyncio
    async def test_other_client_cannot_view(
        self, coordinator, make_project, make_quote, other_client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        with pytest.raises(PermissionDeniedError):
            await coordinator.mark_quote_viewed(other_client, quote.id)


class TestAcceptQuote:
    @pytest.mark.asyncio
    async def test_accept_rejects_every_open_sibling(
        self,
        coordinator,
        lifecycle,
        make_project,
        make_quote,
        client,
        provider_a,
        provider_b,
        provider_c,
        notifier,
    ) -> None:
        project = await make_project()
        quote_a = await make_quote(provider_a, project.id, "100000")
        quote_b = await make_quote(provider_b, project.id, "120000")
        quote_c = await make_quote(provider_c, project.id, "90000")
        await coordinator.mark_quote_viewed(client, quote_c.id)

        result = await coordinator.accept_quote(client, quote_b.id)

        assert result.quote.status == "accepted"
        assert {q.id for q in result.related_quotes} == {quote_a.id, quote_c.id}
        assert all(q.status == "rejected" for q in result.related_quotes)
        assert result.project.status == "quote_accepted"
        assert result.escrow is not None
        assert result.escrow.total_amount == Decimal("120000")
        assert result.escrow.status == "pending"
        assert result.warning is None

        quotes = await coordinator.list_quotes(project.id)
        assert [q.status for q in quotes if q.status in ("pending", "viewed")] == []
        assert [q.id for q in quotes if q.status == "accepted"] == [quote_b.id]

        events = [e.event_type for e in await lifecycle.get_events(project.id)]
        assert events.count("QUOTE_CASCADE_REJECTED") == 2
        assert "PROJECT_QUOTE_ACCEPTED" in events
        assert "ESCROW_CREATED" in events

        kinds = notifier.kinds()
        assert kinds.count("quote_accepted") == 1
        assert kinds.count("quote_rejected") == 2

    @pytest.mark.asyncio
    async def test_verified_provider_gets_an_advance(
        self, coordinator, make_project, make_quote, client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000", verified=True)

        escrow = (await coordinator.accept_quote(client, quote.id)).escrow

        assert escrow.commission_amount == Decimal("10000.00")
        assert escrow.vat_amount == Decimal("1800.00")
        assert escrow.provider_payout == Decimal("88200.00")
        assert escrow.advance_amount == Decimal("44100.00")

    @pytest.mark.asyncio
    async def test_second_accept_is_refused(
        self, coordinator, make_project, make_quote, client, provider_a, provider_b
    ) -> None:
        project = await make_project()
        quote_a = await make_quote(provider_a, project.id, "100000")
        quote_b = await make_quote(provider_b, project.id, "120000")
        quote_a_id = quote_a.id
        await coordinator.accept_quote(client, quote_b.id)

        with pytest.raises(InvalidStateTransitionError, match="already declined"):
            await coordinator.accept_quote(client, quote_a_id)

    @pytest.mark.asyncio
    async def test_refused_while_another_quote_is_accepted(
        self, session, coordinator, make_project, make_quote, client, provider_a, provider_b
    ) -> None:
        project = await make_project()
        accepted = await make_quote(provider_a, project.id, "100000")
        await coordinator.accept_quote(client, accepted.id)

        # A stray open quote written behind the coordinator's back.
        stray = Quote(
            project_id=project.id,
            provider_id=provider_b.user_id,
            amount=Decimal("80000"),
            status="pending",
        )
        session.add(stray)
        await session.commit()
        stray_id = stray.id

        with pytest.raises(InvalidStateTransitionError, match="different quote"):
            await coordinator.accept_quote(client, stray_id)
        assert (await coordinator.get_quote(stray_id)).status == "pending"

    @pytest.mark.asyncio
    async def test_late_quote_after_acceptance_is_refused(
        self, coordinator, make_project, make_quote, client, provider_a, provider_b
    ) -> None:
        project = await make_project()
        project_id = project.id
        quote = await make_quote(provider_a, project_id, "100000")
        await coordinator.accept_quote(client, quote.id)

        with pytest.raises(InvalidStateTransitionError):
            await coordinator.submit_quote(provider_b, project_id, QuoteTerms(amount=Decimal("1")))

    @pytest.mark.asyncio
    async def test_only_the_owning_client_accepts(
        self, coordinator, make_project, make_quote, other_client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        quote_id = quote.id

        with pytest.raises(PermissionDeniedError):
            await coordinator.accept_quote(other_client, quote_id)
        with pytest.raises(PermissionDeniedError):
            await coordinator.accept_quote(provider_a, quote_id)
        assert (await coordinator.get_quote(quote_id)).status == "pending"

    @pytest.mark.asyncio
    async def test_stale_write_becomes_concurrent_update(
        self, session, coordinator, make_project, make_quote, client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        quote_id = quote.id

        with patch.object(session, "commit", new_callable=AsyncMock) as mock_commit:
            mock_commit.side_effect = StaleDataError(
                "UPDATE statement on table 'quotes' expected to update 1 row(s); 0 were matched."
            )
            with pytest.raises(ConcurrentUpdateError) as exc_info:
                await coordinator.accept_quote(client, quote_id)

        assert exc_info.value.code == "CONCURRENT_UPDATE"
        assert (await coordinator.get_quote(quote_id)).status == "pending"


class TestRejectQuote:
    @pytest.mark.asyncio
    async def test_reject_touches_only_that_quote(
        self, coordinator, lifecycle, make_project, make_quote, client, provider_a, provider_b, notifier
    ) -> None:
        project = await make_project()
        quote_a = await make_quote(provider_a, project.id, "100000")
        quote_b = await make_quote(provider_b, project.id, "120000")

        result = await coordinator.reject_quote(client, quote_a.id)

        assert result.quote.status == "rejected"
        assert (await coordinator.get_quote(quote_b.id)).status == "pending"
        assert (await lifecycle.get_project(project.id)).status == "quote_received"
        assert notifier.sent[-1].recipient_id == provider_a.user_id

    @pytest.mark.asyncio
    async def test_cannot_reject_twice(
        self, coordinator, make_project, make_quote, client, provider_a
    ) -> None:
        project = await make_project()
        quote = await make_quote(provider_a, project.id, "100000")
        quote_id = quote.id
        await coordinator.reject_quote(client, quote_id)

        with pytest.raises(InvalidStateTransitionError):
            await coordinator.reject_quote(client, quote_id)
