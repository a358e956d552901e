#!/usr/bin/env python3
"""Marketplace Deals — End-to-End Simulation.

Simulates three scenarios with ClientBot and ProviderBot actors:

    Scenario 1: Revision Accepted
        - Client posts a project, provider quotes 100000
        - Client asks for 90000, provider accepts the revision
        - Quote accepted at 90000, escrow created, project quote_accepted

    Scenario 2: Revision Answered With a New Quote
        - Same opening, but the provider counters with a new quote at 95000
        - Original quote back to viewed, new quote accepted, escrow 95000

    Scenario 3: Cascade + Escrow Outage
        - Three providers quote, the client accepts one
        - The other two are rejected in the same step
        - The escrow write fails: the acceptance stands, a warning is shown
        - Support re-synchronizes the escrow

Usage:
    # Option A: Against the configured database (PostgreSQL):
    python simulation.py

    # Option B: Without Docker (SQLite in-memory):
    python simulation.py --sqlite

    # Run a specific scenario:
    python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from marketplace_deals.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from marketplace_deals.domain import (  # noqa: E402
    SYSTEM_ACTOR,
    Actor,
    ActorRole,
    QuoteTerms,
    RevisionResolution,
)
from marketplace_deals.infrastructure.notifications import LoggingNotificationEmitter  # noqa: E402
from marketplace_deals.services import (  # noqa: E402
    EscrowSynchronizer,
    ProjectLifecycleService,
    TransitionCoordinator,
    TransitionResult,
)

# Module-level state
_sqlite_engine = None
_sqlite_session_factory = None
_notifier = LoggingNotificationEmitter()


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine and create tables."""
    global _sqlite_engine, _sqlite_session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
        from sqlalchemy.pool import StaticPool

        from marketplace_deals.infrastructure.database.orm_models import Base

        _sqlite_engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            echo=False,
        )
        _sqlite_session_factory = async_sessionmaker(
            bind=_sqlite_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _sqlite_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from marketplace_deals.infrastructure.database.engine import init_db

        await init_db()


def get_session() -> Any:
    """Get a fresh database session."""
    if _sqlite_session_factory is not None:
        return _sqlite_session_factory()

    from marketplace_deals.infrastructure.database.engine import get_session_factory

    return get_session_factory()()


async def shutdown_database() -> None:
    """Close database connections."""
    global _sqlite_engine, _sqlite_session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
        _sqlite_session_factory = None
    else:
        from marketplace_deals.infrastructure.database.engine import close_db

        await close_db()


class FlakyEscrowSynchronizer(EscrowSynchronizer):
    """Escrow synchronizer whose first call fails, as if the store dropped out."""

    failures_left: int = 1

    async def synchronize(self, command, actor):  # noqa: ANN001, ANN201
        if FlakyEscrowSynchronizer.failures_left > 0:
            FlakyEscrowSynchronizer.failures_left -= 1
            raise ConnectionError("escrow store unavailable")
        return await super().synchronize(command, actor)


# ---------------------------------------------------------------------------
# Bot Actors
# ---------------------------------------------------------------------------
@dataclass
class ClientBot:
    """Simulated client that posts projects and decides on quotes."""

    actor: Actor = field(default_factory=lambda: Actor(uuid.uuid4(), ActorRole.CLIENT))

    async def post_project(self, session: Any, title: str) -> uuid.UUID:
        project = await ProjectLifecycleService(session, notifier=_notifier).create_project(
            self.actor, title=title
        )
        logger.info("🔵 CLIENT: Project posted", project_id=str(project.id), title=title)
        return project.id

    async def request_revision(
        self, session: Any, quote_id: uuid.UUID, suggested_price: Decimal
    ) -> uuid.UUID:
        result = await TransitionCoordinator(session, notifier=_notifier).request_revision(
            self.actor, quote_id, suggested_price=suggested_price
        )
        logger.info("🔵 CLIENT: Revision requested", suggested_price=str(suggested_price))
        return result.revision.id

    async def accept_quote(
        self, session: Any, quote_id: uuid.UUID, synchronizer: EscrowSynchronizer | None = None
    ) -> TransitionResult:
        coordinator = TransitionCoordinator(session, notifier=_notifier, synchronizer=synchronizer)
        result = await coordinator.accept_quote(self.actor, quote_id)
        logger.info(
            "🔵 CLIENT: Quote accepted",
            quote_id=str(quote_id),
            cascade_rejected=len(result.related_quotes),
        )
        return result


@dataclass
class ProviderBot:
    """Simulated provider that quotes and negotiates."""

    actor: Actor = field(default_factory=lambda: Actor(uuid.uuid4(), ActorRole.PROVIDER))
    verified: bool = True

    async def quote(self, session: Any, project_id: uuid.UUID, amount: Decimal) -> uuid.UUID:
        result = await TransitionCoordinator(session, notifier=_notifier).submit_quote(
            self.actor,
            project_id,
            QuoteTerms(amount=amount, estimated_duration="5 days"),
            provider_verified=self.verified,
        )
        logger.info("🟢 PROVIDER: Quote submitted", quote_id=str(result.quote.id), amount=str(amount))
        return result.quote.id

    async def answer_revision(
        self,
        session: Any,
        revision_id: uuid.UUID,
        resolution: RevisionResolution,
        counter_amount: Decimal | None = None,
    ) -> TransitionResult:
        terms = QuoteTerms(amount=counter_amount) if counter_amount is not None else None
        result = await TransitionCoordinator(session, notifier=_notifier).resolve_revision(
            self.actor, revision_id, resolution, terms=terms
        )
        logger.info("🟢 PROVIDER: Revision answered", resolution=resolution.value)
        return result


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_result(result: TransitionResult) -> None:
    """Pretty-print what a transition left behind."""
    print(f"  Project: {result.project.status}")
    if result.quote is not None:
        print(f"  Quote:   {result.quote.status} @ {result.quote.amount}")
    for other in result.related_quotes:
        print(f"  Other:   {other.status} @ {other.amount}")
    if result.escrow is not None:
        escrow = result.escrow
        print(
            f"  Escrow:  {escrow.status} total={escrow.total_amount} "
            f"commission={escrow.commission_amount} vat={escrow.vat_amount} "
            f"payout={escrow.provider_payout} advance={escrow.advance_amount}"
        )
    if result.warning is not None:
        print(f"  ⚠️  {result.warning.message}")


async def print_audit_trail(session: Any, project_id: uuid.UUID) -> None:
    """Print the full audit trail for a project."""
    events = await ProjectLifecycleService(session).get_events(project_id)
    print("\n  📜 Audit Trail:")
    for i, evt in enumerate(events, 1):
        old = evt.old_status or "—"
        print(f"    {i}. [{evt.event_type}] {evt.entity_type} {old} → {evt.new_status} (by {evt.actor})")
    print()


# ===========================================================================
# Scenario 1: Revision Accepted
# ===========================================================================
async def scenario_1_revision_accepted() -> None:
    """Client negotiates the price down, provider agrees."""
    banner("SCENARIO 1: Revision Accepted — 100000 negotiated to 90000")

    client = ClientBot()
    provider = ProviderBot()

    async with get_session() as session:
        section("Step 1: Client posts, provider quotes")
        project_id = await client.post_project(session, "Kitchen renovation")
        quote_id = await provider.quote(session, project_id, Decimal("100000"))

        section("Step 2: Client asks for 90000")
        revision_id = await client.request_revision(session, quote_id, Decimal("90000"))

        section("Step 3: Provider accepts the revision")
        result = await provider.answer_revision(session, revision_id, RevisionResolution.ACCEPT)
        print_result(result)

        assert result.quote.amount == Decimal("90000")
        assert result.quote.status == "accepted"
        assert result.escrow is not None and result.escrow.total_amount == Decimal("90000")
        assert result.project.status == "quote_accepted"
        print("  ✅ Quote, escrow and project agree on 90000")

        await print_audit_trail(session, project_id)


# ===========================================================================
# Scenario 2: Revision Modified
# ===========================================================================
async def scenario_2_revision_modified() -> None:
    """Provider answers the revision with a new quote instead."""
    banner("SCENARIO 2: Revision Modified — counter-offer at 95000")

    client = ClientBot()
    provider = ProviderBot()

    async with get_session() as session:
        section("Step 1: Client posts, provider quotes, client asks for 90000")
        project_id = await client.post_project(session, "Garden landscaping")
        quote_id = await provider.quote(session, project_id, Decimal("100000"))
        revision_id = await client.request_revision(session, quote_id, Decimal("90000"))

        section("Step 2: Provider counters with 95000")
        result = await provider.answer_revision(
            session, revision_id, RevisionResolution.MODIFY, counter_amount=Decimal("95000")
        )
        print_result(result)

        original = next(q for q in result.related_quotes if q.id == quote_id)
        assert original.status == "viewed" and original.amount == Decimal("100000")
        assert result.quote.status == "accepted" and result.quote.id != quote_id
        assert result.escrow is not None and result.escrow.total_amount == Decimal("95000")
        print("  ✅ Original kept its price, the counter-offer holds the escrow")

        await print_audit_trail(session, project_id)


# ===========================================================================
# Scenario 3: Cascade + Escrow Outage
# ===========================================================================
async def scenario_3_cascade_and_outage() -> None:
    """Accepting one quote rejects the rest; a failed escrow write is surfaced."""
    banner("SCENARIO 3: Cascade Rejection + Escrow Outage")

    client = ClientBot()
    providers = [ProviderBot(), ProviderBot(verified=False), ProviderBot()]

    async with get_session() as session:
        section("Step 1: Three providers quote")
        project_id = await client.post_project(session, "Roof repair")
        quote_ids = [
            await bot.quote(session, project_id, Decimal(amount))
            for bot, amount in zip(providers, ("42000", "39500", "45000"), strict=True)
        ]

        section("Step 2: Client accepts the cheapest while the escrow store is down")
        FlakyEscrowSynchronizer.failures_left = 1
        result = await client.accept_quote(
            session, quote_ids[1], synchronizer=FlakyEscrowSynchronizer(session)
        )
        print_result(result)
        assert result.quote.status == "accepted"
        assert all(q.status == "rejected" for q in result.related_quotes)
        assert result.escrow is None and result.warning is not None
        print("  ✅ Acceptance stands; the missing escrow is reported, not hidden")

        section("Step 3: Support re-synchronizes the escrow")
        repaired = await TransitionCoordinator(session).resynchronize_escrow(SYSTEM_ACTOR, project_id)
        print_result(repaired)
        assert repaired.escrow.total_amount == Decimal("39500")
        print("  ✅ Escrow back in step with the accepted quote")

        await print_audit_trail(session, project_id)


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_revision_accepted,
    2: scenario_2_revision_modified,
    3: scenario_3_cascade_and_outage,
}


async def run_all(use_sqlite: bool = False) -> None:
    """Run all scenarios sequentially."""
    await init_database(use_sqlite=use_sqlite)

    try:
        print("\n" + "🚀" * 35)
        print("  MARKETPLACE DEALS — SIMULATION")
        db_type = "SQLite (in-memory)" if use_sqlite else "PostgreSQL"
        print(f"  Database: {db_type}")
        print("🚀" * 35 + "\n")

        for scenario in SCENARIOS.values():
            await scenario()

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")

    finally:
        await shutdown_database()


async def run_scenario(num: int, use_sqlite: bool = False) -> None:
    """Run a specific scenario."""
    await init_database(use_sqlite=use_sqlite)

    try:
        if num not in SCENARIOS:
            print(f"Unknown scenario {num}. Available: {', '.join(map(str, SCENARIOS))}")
            return
        await SCENARIOS[num]()
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Marketplace Deals Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL (no Docker needed).",
    )
    args = parser.parse_args()

    if args.scenario == 0:
        asyncio.run(run_all(use_sqlite=args.sqlite))
    else:
        asyncio.run(run_scenario(args.scenario, use_sqlite=args.sqlite))
