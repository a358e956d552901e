"""Shared test fixtures for the Marketplace Deals test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) with the full schema
    - Actors for a client, competing providers and the system
    - A recording notification emitter
    - Factory fixtures for projects, quotes and revisions
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from marketplace_deals.domain import (
    SYSTEM_ACTOR,
    Actor,
    ActorRole,
    Notification,
    QuoteTerms,
)
from marketplace_deals.infrastructure.database.orm_models import Base
from marketplace_deals.services import ProjectLifecycleService, TransitionCoordinator

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Notification emitter that keeps every notification it is handed."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def notify(self, notification: Notification) -> None:
        self.sent.append(notification)

    def kinds(self) -> list[str]:
        return [n.event_kind.value for n in self.sent]


class BrokenNotifier:
    """Notification emitter whose delivery always fails."""

    async def notify(self, notification: Notification) -> None:
        raise ConnectionError("notification service unreachable")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine) -> AsyncSession:
    factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


@pytest.fixture
def client() -> Actor:
    return Actor(uuid.UUID("11111111-1111-1111-1111-111111111111"), ActorRole.CLIENT)


@pytest.fixture
def other_client() -> Actor:
    return Actor(uuid.UUID("22222222-2222-2222-2222-222222222222"), ActorRole.CLIENT)


@pytest.fixture
def provider_a() -> Actor:
    return Actor(uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa"), ActorRole.PROVIDER)


@pytest.fixture
def provider_b() -> Actor:
    return Actor(uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb"), ActorRole.PROVIDER)


@pytest.fixture
def provider_c() -> Actor:
    return Actor(uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc"), ActorRole.PROVIDER)


@pytest.fixture
def system() -> Actor:
    return SYSTEM_ACTOR


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def broken_notifier() -> BrokenNotifier:
    return BrokenNotifier()


@pytest.fixture
def coordinator(session, notifier) -> TransitionCoordinator:
    return TransitionCoordinator(session, notifier=notifier)


@pytest.fixture
def lifecycle(session, notifier) -> ProjectLifecycleService:
    return ProjectLifecycleService(session, notifier=notifier)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_project(lifecycle, client):
    async def _make(owner: Actor | None = None, title: str = "Repaint two bedrooms"):
        return await lifecycle.create_project(owner or client, title=title)

    return _make


@pytest.fixture
def make_quote(coordinator):
    async def _make(provider: Actor, project_id: uuid.UUID, amount: str, verified: bool = False):
        result = await coordinator.submit_quote(
            provider,
            project_id,
            QuoteTerms(amount=Decimal(amount)),
            provider_verified=verified,
        )
        return result.quote

    return _make


@pytest.fixture
def make_revision(coordinator, client):
    async def _make(
        quote_id: uuid.UUID,
        suggested_price: str | None = None,
        additional_fees: str | None = None,
    ):
        result = await coordinator.request_revision(
            client,
            quote_id,
            suggested_price=Decimal(suggested_price) if suggested_price is not None else None,
            additional_fees=Decimal(additional_fees) if additional_fees is not None else None,
        )
        return result.revision

    return _make
