"""Database infrastructure — engine, ORM models, and repositories."""

from marketplace_deals.infrastructure.database.engine import (
    close_db,
    get_async_session,
    init_db,
)
from marketplace_deals.infrastructure.database.orm_models import (
    Base,
    Escrow,
    Project,
    Quote,
    QuoteRevision,
    TransactionEvent,
)
from marketplace_deals.infrastructure.database.repositories import (
    EscrowRepository,
    EventRepository,
    ProjectRepository,
    QuoteRepository,
    RevisionRepository,
)

__all__ = [
    "Base",
    "Escrow",
    "Project",
    "Quote",
    "QuoteRevision",
    "TransactionEvent",
    "EscrowRepository",
    "EventRepository",
    "ProjectRepository",
    "QuoteRepository",
    "RevisionRepository",
    "get_async_session",
    "init_db",
    "close_db",
]
