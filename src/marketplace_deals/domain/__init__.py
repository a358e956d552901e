"""Domain layer — pure business logic with zero framework dependencies."""

from marketplace_deals.domain.actor import SYSTEM_ACTOR, Actor
from marketplace_deals.domain.commands import (
    AcceptQuote,
    QuoteTerms,
    RejectQuote,
    RequestRevision,
    ResolveRevision,
    SubmitQuote,
    SynchronizeEscrow,
)
from marketplace_deals.domain.enums import (
    ActorRole,
    EntityType,
    EscrowStatus,
    EventType,
    NotificationKind,
    ProjectStatus,
    QuoteStatus,
    RevisionResolution,
    RevisionStatus,
)
from marketplace_deals.domain.exceptions import (
    ConcurrentUpdateError,
    DuplicateOperationError,
    EntityNotFoundError,
    EscrowIneligibleForUpdateError,
    InvalidStateTransitionError,
    MarketplaceError,
    PartialSynchronizationFailure,
    PermissionDeniedError,
)
from marketplace_deals.domain.notifier_protocol import Notification, NotificationEmitter
from marketplace_deals.domain.state_machine import (
    EscrowStateMachine,
    ProjectStateMachine,
    QuoteStateMachine,
    RevisionStateMachine,
    fire,
)

__all__ = [
    "Actor",
    "SYSTEM_ACTOR",
    "AcceptQuote",
    "QuoteTerms",
    "RejectQuote",
    "RequestRevision",
    "ResolveRevision",
    "SubmitQuote",
    "SynchronizeEscrow",
    "ActorRole",
    "EntityType",
    "EscrowStatus",
    "EventType",
    "NotificationKind",
    "ProjectStatus",
    "QuoteStatus",
    "RevisionResolution",
    "RevisionStatus",
    "ConcurrentUpdateError",
    "DuplicateOperationError",
    "EntityNotFoundError",
    "EscrowIneligibleForUpdateError",
    "InvalidStateTransitionError",
    "MarketplaceError",
    "PartialSynchronizationFailure",
    "PermissionDeniedError",
    "Notification",
    "NotificationEmitter",
    "EscrowStateMachine",
    "ProjectStateMachine",
    "QuoteStateMachine",
    "RevisionStateMachine",
    "fire",
]
