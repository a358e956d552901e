"""Domain enumerations for the marketplace deal coordinator.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class ProjectStatus(enum.StrEnum):
    """Lifecycle states of a client's job request.

    Transitions are guarded by ProjectStateMachine (domain/state_machine.py).
    """

    OPEN = "open"
    QUOTE_RECEIVED = "quote_received"
    QUOTE_ACCEPTED = "quote_accepted"
    PAYMENT_PENDING = "payment_pending"
    IN_PROGRESS = "in_progress"
    COMPLETION_REQUESTED = "completion_requested"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_PROJECT_STATUSES


_TERMINAL_PROJECT_STATUSES = frozenset(
    {
        ProjectStatus.COMPLETED,
        ProjectStatus.CANCELLED,
        ProjectStatus.EXPIRED,
        ProjectStatus.ABANDONED,
    }
)

# Order of the happy path, used for "at least quote_accepted" checks.
PROJECT_PROGRESSION: tuple[ProjectStatus, ...] = (
    ProjectStatus.OPEN,
    ProjectStatus.QUOTE_RECEIVED,
    ProjectStatus.QUOTE_ACCEPTED,
    ProjectStatus.PAYMENT_PENDING,
    ProjectStatus.IN_PROGRESS,
    ProjectStatus.COMPLETION_REQUESTED,
    ProjectStatus.COMPLETED,
)


class QuoteStatus(enum.StrEnum):
    """Lifecycle states of a provider's priced offer."""

    PENDING = "pending"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


# Quotes still competing for the project.
OPEN_QUOTE_STATUSES = frozenset({QuoteStatus.PENDING, QuoteStatus.VIEWED})


class RevisionStatus(enum.StrEnum):
    """States of a single negotiation round. Everything but PENDING is final."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MODIFIED = "modified"


class RevisionResolution(enum.StrEnum):
    """How a provider answers a revision request."""

    ACCEPT = "accept"
    REJECT = "reject"
    MODIFY = "modify"


class EscrowStatus(enum.StrEnum):
    """States of the held-funds record."""

    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    DISPUTED = "disputed"


# Escrow amounts may only follow the accepted quote in these states.
SYNCABLE_ESCROW_STATUSES = frozenset({EscrowStatus.PENDING, EscrowStatus.HELD})


class ActorRole(enum.StrEnum):
    """Who is performing an action.

    SYSTEM is the elevated coordinator identity used by scheduled sweeps
    and support tooling; it never comes from an end-user request.
    """

    CLIENT = "client"
    PROVIDER = "provider"
    SYSTEM = "system"


class EntityType(enum.StrEnum):
    PROJECT = "project"
    QUOTE = "quote"
    REVISION = "revision"
    ESCROW = "escrow"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the transaction_events table.

    Every applied transition produces exactly one event per entity it touched.
    """

    # Project lifecycle
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_QUOTE_RECEIVED = "PROJECT_QUOTE_RECEIVED"
    PROJECT_QUOTE_ACCEPTED = "PROJECT_QUOTE_ACCEPTED"
    PROJECT_PAYMENT_PENDING = "PROJECT_PAYMENT_PENDING"
    PROJECT_WORK_STARTED = "PROJECT_WORK_STARTED"
    PROJECT_COMPLETION_REQUESTED = "PROJECT_COMPLETION_REQUESTED"
    PROJECT_COMPLETED = "PROJECT_COMPLETED"
    PROJECT_CANCELLED = "PROJECT_CANCELLED"
    PROJECT_EXPIRED = "PROJECT_EXPIRED"
    PROJECT_ABANDONED = "PROJECT_ABANDONED"

    # Quotes
    QUOTE_SUBMITTED = "QUOTE_SUBMITTED"
    QUOTE_VIEWED = "QUOTE_VIEWED"
    QUOTE_ACCEPTED = "QUOTE_ACCEPTED"
    QUOTE_REJECTED = "QUOTE_REJECTED"
    QUOTE_CASCADE_REJECTED = "QUOTE_CASCADE_REJECTED"
    QUOTE_SUPERSEDED = "QUOTE_SUPERSEDED"
    QUOTE_DEMOTED = "QUOTE_DEMOTED"
    QUOTE_REPRICED = "QUOTE_REPRICED"
    QUOTE_EXPIRED = "QUOTE_EXPIRED"

    # Revisions
    REVISION_REQUESTED = "REVISION_REQUESTED"
    REVISION_ACCEPTED = "REVISION_ACCEPTED"
    REVISION_REJECTED = "REVISION_REJECTED"
    REVISION_MODIFIED = "REVISION_MODIFIED"

    # Escrow
    ESCROW_CREATED = "ESCROW_CREATED"
    ESCROW_RESYNCHRONIZED = "ESCROW_RESYNCHRONIZED"
    ESCROW_SYNC_FAILED = "ESCROW_SYNC_FAILED"
    ESCROW_FUNDS_HELD = "ESCROW_FUNDS_HELD"
    ESCROW_RELEASED = "ESCROW_RELEASED"
    ESCROW_DISPUTED = "ESCROW_DISPUTED"


class NotificationKind(enum.StrEnum):
    """Outcomes reported to the external notification service."""

    NEW_QUOTE = "new_quote"
    QUOTE_ACCEPTED = "quote_accepted"
    QUOTE_REJECTED = "quote_rejected"
    QUOTE_REVISION_REQUESTED = "quote_revision_requested"
    QUOTE_REVISION_RESPONDED = "quote_revision_responded"
    PROJECT_CANCELLED = "project_cancelled"
    PROJECT_COMPLETED = "project_completed"
    COMPLETION_REQUESTED = "completion_requested"
    PAYMENT_RECEIVED = "payment_received"
    DISPUTE_RAISED = "dispute_raised"
