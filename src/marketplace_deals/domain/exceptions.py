"""Domain exceptions for the marketplace deal coordinator.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
Every message is written for the person who attempted the action and names
the entity state that blocked it.
"""

from __future__ import annotations

# Plain-language descriptions of why an entity in a given status can no
# longer take part in an action.
_STATE_PHRASES: dict[tuple[str, str], str] = {
    ("quote", "accepted"): "this quote has already been accepted",
    ("quote", "rejected"): "this quote was already declined",
    ("quote", "expired"): "this quote was already withdrawn or has expired",
    ("quote", "viewed"): "this quote is no longer awaiting a first reading",
    ("project", "quote_accepted"): "a quote has already been accepted on this project",
    ("project", "payment_pending"): "this project is already awaiting payment",
    ("project", "in_progress"): "work on this project has already started",
    ("project", "completion_requested"): "this project is awaiting completion sign-off",
    ("project", "completed"): "this project is already completed",
    ("project", "cancelled"): "this project was cancelled",
    ("project", "expired"): "this project has expired",
    ("project", "abandoned"): "this project was abandoned",
    ("revision", "accepted"): "this revision was already accepted",
    ("revision", "rejected"): "this revision was already declined",
    ("revision", "modified"): "this revision was already answered with a new quote",
    ("escrow", "released"): "the funds for this project were already released",
    ("escrow", "disputed"): "the funds for this project are frozen by a dispute",
}


def describe_state(entity: str, status: str) -> str:
    """Return a user-facing phrase for an entity sitting in `status`."""
    return _STATE_PHRASES.get((entity, status), f"this {entity} is {status}")


class MarketplaceError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "MARKETPLACE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


# --- State Machine Errors ---


class InvalidStateTransitionError(MarketplaceError):
    """Raised when an action targets an entity not in the required status.

    Always recoverable by refreshing and retrying; never retried automatically.
    """

    def __init__(
        self,
        entity: str,
        current_state: str,
        attempted: str,
        reason: str | None = None,
    ) -> None:
        reason = reason or describe_state(entity, current_state)
        super().__init__(
            message=f"Cannot {attempted.replace('_', ' ')}: {reason}.",
            code="INVALID_STATE_TRANSITION",
        )
        self.entity = entity
        self.current_state = current_state
        self.attempted = attempted


class ConcurrentUpdateError(InvalidStateTransitionError):
    """Raised when an optimistic version check fails at commit time."""

    def __init__(self, entity: str, attempted: str) -> None:
        super().__init__(
            entity=entity,
            current_state="stale",
            attempted=attempted,
            reason=f"this {entity} was changed by another request, refresh and try again",
        )
        self.code = "CONCURRENT_UPDATE"


# --- Permission Errors ---


class PermissionDeniedError(MarketplaceError):
    """Raised when the actor is not the authorized role/owner. Not retryable."""

    def __init__(self, action: str, reason: str) -> None:
        super().__init__(
            message=f"Not allowed to {action.replace('_', ' ')}: {reason}.",
            code="PERMISSION_DENIED",
        )
        self.action = action


# --- Lookup Errors ---


class EntityNotFoundError(MarketplaceError):
    """Raised when a project, quote, revision or escrow ID does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            message=f"{entity.capitalize()} not found: {entity_id}",
            code=f"{entity.upper()}_NOT_FOUND",
        )
        self.entity = entity
        self.entity_id = entity_id


# --- Escrow Errors ---


class EscrowIneligibleForUpdateError(MarketplaceError):
    """Raised when an amount change targets a released or disputed escrow.

    Rejected outright; nothing is written.
    """

    def __init__(self, project_id: str, escrow_status: str) -> None:
        super().__init__(
            message=(
                "The price cannot change any more: "
                f"{describe_state('escrow', escrow_status)}."
            ),
            code="ESCROW_INELIGIBLE_FOR_UPDATE",
        )
        self.project_id = project_id
        self.escrow_status = escrow_status


class PartialSynchronizationFailure(MarketplaceError):
    """A committed quote/revision decision whose escrow follow-up failed.

    Never raised out of a user action: it is returned alongside the result
    as a warning, because the primary decision already stands.
    """

    def __init__(self, project_id: str, step: str, cause: str) -> None:
        super().__init__(
            message=(
                "Status updated, but the funds record could not be updated. "
                "Please contact support so it can be corrected."
            ),
            code="PARTIAL_SYNCHRONIZATION_FAILURE",
        )
        self.project_id = project_id
        self.step = step
        self.cause = cause

    def to_dict(self) -> dict:
        return {**super().to_dict(), "step": self.step}


# --- Idempotency Errors ---


class DuplicateOperationError(MarketplaceError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
