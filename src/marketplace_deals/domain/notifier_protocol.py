"""Notification Emitter Protocol.

Defines the interface of the external notification service that is told
about terminal outcomes (quote accepted, revision answered, ...). This is a
Protocol (structural subtyping) so concrete emitters don't need to inherit
from a base class — they just need to match the shape.

Delivery is fire-and-forget: a failing emitter must never fail the state
transition it reports on. See infrastructure/notifications.py.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from marketplace_deals.domain.enums import ActorRole, NotificationKind


@dataclass(frozen=True)
class Notification:
    """One outcome to fan out to the affected parties.

    Attributes:
        event_kind: What happened.
        project_id: The project the outcome belongs to.
        actor_role: Role of whoever triggered it.
        outcome: Short machine-readable result (e.g. "accepted", "modified").
        quote_id: The quote concerned, if any.
        revision_id: The revision concerned, if any.
        recipient_id: The user who should hear about it, if known.
    """

    event_kind: NotificationKind
    project_id: uuid.UUID
    actor_role: ActorRole
    outcome: str
    quote_id: uuid.UUID | None = None
    revision_id: uuid.UUID | None = None
    recipient_id: uuid.UUID | None = None

    def to_dict(self) -> dict:
        """Serialize for publishing on the notification channel."""
        return {
            "event_kind": self.event_kind.value,
            "project_id": str(self.project_id),
            "quote_id": str(self.quote_id) if self.quote_id else None,
            "revision_id": str(self.revision_id) if self.revision_id else None,
            "actor_role": self.actor_role.value,
            "outcome": self.outcome,
            "recipient_id": str(self.recipient_id) if self.recipient_id else None,
        }


@runtime_checkable
class NotificationEmitter(Protocol):
    """Protocol that all notification emitters must satisfy.

    Concrete implementations live in infrastructure/notifications.py:
        - LoggingNotificationEmitter  (structured log only)
        - RedisNotificationEmitter    (publish to a Redis channel)
    """

    async def notify(self, notification: Notification) -> None:
        """Hand one outcome to the delivery mechanism."""
        ...
