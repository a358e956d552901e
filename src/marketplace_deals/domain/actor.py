"""The identity performing an action, as vouched for by the auth layer."""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from marketplace_deals.domain.enums import ActorRole


@dataclass(frozen=True)
class Actor:
    user_id: uuid.UUID
    role: ActorRole

    @property
    def is_system(self) -> bool:
        return self.role is ActorRole.SYSTEM

    def __str__(self) -> str:
        return f"{self.role.value}:{self.user_id}"


# The coordinator's own identity for sweeps, support tooling and
# consequences no end user is allowed to write directly.
SYSTEM_ACTOR = Actor(user_id=uuid.UUID(int=0), role=ActorRole.SYSTEM)
