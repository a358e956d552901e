"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the acting user, the notification emitter, services and configuration.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace_deals.config import Settings, get_settings
from marketplace_deals.domain.actor import Actor
from marketplace_deals.domain.enums import ActorRole
from marketplace_deals.domain.exceptions import PermissionDeniedError
from marketplace_deals.domain.notifier_protocol import NotificationEmitter
from marketplace_deals.infrastructure.database.engine import get_async_session
from marketplace_deals.infrastructure.notifications import build_notification_emitter
from marketplace_deals.services.project_lifecycle import ProjectLifecycleService
from marketplace_deals.services.transition_coordinator import TransitionCoordinator


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


@lru_cache(maxsize=1)
def get_notifier() -> NotificationEmitter:
    """Provide the configured notification emitter (one per process)."""
    return build_notification_emitter(get_settings())


def get_actor(
    x_actor_id: str = Header(..., description="User id vouched for by the auth gateway"),
    x_actor_role: str = Header(..., description="client, provider or system"),
    settings: Settings = Depends(get_app_settings),
) -> Actor:
    """Identify the caller from the headers set by the authentication layer.

    The headers are trusted as given: the gateway in front of this service
    must authenticate the caller and strip any X-Actor-* headers it did not
    set itself. The system role carries support rights (escrow resync,
    funds held, expiry and abandon sweeps), so deployments reachable from
    the public gateway set ``ALLOW_SYSTEM_ROLE_HEADER=false`` and run those
    operations from an internal instance.
    """
    try:
        user_id = uuid.UUID(x_actor_id)
    except ValueError as err:
        raise PermissionDeniedError("authenticate", "the actor id is not a valid user id") from err
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError as err:
        raise PermissionDeniedError("authenticate", f"unknown role '{x_actor_role}'") from err
    if role is ActorRole.SYSTEM and not settings.allow_system_role_header:
        raise PermissionDeniedError("authenticate", "the system role is not accepted on this surface")
    return Actor(user_id=user_id, role=role)


def get_coordinator(
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationEmitter = Depends(get_notifier),
    settings: Settings = Depends(get_app_settings),
) -> TransitionCoordinator:
    """Provide a TransitionCoordinator bound to the current session."""
    return TransitionCoordinator(session, notifier=notifier, settings=settings)


def get_lifecycle(
    session: AsyncSession = Depends(get_db_session),
    notifier: NotificationEmitter = Depends(get_notifier),
    settings: Settings = Depends(get_app_settings),
) -> ProjectLifecycleService:
    """Provide a ProjectLifecycleService bound to the current session."""
    return ProjectLifecycleService(session, notifier=notifier, settings=settings)
