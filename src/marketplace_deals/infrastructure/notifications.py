"""Notification emitters and the fire-and-forget delivery wrapper.

The core only tells an external service that something happened; how the
affected users hear about it (push, realtime fan-out, email) is out of
this service's hands. Two emitters are provided:

    - LoggingNotificationEmitter: writes the outcome to the structured log.
    - RedisNotificationEmitter: publishes it as JSON on a Redis channel.

`emit_notification()` is the only way the services call an emitter. It
never raises: a delivery failure is logged and the transition that
triggered it stands.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from marketplace_deals.infrastructure.redis_client import publish
from marketplace_deals.logging_config import get_logger

if TYPE_CHECKING:
    from marketplace_deals.config import Settings
    from marketplace_deals.domain.notifier_protocol import Notification, NotificationEmitter

logger = get_logger(__name__)


class LoggingNotificationEmitter:
    """Record outcomes in the log only (development and tests)."""

    async def notify(self, notification: Notification) -> None:
        logger.info("notification.emitted", **notification.to_dict())


class RedisNotificationEmitter:
    """Publish outcomes on a Redis channel for the realtime fan-out service."""

    def __init__(self, channel: str) -> None:
        self._channel = channel

    async def notify(self, notification: Notification) -> None:
        receivers = await publish(self._channel, json.dumps(notification.to_dict()))
        logger.debug(
            "notification.published",
            channel=self._channel,
            event_kind=notification.event_kind.value,
            receivers=receivers,
        )


def build_notification_emitter(settings: Settings) -> NotificationEmitter:
    """Pick the emitter named by `notification_backend`."""
    if settings.notification_backend == "redis":
        return RedisNotificationEmitter(settings.notification_channel)
    return LoggingNotificationEmitter()


async def emit_notification(emitter: NotificationEmitter | None, notification: Notification) -> bool:
    """Deliver one notification, swallowing and logging any failure.

    Returns:
        True if the emitter accepted it, False if there was no emitter or it failed.
    """
    if emitter is None:
        return False
    try:
        await emitter.notify(notification)
    except Exception:
        logger.exception(
            "notification.failed",
            event_kind=notification.event_kind.value,
            project_id=str(notification.project_id),
            outcome=notification.outcome,
        )
        return False
    return True
