"""Change notifications for dashboards.

Dashboards re-fetch when something they show has changed. The event
subscriber ``publish_change`` turns audited actions that mutate a table
into a small Redis pub/sub message; ``listen_changes`` yields them to a
consumer (the SSE endpoint). Notifications only trigger a re-fetch; no
state is derived from them.

The listener owns its pubsub connection and releases it when the
consumer stops iterating, e.g. when the browser tab closes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import redis.asyncio as aioredis

from caretrack.config import settings
from caretrack.schemas.events import CHANGED_TABLES, SystemEvent

logger = logging.getLogger(__name__)


def _client() -> aioredis.Redis:
    from caretrack.db.engine import redis_client

    return redis_client


def change_message(event: SystemEvent) -> dict[str, Any] | None:
    """Notification payload for ``event``, or None if it changes nothing."""
    table = CHANGED_TABLES.get(event.action)
    if table is None:
        return None
    return {
        "table": table,
        "action": event.action.value,
        "targetId": event.target_id,
        "at": event.timestamp.isoformat(),
    }


async def publish_change(event: SystemEvent, client: aioredis.Redis | None = None) -> None:
    """Event subscriber: publish a change notification. Never raises."""
    message = change_message(event)
    if message is None:
        return
    try:
        await (client or _client()).publish(settings.retention.changes_channel, json.dumps(message))
    except Exception:
        logger.exception("Failed to publish change notification for %s", event.action.value)


async def listen_changes(client: aioredis.Redis | None = None) -> AsyncIterator[dict[str, Any]]:
    """Yield change notifications until the consumer closes the generator."""
    channel = settings.retention.changes_channel
    pubsub = (client or _client()).pubsub()
    await pubsub.subscribe(channel)
    logger.debug("Change listener subscribed to %s", channel)
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                yield json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning("Dropping malformed change notification: %r", message.get("data"))
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
        logger.debug("Change listener released %s", channel)
