"""Terminal release notifications.

Events are handed off after the finalizing transaction commits. Delivery
to webhooks or other consumers is somebody else's job; the publishers
here only put the event on a channel (Redis) or in the log.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol

from redis.exceptions import RedisError

from fund_custody.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

    from fund_custody.domain.enums import EventType

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReleaseEvent:
    type: EventType
    ledger_id: str
    release_id: str
    entry_id: str
    amount: str
    currency: str
    rail: str | None
    external_transfer_id: str | None = None
    error_code: str | None = None
    error: str | None = None
    occurred_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        return data


class EventPublisher(Protocol):
    async def publish(self, event: ReleaseEvent) -> None: ...


class LoggingEventPublisher:
    """Writes events to the structured log. Used when Redis is not configured."""

    async def publish(self, event: ReleaseEvent) -> None:
        logger.info("event.published", **event.to_dict())


class RedisEventPublisher:
    """Publishes events as JSON on a Redis pub/sub channel."""

    def __init__(self, redis: aioredis.Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel

    async def publish(self, event: ReleaseEvent) -> None:
        # The release is already committed; a lost notification must not undo it.
        try:
            await self._redis.publish(self._channel, json.dumps(event.to_dict()))
        except RedisError:
            logger.exception(
                "event.publish_failed",
                event_type=event.type.value,
                release_id=event.release_id,
            )
            return
        logger.debug("event.published", event_type=event.type.value, release_id=event.release_id)
