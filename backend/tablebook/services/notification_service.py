"""
Fire-and-forget booking event sink.

Events go to the Redis channel ``branch:{branch_id}`` where the real-time
notification layer picks them up. Publishing never raises and never blocks a
booking: the core does not depend on delivery.
"""

import json
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as redis

from tablebook.core.logging import get_logger
from tablebook.core.metrics import event_publish_errors
from tablebook.infrastructure.redis_client import get_redis, mark_redis_down

logger = get_logger(__name__)

BOOKING_CREATED = "booking-created"
BOOKING_CONFIRMED = "booking-confirmed"
BOOKING_CANCELLED = "booking-cancelled"
BOOKING_COMPLETED = "booking-completed"


def branch_channel(branch_id: int) -> str:
    return f"branch:{branch_id}"


async def emit(event_name: str, payload: dict[str, Any], branch_id: Optional[int] = None) -> None:
    message = {
        "event": event_name,
        "emitted_at": datetime.now(timezone.utc).isoformat(),
        "data": payload,
    }
    logger.info("booking_event", event_name=event_name, branch_id=branch_id, **payload)

    client = await get_redis()
    if client is None or branch_id is None:
        return

    try:
        await client.publish(branch_channel(branch_id), json.dumps(message, default=str))
    except redis.RedisError as e:
        event_publish_errors.inc()
        logger.error("booking_event_publish_failed", event_name=event_name, error=str(e))
        await mark_redis_down(e)
