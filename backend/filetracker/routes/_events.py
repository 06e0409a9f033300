import logging
from datetime import datetime, timezone

import redis

from .. import pubsub

logger = logging.getLogger(__name__)


async def broadcast(collection: str, event_type: str, payload: dict) -> None:
    """Publish a change to ``collection:{name}``; a broker outage is logged only."""
    event = {
        "type": event_type,
        "data": payload,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    try:
        await pubsub.publish_collection_event(collection, event)
    except (redis.RedisError, OSError):
        logger.error("Failed to publish %s on %s", event_type, collection, exc_info=True)
