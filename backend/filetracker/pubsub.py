from __future__ import annotations

import json
from contextlib import suppress
from datetime import datetime
from typing import Any, AsyncIterator
from uuid import UUID

import redis.asyncio as redis

from . import config

_redis = None


async def get_redis():
    global _redis
    if _redis is None:
        if config.testing():
            from fakeredis import aioredis
            _redis = aioredis.FakeRedis()
        else:
            _redis = redis.from_url(config.redis_url())
    return _redis


def json_default(value: Any) -> Any:
    # purpose: convert datetimes and ids to strings for event payloads
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def serialize_event(event: dict[str, Any]) -> str:
    return json.dumps(event, default=json_default)


def collection_channel(collection: str) -> str:
    return f"collection:{collection}"


def user_channel(user_id: str) -> str:
    return f"notifications:{user_id}"


async def publish_collection_event(collection: str, event: dict[str, Any]) -> None:
    """Broadcast a change on a collection to live-query subscribers."""

    r = await get_redis()
    await r.publish(collection_channel(collection), serialize_event(event))


async def publish_user_event(user_id: str, event: dict[str, Any]) -> None:
    r = await get_redis()
    await r.publish(user_channel(user_id), serialize_event(event))


async def iter_channel_events(channel: str) -> AsyncIterator[str]:
    """Yield pub/sub messages from ``channel`` until the consumer stops."""

    r = await get_redis()
    pubsub = r.pubsub()
    await pubsub.subscribe(channel)
    try:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            data = message.get("data")
            if isinstance(data, bytes):
                yield data.decode()
            else:
                yield str(data)
    finally:
        with suppress(Exception):
            await pubsub.unsubscribe(channel)
        with suppress(AttributeError):
            await pubsub.close()
