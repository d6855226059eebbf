"""
Redis-backed session store: JSON documents with a TTL, plus pub/sub change feed.
"""
import asyncio
import json
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi.encoders import jsonable_encoder
from redis.asyncio import Redis
from redis.asyncio.client import PubSub

from interview_coach.config import get_settings
from interview_coach.utils.logger import get_logger

log = get_logger(__name__)

Document = Dict[str, Any]
ChangeCallback = Callable[[Document], Awaitable[None]]


@lru_cache
def get_redis() -> Redis:
    cfg = get_settings()
    return Redis(
        host=cfg.redis_host,
        port=cfg.redis_port,
        db=cfg.redis_db,
        password=cfg.redis_password or None,
        decode_responses=True,   # documents are JSON strings
        health_check_interval=30,
    )


# ------------------------------------------------------------------ #
# Connection test
# ------------------------------------------------------------------ #
async def test_connection(redis: Optional[Redis] = None) -> bool:
    try:
        pong = await (redis or get_redis()).ping()
        if pong:
            log.info("✅ Redis connection successful!")
            return True
    except Exception as e:
        log.error(f"❌ Redis connection failed: {e}", exc_info=True)
    return False


# ------------------------------------------------------------------ #
# Session store (JSON documents + change notifications)
# ------------------------------------------------------------------ #
class RedisSubscription:
    """Pub/sub listener for one session; cancel() stops delivery."""

    def __init__(self, pubsub: PubSub, task: asyncio.Task):
        self._pubsub = pubsub
        self._task = task

    async def cancel(self) -> None:
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        try:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
        except Exception as e:
            log.warning(f"Error closing pub/sub: {e}")


class RedisSessionStore:
    """Whole-document get/set keyed by session id, with push notifications on every write."""

    def __init__(self, redis: Optional[Redis] = None, ttl_seconds: Optional[int] = None,
                 prefix: str = "sessions"):
        self.redis = redis or get_redis()
        self.ttl_seconds = ttl_seconds or get_settings().session_ttl_seconds
        self.prefix = prefix

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}:{session_id}"

    def _channel(self, session_id: str) -> str:
        return f"{self.prefix}:{session_id}:changes"

    async def get(self, session_id: str) -> Optional[Document]:
        """Retrieve a session and decode JSON back to dict."""
        try:
            raw = await self.redis.get(self._key(session_id))
        except Exception as e:
            log.error(f"Error retrieving session {session_id}: {e}", exc_info=True)
            raise
        if raw:
            return json.loads(raw)
        return None

    async def create(self, session_id: str, data: Document) -> bool:
        """Store a new session; False when one already exists under this id."""
        payload = json.dumps(jsonable_encoder(data))
        try:
            created = await self.redis.set(self._key(session_id), payload, ex=self.ttl_seconds, nx=True)
            if created:
                await self.redis.publish(self._channel(session_id), payload)
        except Exception as e:
            log.error(f"Error creating session {session_id}: {e}", exc_info=True)
            raise
        if created:
            log.info(f"Session {session_id} created.")
        return bool(created)

    async def set(self, session_id: str, data: Document) -> None:
        """Replace session data and notify subscribers."""
        payload = json.dumps(jsonable_encoder(data))
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self._key(session_id), payload, ex=self.ttl_seconds)
                pipe.publish(self._channel(session_id), payload)
                await pipe.execute()
            log.debug(f"Session {session_id} updated.")
        except Exception as e:
            log.error(f"Error updating session {session_id}: {e}", exc_info=True)
            raise

    async def subscribe(self, session_id: str, callback: ChangeCallback) -> RedisSubscription:
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(self._channel(session_id))
        task = asyncio.create_task(self._listen(session_id, pubsub, callback))
        return RedisSubscription(pubsub, task)

    async def _listen(self, session_id: str, pubsub: PubSub, callback: ChangeCallback) -> None:
        async for message in pubsub.listen():
            if message.get("type") != "message":
                continue
            try:
                await callback(json.loads(message["data"]))
            except Exception as e:
                log.error(f"Subscriber for session {session_id} failed: {e}", exc_info=True)
