"""
Scratch Store - per-session carry-over context between chat turns

Holds the latest search snapshot, cart mutations and any pending
confirmation for a session. Only the latest value is kept; entries expire
after ``SCRATCH_TTL_SECONDS``.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Dict, Optional, Tuple

import redis.asyncio as redis

from app.config.settings import settings
from app.core.ai.types import ScratchContext

logger = logging.getLogger(__name__)

KEY_PREFIX = "chat_scratch"


def scratch_key(session_id: str) -> str:
    return f"{KEY_PREFIX}:{session_id}"


class RedisScratchStore:
    """Redis-backed scratch records with TTL"""

    def __init__(self, redis_url: Optional[str] = None, ttl: Optional[int] = None,
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url or settings.REDIS_URL or "redis://localhost:6379"
        self.ttl = ttl or settings.SCRATCH_TTL_SECONDS
        self.redis_client: Optional[redis.Redis] = client
        self.connection_pool = None

    async def _ensure_connection(self) -> redis.Redis:
        if self.redis_client is None:
            self.connection_pool = redis.ConnectionPool.from_url(
                self.redis_url,
                decode_responses=True,
                max_connections=20,
                socket_connect_timeout=5.0,
                health_check_interval=30.0,
            )
            self.redis_client = redis.Redis(connection_pool=self.connection_pool)
            logger.info("Redis scratch store connected")
        return self.redis_client

    async def close(self):
        if self.redis_client:
            await self.redis_client.aclose()
            if self.connection_pool:
                await self.connection_pool.disconnect()
            self.redis_client = None
            logger.info("Redis scratch store closed")

    async def load(self, session_id: str) -> ScratchContext:
        try:
            client = await self._ensure_connection()
            raw = await client.get(scratch_key(session_id))
        except Exception as e:
            logger.warning(f"Failed to load scratch context for {session_id}: {e}")
            return ScratchContext()

        if not raw:
            return ScratchContext()
        try:
            return ScratchContext.from_dict(json.loads(raw))
        except (ValueError, TypeError) as e:
            logger.warning(f"Corrupt scratch context for {session_id}: {e}")
            return ScratchContext()

    async def save(self, session_id: str, context: ScratchContext) -> bool:
        client = await self._ensure_connection()
        key = scratch_key(session_id)
        if context.is_empty():
            await client.delete(key)
            return True
        await client.setex(key, self.ttl, json.dumps(context.to_dict(), default=str, ensure_ascii=False))
        logger.debug(f"Saved scratch context for {session_id}")
        return True


class InMemoryScratchStore:
    """Process-local fallback used when no REDIS_URL is configured"""

    def __init__(self, ttl: Optional[int] = None):
        self.ttl = ttl or settings.SCRATCH_TTL_SECONDS
        self._entries: Dict[str, Tuple[float, Dict]] = {}

    async def load(self, session_id: str) -> ScratchContext:
        entry = self._entries.get(session_id)
        if entry is None:
            return ScratchContext()
        expires_at, data = entry
        if expires_at < time.monotonic():
            self._entries.pop(session_id, None)
            return ScratchContext()
        return ScratchContext.from_dict(json.loads(json.dumps(data)))

    async def save(self, session_id: str, context: ScratchContext) -> bool:
        if context.is_empty():
            self._entries.pop(session_id, None)
            return True
        self._entries[session_id] = (time.monotonic() + self.ttl, json.loads(json.dumps(context.to_dict(), default=str)))
        return True

    async def close(self):
        self._entries.clear()


def create_scratch_store():
    if settings.REDIS_URL:
        return RedisScratchStore(settings.REDIS_URL)
    logger.info("REDIS_URL not set, using in-memory scratch store")
    return InMemoryScratchStore()
