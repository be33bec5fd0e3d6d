"""
Session / History Store

Append-only chat log on ``support_chat_messages`` plus the owning
``support_chat_sessions`` row. Reads and writes go through the Data Gateway,
so every method resolves to a GatewayResult.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, List, Optional, Set

from app.services.data_gateway import DataGateway, GatewayResult

logger = logging.getLogger(__name__)

SESSIONS_TABLE = "support_chat_sessions"
MESSAGES_TABLE = "support_chat_messages"

# Rows written by older deployments that used the log as scratch storage
LEGACY_SENTINEL_PREFIXES = ("[ARAMA_SONUÇLARI]", "[SEPETE_EKLENDİ]")


def is_sentinel(content: Optional[str]) -> bool:
    return bool(content) and content.lstrip().startswith(LEGACY_SENTINEL_PREFIXES)


class SessionStore:
    def __init__(self, gateway: DataGateway):
        self.gateway = gateway

    async def create_session(self, user_id: str, app_source: str, user_type: str = "customer") -> GatewayResult:
        result = await self.gateway.insert(
            SESSIONS_TABLE,
            {
                "user_id": user_id,
                "app_source": app_source,
                "user_type": user_type,
                "status": "active",
            },
            first=True,
        )
        if result.ok and not (result.data and result.data.get("id")):
            return GatewayResult(data=None, error="session insert returned no id")
        return result

    async def save_message(
        self,
        session_id: str,
        role: str,
        content: str,
        tokens_used: Optional[int] = None,
    ) -> GatewayResult:
        row: Dict[str, Any] = {"session_id": session_id, "role": role, "content": content}
        if tokens_used is not None:
            row["tokens_used"] = tokens_used
        return await self.gateway.insert(MESSAGES_TABLE, row)

    async def recent_history(self, session_id: str, limit: int = 8) -> GatewayResult:
        """Newest ``limit`` user/assistant messages, oldest first, sentinels removed."""
        result = await self.gateway.select(
            MESSAGES_TABLE,
            "role, content, created_at",
            filters={"session_id": session_id},
            order=("created_at", True),
            limit=limit,
        )
        if not result.ok:
            return result

        rows: List[Dict[str, Any]] = list(reversed(result.data or []))
        history = [
            {"role": row["role"], "content": row.get("content") or ""}
            for row in rows
            if row.get("role") in ("user", "assistant") and not is_sentinel(row.get("content"))
        ]
        return GatewayResult(data=history)

    async def touch_session(self, session_id: str) -> GatewayResult:
        return await self.gateway.update(
            SESSIONS_TABLE,
            {"updated_at": datetime.now(timezone.utc).isoformat()},
            filters={"id": session_id},
        )


class BackgroundWriter:
    """
    Detached persistence tasks. Failures are logged and dropped; nothing
    here is awaited by the request path.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable[Any], label: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finish(t, label))
        return task

    def _finish(self, task: asyncio.Task, label: str):
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background write %s cancelled", label)
            return
        error = task.exception()
        if error is not None:
            logger.error("Background write %s failed: %s", label, error)
            return
        result = task.result()
        if isinstance(result, GatewayResult) and not result.ok:
            logger.error("Background write %s failed: %s", label, result.error)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self):
        """Wait for in-flight writes; used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
