"""
Data Gateway - thin async wrapper over the Supabase client.

Every call resolves to a GatewayResult; nothing raises across this boundary.
Callers treat ``result.error`` as "no data available" and degrade.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class GatewayResult:
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DataGateway:
    """Named table reads and RPC invocations against the datastore"""

    def __init__(self, client: Any):
        self.client = client

    async def _run(self, label: str, build: Callable[[], Any]) -> GatewayResult:
        # supabase-py is synchronous; run in a worker so batched fetches overlap
        try:
            response = await asyncio.to_thread(lambda: build().execute())
        except Exception as e:
            logger.warning("Gateway call %s failed: %s", label, e)
            return GatewayResult(data=None, error=str(e) or type(e).__name__)

        if response is None:
            return GatewayResult(data=None)
        return GatewayResult(data=getattr(response, "data", None))

    async def select(
        self,
        table: str,
        columns: str = "*",
        *,
        filters: Optional[Mapping[str, Any]] = None,
        or_filter: Optional[str] = None,
        order: Optional[Tuple[str, bool]] = None,
        limit: Optional[int] = None,
        first: bool = False,
    ) -> GatewayResult:
        """Row query. ``order`` is ``(column, descending)``; ``first`` returns one row or None."""

        def build():
            query = self.client.table(table).select(columns)
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            if or_filter:
                query = query.or_(or_filter)
            if order:
                query = query.order(order[0], desc=order[1])
            if first:
                query = query.limit(1)
            elif limit:
                query = query.limit(limit)
            return query

        result = await self._run(f"select:{table}", build)
        if first and result.ok:
            rows = result.data or []
            result.data = rows[0] if isinstance(rows, list) and rows else (rows or None)
        return result

    async def rpc(self, name: str, params: Optional[Dict[str, Any]] = None) -> GatewayResult:
        """Remote procedure call returning rows or a JSON document."""
        return await self._run(f"rpc:{name}", lambda: self.client.rpc(name, params or {}))

    async def insert(self, table: str, row: Dict[str, Any], *, first: bool = False) -> GatewayResult:
        result = await self._run(f"insert:{table}", lambda: self.client.table(table).insert(row))
        if first and result.ok:
            rows = result.data or []
            result.data = rows[0] if isinstance(rows, list) and rows else None
        return result

    async def update(
        self,
        table: str,
        values: Dict[str, Any],
        *,
        filters: Mapping[str, Any],
    ) -> GatewayResult:
        def build():
            query = self.client.table(table).update(values)
            for column, value in filters.items():
                query = query.eq(column, value)
            return query

        return await self._run(f"update:{table}", build)

    async def get_user(self, token: str) -> GatewayResult:
        """Verify a bearer token; ``data`` is the user object or None."""
        try:
            response = await asyncio.to_thread(self.client.auth.get_user, token)
        except Exception as e:
            logger.warning("Token verification failed: %s", e)
            return GatewayResult(data=None, error=str(e) or type(e).__name__)
        return GatewayResult(data=getattr(response, "user", None) if response else None)
