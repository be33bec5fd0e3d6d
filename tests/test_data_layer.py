from __future__ import annotations

import asyncio
import json
import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

from app.core.ai.types import AppSource, ScratchContext, ScreenContext
from app.services.data_gateway import DataGateway, GatewayResult
from app.services.ai.keyword_classifier import classify
from app.services.ai.parallel_fetch import fetch_merchant_info, plan_turn_fetches, run_batch
from app.services.ai.scratch_store import InMemoryScratchStore, RedisScratchStore, scratch_key
from app.services.ai.session_store import BackgroundWriter, SessionStore, is_sentinel
from tests.fakes import FakeGateway, RecordingScratchStore


def chain_client(data=None, error: Exception = None) -> MagicMock:
    query = MagicMock()
    for method in ("select", "eq", "or_", "order", "limit", "insert", "update"):
        getattr(query, method).return_value = query
    if error is not None:
        query.execute.side_effect = error
    else:
        query.execute.return_value = SimpleNamespace(data=data)
    client = MagicMock()
    client.table.return_value = query
    return client


class DataGatewayTests(unittest.IsolatedAsyncioTestCase):
    async def test_select_returns_rows(self) -> None:
        client = chain_client(data=[{"id": 1}, {"id": 2}])
        result = await DataGateway(client).select("orders", filters={"user_id": "u1"}, order=("created_at", True))
        self.assertTrue(result.ok)
        self.assertEqual(len(result.data), 2)
        client.table.assert_called_once_with("orders")
        client.table.return_value.eq.assert_called_with("user_id", "u1")
        client.table.return_value.order.assert_called_with("created_at", desc=True)

    async def test_select_first_unwraps_single_row(self) -> None:
        client = chain_client(data=[{"id": 1}])
        result = await DataGateway(client).select("orders", first=True)
        self.assertEqual(result.data, {"id": 1})
        client.table.return_value.limit.assert_called_with(1)

        empty = await DataGateway(chain_client(data=[])).select("orders", first=True)
        self.assertTrue(empty.ok)
        self.assertIsNone(empty.data)

    async def test_errors_are_returned_not_raised(self) -> None:
        client = chain_client(error=RuntimeError("connection reset"))
        with self.assertLogs("app.services.data_gateway", level="WARNING"):
            result = await DataGateway(client).select("orders")
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "connection reset")
        self.assertIsNone(result.data)

    async def test_rpc(self) -> None:
        client = MagicMock()
        client.rpc.return_value.execute.return_value = SimpleNamespace(data={"has_active_order": False})
        result = await DataGateway(client).rpc("ai_get_order_status", {"p_user_id": "u1"})
        self.assertEqual(result.data, {"has_active_order": False})
        client.rpc.assert_called_once_with("ai_get_order_status", {"p_user_id": "u1"})

    async def test_get_user(self) -> None:
        client = MagicMock()
        client.auth.get_user.return_value = SimpleNamespace(user=SimpleNamespace(id="u1", email="a@b.c"))
        result = await DataGateway(client).get_user("token")
        self.assertEqual(result.data.id, "u1")

        client.auth.get_user.side_effect = Exception("jwt expired")
        failed = await DataGateway(client).get_user("token")
        self.assertFalse(failed.ok)


class RunBatchTests(unittest.IsolatedAsyncioTestCase):
    async def test_failures_do_not_affect_siblings(self) -> None:
        async def ok():
            await asyncio.sleep(0)
            return GatewayResult(data=[1])

        async def boom():
            raise ValueError("bad row")

        async def plain():
            return {"x": 1}

        with self.assertLogs("app.services.ai.parallel_fetch", level="ERROR"):
            results = await run_batch({"a": ok(), "b": boom(), "c": plain()})
        self.assertEqual(set(results), {"a", "b", "c"})
        self.assertEqual(results["a"].data, [1])
        self.assertFalse(results["b"].ok)
        self.assertEqual(results["b"].error, "bad row")
        self.assertEqual(results["c"].data, {"x": 1})

    async def test_latency_is_the_slowest_fetch(self) -> None:
        async def slow(delay: float):
            await asyncio.sleep(delay)
            return GatewayResult(data=delay)

        async def late_failure():
            await asyncio.sleep(0.1)
            raise RuntimeError("timeout")

        delays = [0.1, 0.2, 0.3]
        batch = {f"f{i}": slow(d) for i, d in enumerate(delays)}
        batch["broken"] = late_failure()

        loop = asyncio.get_running_loop()
        started = loop.time()
        with self.assertLogs("app.services.ai.parallel_fetch", level="ERROR"):
            results = await run_batch(batch)
        elapsed = loop.time() - started

        self.assertGreaterEqual(elapsed, max(delays) - 0.01)
        self.assertLess(elapsed, sum(delays))
        self.assertEqual([results[f"f{i}"].data for i in range(3)], delays)
        self.assertEqual(results["broken"].error, "timeout")

    async def test_empty_batch(self) -> None:
        self.assertEqual(await run_batch({}), {})

    async def test_merchant_info_uses_commission_table(self) -> None:
        gateway = FakeGateway(tables={
            "merchants": [{"user_id": "u1", "business_name": "Halil Usta", "type": "restaurant"}],
            "platform_commissions": [{"service_type": "restaurant", "platform_commission_rate": "12.5"}],
        })
        result = await fetch_merchant_info(gateway, "u1")
        self.assertEqual(result.data["commission_rate"], 12.5)

    async def test_merchant_info_defaults_commission(self) -> None:
        gateway = FakeGateway(tables={"merchants": [{"user_id": "u1", "type": "store"}]})
        result = await fetch_merchant_info(gateway, "u1")
        self.assertEqual(result.data["commission_rate"], 15.0)


class PlanTurnFetchesTests(unittest.IsolatedAsyncioTestCase):
    async def plan(self, message: str, app_source: AppSource, screen_context=None):
        gateway = FakeGateway()
        fetches = plan_turn_fetches(
            gateway=gateway,
            session_store=SessionStore(gateway),
            scratch_store=RecordingScratchStore(),
            user_id="u1",
            session_id="s1",
            message=message,
            app_source=app_source,
            flags=classify(message),
            screen_context=screen_context,
        )
        results = await run_batch(fetches)
        return set(results), gateway

    async def test_always_fetched(self) -> None:
        names, gateway = await self.plan("merhaba", AppSource.COURIER_APP)
        self.assertEqual(names, {"system_prompt", "knowledge_base", "history", "save_user_message", "scratch"})
        self.assertEqual(gateway.inserts[0][0], "support_chat_messages")
        self.assertEqual(gateway.inserts[0][1]["role"], "user")

    async def test_order_query_on_customer_app(self) -> None:
        names, gateway = await self.plan("siparişim nerede", AppSource.CUSTOMER_APP)
        self.assertIn("order_status", names)
        self.assertNotIn("food_recommendation", names)
        self.assertIn("ai_get_order_status", gateway.rpc_names())

    async def test_order_query_ignored_outside_customer_apps(self) -> None:
        names, _ = await self.plan("siparişim nerede", AppSource.MERCHANT_PANEL)
        self.assertNotIn("order_status", names)
        self.assertIn("merchant_data", names)

    async def test_food_search_fetches_address_and_allergies(self) -> None:
        names, _ = await self.plan("kebap istiyorum", AppSource.SUPER_APP)
        self.assertIn("user_address", names)
        self.assertIn("user_allergies", names)

    async def test_detail_screen_fetches_merchant_products(self) -> None:
        screen = ScreenContext("restaurant_detail", entity_id="m1", entity_name="Halil Usta", entity_type="restaurant")
        names, gateway = await self.plan("menüde ne var", AppSource.SUPER_APP, screen)
        self.assertIn("merchant_products", names)
        params = dict(gateway.rpc_calls)["ai_search_merchant_products"]
        self.assertEqual(params["p_merchant_id"], "m1")

        names, _ = await self.plan("menüde ne var", AppSource.CUSTOMER_APP, screen)
        self.assertNotIn("merchant_products", names)


class SessionStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_history_filters_roles_and_sentinels(self) -> None:
        rows = [
            {"session_id": "s1", "role": "assistant", "content": "Son cevap"},
            {"session_id": "s1", "role": "system", "content": "[ARAMA_SONUÇLARI] {...}"},
            {"session_id": "s1", "role": "assistant", "content": "[SEPETE_EKLENDİ] Lahmacun"},
            {"session_id": "s1", "role": "user", "content": "İlk soru"},
        ]
        # rows come back newest first
        store = SessionStore(FakeGateway(tables={"support_chat_messages": rows}))
        result = await store.recent_history("s1", limit=8)
        self.assertEqual(result.data, [
            {"role": "user", "content": "İlk soru"},
            {"role": "assistant", "content": "Son cevap"},
        ])

    async def test_create_session(self) -> None:
        gateway = FakeGateway()
        result = await SessionStore(gateway).create_session("u1", "super_app")
        self.assertTrue(result.ok)
        self.assertTrue(result.data["id"])
        self.assertEqual(gateway.inserts[0][1]["status"], "active")

    async def test_create_session_failure(self) -> None:
        gateway = FakeGateway()
        gateway.insert = AsyncMock(return_value=GatewayResult(data=None, error="insert failed"))
        result = await SessionStore(gateway).create_session("u1", "super_app")
        self.assertFalse(result.ok)

    def test_sentinel_detection(self) -> None:
        self.assertTrue(is_sentinel("  [SEPETE_EKLENDİ] x"))
        self.assertFalse(is_sentinel("Sepete ekledim"))
        self.assertFalse(is_sentinel(None))


class BackgroundWriterTests(unittest.IsolatedAsyncioTestCase):
    async def test_failures_are_logged_and_dropped(self) -> None:
        writer = BackgroundWriter()

        async def fails():
            raise RuntimeError("insert failed")

        async def soft_fail():
            return GatewayResult(data=None, error="timeout")

        with self.assertLogs("app.services.ai.session_store", level="ERROR") as logs:
            writer.spawn(fails(), "assistant_message")
            writer.spawn(soft_fail(), "session_touch")
            self.assertEqual(writer.pending, 2)
            await writer.drain()
            await asyncio.sleep(0)

        self.assertEqual(writer.pending, 0)
        joined = "\n".join(logs.output)
        self.assertIn("assistant_message", joined)
        self.assertIn("session_touch", joined)


class ScratchStoreTests(unittest.IsolatedAsyncioTestCase):
    async def test_in_memory_latest_value_wins(self) -> None:
        store = InMemoryScratchStore(ttl=60)
        await store.save("s1", ScratchContext(last_search_context=[{"product_id": "p1"}]))
        await store.save("s1", ScratchContext(last_search_context=[{"product_id": "p2"}]))
        loaded = await store.load("s1")
        self.assertEqual(loaded.last_search_context, [{"product_id": "p2"}])
        self.assertTrue((await store.load("other")).is_empty())

    async def test_in_memory_empty_context_clears(self) -> None:
        store = InMemoryScratchStore(ttl=60)
        await store.save("s1", ScratchContext(pending_confirmation={"tool": "cancel_order"}))
        await store.save("s1", ScratchContext())
        self.assertTrue((await store.load("s1")).is_empty())

    async def test_redis_store_uses_setex(self) -> None:
        client = AsyncMock()
        store = RedisScratchStore(ttl=120, client=client)
        context = ScratchContext(pending_confirmation={"tool": "request_taxi"})
        await store.save("s1", context)
        client.setex.assert_awaited_once()
        key, ttl, payload = client.setex.await_args.args
        self.assertEqual(key, scratch_key("s1"))
        self.assertEqual(ttl, 120)
        self.assertEqual(json.loads(payload)["pending_confirmation"], {"tool": "request_taxi"})

    async def test_redis_load_failure_returns_empty_context(self) -> None:
        client = AsyncMock()
        client.get.side_effect = ConnectionError("redis down")
        store = RedisScratchStore(client=client)
        with self.assertLogs("app.services.ai.scratch_store", level="WARNING"):
            loaded = await store.load("s1")
        self.assertTrue(loaded.is_empty())

    async def test_redis_load_roundtrip_payload(self) -> None:
        client = AsyncMock()
        client.get.return_value = json.dumps({"last_cart_context": [{"name": "Ayran", "quantity": 2}]})
        loaded = await RedisScratchStore(client=client).load("s1")
        self.assertEqual(loaded.last_cart_context[0]["name"], "Ayran")


if __name__ == "__main__":
    unittest.main()
