from __future__ import annotations

import json
import unittest

from app.core.ai.types import ActionType, AppSource, CompletionResult, ScreenContext
from app.services.ai.llm_client import LLMError
from app.services.ai.orchestrator import (
    EMPTY_REPLY,
    GENERIC_ERROR,
    TOOL_FAILURE,
    ChatOrchestrator,
    ChatServiceError,
    ChatTurnRequest,
)
from app.services.ai.session_store import BackgroundWriter
from tests.fakes import FakeGateway, FakeLLM, RecordingScratchStore, last_system_prompt, tool_call, tool_messages

SEARCH_ROWS = {"restaurants": [
    {
        "merchant_id": f"m{i}",
        "business_name": f"Kebapçı {i}",
        "rating": 4 + i / 10,
        "matching_items": [{"id": f"m{i}-p{j}", "name": f"Kebap {j}", "price": 200 + j} for j in range(5)],
    }
    for i in range(6)
]}


def make_orchestrator(llm, gateway=None, scratch=None, **kwargs) -> ChatOrchestrator:
    return ChatOrchestrator(
        gateway=gateway or FakeGateway(),
        llm=llm,
        scratch_store=scratch or RecordingScratchStore(),
        writer=BackgroundWriter(),
        **kwargs,
    )


def request(message: str, app_source: AppSource = AppSource.CUSTOMER_APP, **kwargs) -> ChatTurnRequest:
    return ChatTurnRequest(user_id="u1", message=message, app_source=app_source, session_id="s1", **kwargs)


class SessionTests(unittest.IsolatedAsyncioTestCase):
    async def test_existing_session_is_reused(self) -> None:
        gateway = FakeGateway()
        orchestrator = make_orchestrator(FakeLLM(), gateway)
        self.assertEqual(await orchestrator.open_session(request("merhaba")), "s1")
        self.assertEqual(gateway.inserts, [])

    async def test_new_session_is_created(self) -> None:
        gateway = FakeGateway()
        orchestrator = make_orchestrator(FakeLLM(), gateway)
        session_id = await orchestrator.open_session(
            ChatTurnRequest(user_id="u1", message="merhaba", app_source=AppSource.SUPER_APP)
        )
        self.assertTrue(session_id.startswith("support_chat_sessions-"))

    async def test_session_failure_raises(self) -> None:
        gateway = FakeGateway()

        async def failing_insert(table, row, *, first=False):
            from app.services.data_gateway import GatewayResult
            return GatewayResult(data=None, error="insert failed")

        gateway.insert = failing_insert
        orchestrator = make_orchestrator(FakeLLM(), gateway)
        with self.assertLogs("app.services.ai.orchestrator", level="ERROR"):
            with self.assertRaises(ChatServiceError) as ctx:
                await orchestrator.open_session(
                    ChatTurnRequest(user_id="u1", message="merhaba", app_source=AppSource.SUPER_APP)
                )
        self.assertEqual(ctx.exception.message, GENERIC_ERROR)


class ToolLoopTests(unittest.IsolatedAsyncioTestCase):
    async def test_round_limit_then_tool_free_finalization(self) -> None:
        gateway = FakeGateway(rpc_results={"ai_get_order_status": {"has_active_order": False}})
        llm = FakeLLM(completions=[
            CompletionResult(tool_calls=[tool_call("get_order_status", call_id="c1")], total_tokens=10),
            CompletionResult(tool_calls=[tool_call("get_order_status", call_id="c2")], total_tokens=10),
            CompletionResult(tool_calls=[tool_call("get_order_status", call_id="c3")], total_tokens=10),
            CompletionResult(content="Aktif siparişiniz yok.", total_tokens=5),
        ])
        orchestrator = make_orchestrator(llm, gateway)
        with self.assertLogs("app.services.ai.orchestrator", level="WARNING"):
            turn = await orchestrator.prepare(request("merhaba"), "s1")
        self.assertEqual(turn.rounds, 3)
        self.assertIsNone(turn.final_content)

        reply = await orchestrator.finalize(turn)
        self.assertEqual(reply, "Aktif siparişiniz yok.")
        self.assertEqual(len(llm.calls), 4)
        self.assertTrue(all(call["tools"] for call in llm.calls[:3]))
        self.assertIsNone(llm.calls[3]["tools"])
        self.assertEqual(turn.tokens_used, 35)
        self.assertEqual(gateway.rpc_names().count("ai_get_order_status"), 3)

    async def test_every_call_id_gets_one_tool_message(self) -> None:
        llm = FakeLLM(completions=[
            CompletionResult(tool_calls=[
                tool_call("get_order_status", call_id="a"),
                tool_call("unknown_tool", call_id="b"),
                tool_call("get_recommendations", call_id="c"),
            ]),
            CompletionResult(content="Tamamdır."),
        ])
        orchestrator = make_orchestrator(llm, FakeGateway(rpc_results={"ai_get_order_status": {}}))
        orchestrator.executor._handlers["get_recommendations"] = _explode

        with self.assertLogs("app.services.ai.orchestrator", level="ERROR"):
            turn = await orchestrator.prepare(request("merhaba"), "s1")

        tool_msgs = tool_messages(turn.messages)
        self.assertEqual([m["tool_call_id"] for m in tool_msgs], ["a", "b", "c"])
        self.assertEqual(tool_msgs[2]["content"], TOOL_FAILURE)
        assistant = [m for m in turn.messages if m.get("tool_calls")]
        self.assertEqual(len(assistant), 1)
        self.assertEqual([c["id"] for c in assistant[0]["tool_calls"]], ["a", "b", "c"])

    async def test_round_zero_answer_needs_no_finalization(self) -> None:
        llm = FakeLLM(completions=[CompletionResult(content="", total_tokens=3)])
        orchestrator = make_orchestrator(llm)
        turn = await orchestrator.prepare(request("merhaba"), "s1")
        self.assertEqual(await orchestrator.finalize(turn), EMPTY_REPLY)
        self.assertEqual(len(llm.calls), 1)

    async def test_non_customer_apps_skip_tools(self) -> None:
        llm = FakeLLM(completions=[CompletionResult(content="Merhaba!", total_tokens=4)])
        orchestrator = make_orchestrator(llm)
        turn = await orchestrator.prepare(request("merhaba", AppSource.COURIER_APP), "s1")
        self.assertEqual(turn.rounds, 0)
        self.assertEqual(await orchestrator.finalize(turn), "Merhaba!")
        self.assertIsNone(llm.calls[0]["tools"])

    async def test_llm_failure_becomes_service_error(self) -> None:
        orchestrator = make_orchestrator(FakeLLM(completions=[LLMError("rate limited")]))
        with self.assertLogs("app.services.ai.orchestrator", level="ERROR"):
            with self.assertRaises(ChatServiceError):
                await orchestrator.prepare(request("merhaba"), "s1")


async def _explode(args, context, collectors):
    raise RuntimeError("handler crashed")


class ConfirmationGuardTests(unittest.IsolatedAsyncioTestCase):
    def gateway(self) -> FakeGateway:
        return FakeGateway(rpc_results={
            "ai_check_cancel_eligibility": {"can_cancel": True, "order_number": "7"},
            "ai_cancel_order": {"success": True, "order_number": "7"},
        })

    def cancel_llm(self) -> FakeLLM:
        return FakeLLM(completions=[
            CompletionResult(tool_calls=[tool_call("cancel_order", {"confirmed": True})]),
            CompletionResult(content="Tamam."),
        ])

    async def test_confirmed_without_pending_is_downgraded(self) -> None:
        gateway = self.gateway()
        orchestrator = make_orchestrator(self.cancel_llm(), gateway)
        with self.assertLogs("app.services.ai.orchestrator", level="WARNING"):
            turn = await orchestrator.prepare(request("siparişimi iptal et"), "s1")
        self.assertNotIn("ai_cancel_order", gateway.rpc_names())
        self.assertIn("ai_check_cancel_eligibility", gateway.rpc_names())
        self.assertEqual(turn.collectors.pending_confirmation["tool"], "cancel_order")

    async def test_confirmed_without_yes_is_downgraded(self) -> None:
        gateway = self.gateway()
        scratch = RecordingScratchStore({"s1": {"pending_confirmation": {"tool": "cancel_order"}}})
        orchestrator = make_orchestrator(self.cancel_llm(), gateway, scratch)
        with self.assertLogs("app.services.ai.orchestrator", level="WARNING"):
            await orchestrator.prepare(request("hayır vazgeçtim"), "s1")
        self.assertNotIn("ai_cancel_order", gateway.rpc_names())

    async def test_pending_plus_yes_executes_once(self) -> None:
        gateway = self.gateway()
        scratch = RecordingScratchStore({"s1": {"pending_confirmation": {"tool": "cancel_order"}}})
        llm = FakeLLM(completions=[
            CompletionResult(tool_calls=[
                tool_call("cancel_order", {"confirmed": True}, call_id="x1"),
                tool_call("cancel_order", {"confirmed": True}, call_id="x2"),
            ]),
            CompletionResult(content="Siparişiniz iptal edildi."),
        ])
        orchestrator = make_orchestrator(llm, gateway, scratch)
        with self.assertLogs("app.services.ai.orchestrator", level="WARNING"):
            turn = await orchestrator.prepare(request("evet"), "s1")
        self.assertEqual(gateway.rpc_names().count("ai_cancel_order"), 1)
        self.assertEqual(len(tool_messages(turn.messages)), 2)

    async def test_full_sentence_yes_cancels(self) -> None:
        gateway = self.gateway()
        scratch = RecordingScratchStore({"s1": {"pending_confirmation": {"tool": "cancel_order", "arguments": {}}}})
        orchestrator = make_orchestrator(self.cancel_llm(), gateway, scratch)
        await orchestrator.prepare(request("Evet, iptal etmek istiyorum"), "s1")
        self.assertEqual(gateway.rpc_names().count("ai_cancel_order"), 1)
        self.assertNotIn("ai_check_cancel_eligibility", gateway.rpc_names())

    async def test_backing_out_keeps_order(self) -> None:
        gateway = self.gateway()
        scratch = RecordingScratchStore({"s1": {"pending_confirmation": {"tool": "cancel_order", "arguments": {}}}})
        orchestrator = make_orchestrator(self.cancel_llm(), gateway, scratch)
        with self.assertLogs("app.services.ai.orchestrator", level="WARNING"):
            await orchestrator.prepare(request("tamam vazgeçtim"), "s1")
        self.assertNotIn("ai_cancel_order", gateway.rpc_names())

    async def test_plain_ok_does_not_cancel(self) -> None:
        gateway = self.gateway()
        scratch = RecordingScratchStore({"s1": {"pending_confirmation": {"tool": "cancel_order", "arguments": {}}}})
        orchestrator = make_orchestrator(self.cancel_llm(), gateway, scratch)
        with self.assertLogs("app.services.ai.orchestrator", level="WARNING"):
            await orchestrator.prepare(request("tamam"), "s1")
        self.assertNotIn("ai_cancel_order", gateway.rpc_names())

    def taxi_gateway(self) -> FakeGateway:
        return FakeGateway(rpc_results={
            "ai_check_taxi_request_eligibility": {"can_request": True, "estimated_fare": 180},
            "ai_request_taxi": {"success": True, "ride_number": "T7"},
        })

    def taxi_scratch(self) -> RecordingScratchStore:
        return RecordingScratchStore({"s1": {"pending_confirmation": {
            "tool": "request_taxi", "arguments": {"destination": "Kadıköy"},
        }}})

    def taxi_llm(self, destination: str) -> FakeLLM:
        return FakeLLM(completions=[
            CompletionResult(tool_calls=[tool_call("request_taxi", {"destination": destination, "confirmed": True})]),
            CompletionResult(content="Taksiniz yolda."),
        ])

    async def test_confirmed_taxi_goes_to_agreed_destination(self) -> None:
        gateway = self.taxi_gateway()
        orchestrator = make_orchestrator(self.taxi_llm("Kadıköy"), gateway, self.taxi_scratch())
        await orchestrator.prepare(request("evet"), "s1")
        booked = [params["p_destination"] for name, params in gateway.rpc_calls if name == "ai_request_taxi"]
        self.assertEqual(booked, ["Kadıköy"])

    async def test_changed_taxi_destination_is_downgraded(self) -> None:
        gateway = self.taxi_gateway()
        orchestrator = make_orchestrator(self.taxi_llm("Havalimanı"), gateway, self.taxi_scratch())
        with self.assertLogs("app.services.ai.orchestrator", level="WARNING"):
            turn = await orchestrator.prepare(request("evet"), "s1")
        self.assertNotIn("ai_request_taxi", gateway.rpc_names())
        self.assertEqual(
            turn.collectors.pending_confirmation["arguments"], {"destination": "Havalimanı"},
        )

    async def test_unconfirmed_calls_pass_through(self) -> None:
        gateway = self.gateway()
        llm = FakeLLM(completions=[
            CompletionResult(tool_calls=[tool_call("cancel_order", {"confirmed": False})]),
            CompletionResult(content="Onaylıyor musunuz?"),
        ])
        orchestrator = make_orchestrator(llm, gateway)
        turn = await orchestrator.prepare(request("siparişimi iptal et"), "s1")
        self.assertEqual(gateway.rpc_names().count("ai_check_cancel_eligibility"), 1)
        self.assertIsNotNone(turn.collectors.pending_confirmation)


class EndToEndTests(unittest.IsolatedAsyncioTestCase):
    async def test_order_question_without_active_order(self) -> None:
        gateway = FakeGateway(rpc_results={"ai_get_order_status": {"has_active_order": False}})
        llm = FakeLLM(completions=[CompletionResult(content="Şu an aktif siparişiniz yok.", total_tokens=42)])
        orchestrator = make_orchestrator(llm, gateway)

        turn = await orchestrator.prepare(request("siparişim nerede"), "s1")
        reply = await orchestrator.finalize(turn)

        self.assertEqual(reply, "Şu an aktif siparişiniz yok.")
        self.assertIn("aktif siparişi bulunmuyor", last_system_prompt(llm))
        self.assertEqual(turn.collectors.actions, [])
        self.assertEqual(turn.tokens_used, 42)
        self.assertEqual(llm.calls[0]["messages"][-1], {"role": "user", "content": "siparişim nerede"})

    async def test_food_search_on_super_app(self) -> None:
        gateway = FakeGateway(rpc_results={
            "ai_search_restaurants": SEARCH_ROWS,
            "ai_search_store_products": [],
        })
        llm = FakeLLM(completions=[
            CompletionResult(tool_calls=[tool_call("search_food", {"keywords": ["kebap"]})], total_tokens=20),
            CompletionResult(content="Size birkaç kebapçı buldum.", total_tokens=30),
        ])
        orchestrator = make_orchestrator(llm, gateway)

        turn = await orchestrator.prepare(request("kebap istiyorum", AppSource.SUPER_APP), "s1")
        reply = await orchestrator.finalize(turn)

        self.assertTrue(reply)
        self.assertIn("kartları", last_system_prompt(llm))
        self.assertIn('[ARAMA]: Kullanıcı "kebap" arıyor', last_system_prompt(llm))
        self.assertTrue(turn.collectors.product_cards)
        merchants = {card["merchant_id"] for card in turn.collectors.product_cards}
        self.assertLessEqual(len(merchants), 5)
        self.assertIn("Kebapçı 5", tool_messages(turn.messages)[0]["content"])

    async def test_screen_add_to_cart_and_navigation(self) -> None:
        gateway = FakeGateway(rpc_results={"ai_search_merchant_products": {
            "products": [{"id": "p1", "name": "Lahmacun", "price": 90, "discounted_price": 75}],
            "total_count": 1,
        }})
        llm = FakeLLM(completions=[CompletionResult(content="Lahmacun sepetinizde.")])
        orchestrator = make_orchestrator(llm, gateway)
        screen = ScreenContext("restaurant_detail", entity_id="m1", entity_name="Halil Usta", entity_type="restaurant")

        turn = await orchestrator.prepare(
            request("2 tane lahmacun ekle ve sepete git", AppSource.SUPER_APP, screen_context=screen), "s1",
        )
        types = [action.type for action in turn.collectors.actions]
        self.assertEqual(types, [ActionType.ADD_TO_CART, ActionType.NAVIGATE])
        cart = turn.collectors.actions[0].payload
        self.assertEqual((cart["product_id"], cart["price"], cart["quantity"]), ("p1", 75, 2))
        self.assertEqual(turn.collectors.actions[1].payload["route"], "/store/cart")
        prompt = last_system_prompt(llm)
        self.assertIn("Halil Usta", prompt)
        self.assertIn("[SEPET]", prompt)


class PersistTests(unittest.IsolatedAsyncioTestCase):
    async def test_persist_writes_message_and_scratch(self) -> None:
        gateway = FakeGateway(rpc_results={"ai_check_cancel_eligibility": {"can_cancel": True}})
        scratch = RecordingScratchStore()
        llm = FakeLLM(completions=[
            CompletionResult(tool_calls=[tool_call("cancel_order", {"confirmed": False})]),
            CompletionResult(content="Emin misiniz?", total_tokens=9),
        ])
        orchestrator = make_orchestrator(llm, gateway, scratch)
        turn = await orchestrator.prepare(request("siparişimi iptal et"), "s1")
        reply = await orchestrator.finalize(turn)

        orchestrator.persist(turn, reply)
        await orchestrator.writer.drain()

        assistant_rows = [row for table, row in gateway.inserts if row.get("role") == "assistant"]
        self.assertEqual(assistant_rows[0]["content"], "Emin misiniz?")
        self.assertEqual(len(scratch.saved), 1)
        self.assertEqual(scratch.saved[0][1].pending_confirmation["tool"], "cancel_order")
        self.assertTrue(any(table == "support_chat_sessions" for table, _, _ in gateway.updates))

    async def test_unchanged_scratch_is_not_saved(self) -> None:
        scratch = RecordingScratchStore()
        orchestrator = make_orchestrator(FakeLLM(), scratch=scratch)
        turn = await orchestrator.prepare(request("merhaba"), "s1")
        orchestrator.persist(turn, await orchestrator.finalize(turn))
        await orchestrator.writer.drain()
        self.assertEqual(scratch.saved, [])

    async def test_next_scratch_keeps_old_search_and_drops_stale_confirmation(self) -> None:
        scratch = RecordingScratchStore({"s1": {
            "last_search_context": [{"product_id": "p1"}],
            "pending_confirmation": {"tool": "request_taxi"},
        }})
        orchestrator = make_orchestrator(FakeLLM(), scratch=scratch)
        turn = await orchestrator.prepare(request("merhaba"), "s1")
        updated = ChatOrchestrator.next_scratch(turn)
        self.assertEqual(updated.last_search_context, [{"product_id": "p1"}])
        self.assertIsNone(updated.pending_confirmation)
        self.assertEqual(json.loads(json.dumps(updated.to_dict()))["last_search_context"][0]["product_id"], "p1")


if __name__ == "__main__":
    unittest.main()
