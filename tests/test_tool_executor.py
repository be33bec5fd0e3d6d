from __future__ import annotations

import asyncio
import unittest

from app.core.ai.types import ActionType, AppSource, SideCollectors, ToolContext
from app.services.data_gateway import GatewayResult
from app.services.ai.tools.catalog import MUTATING_TOOLS, TOOL_SPECS, tool_definitions
from app.services.ai.tools.executor import (
    INVALID_ARGUMENTS,
    MAX_RENTAL_CARDS,
    UNKNOWN_TOOL,
    ToolExecutor,
    expand_keywords,
)
from tests.fakes import FakeGateway

CART_ARGS = {
    "product_id": "p1",
    "name": "Adana Kebap",
    "price": 220,
    "merchant_id": "m1",
    "merchant_name": "Halil Usta",
    "merchant_type": "restaurant",
}


class SlowGateway(FakeGateway):
    """Every RPC takes ``delay`` seconds; tracks how many were in flight at once."""

    def __init__(self, delay: float, **kwargs) -> None:
        super().__init__(**kwargs)
        self.delay = delay
        self.in_flight = 0
        self.peak_in_flight = 0

    async def rpc(self, name, params=None):
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return await super().rpc(name, params)


def make_context(**overrides) -> ToolContext:
    values = dict(
        user_id="u1",
        session_id="s1",
        app_source=AppSource.SUPER_APP,
        message="kebap istiyorum",
        user_address={"latitude": 35.18, "longitude": 33.36},
    )
    values.update(overrides)
    return ToolContext(**values)


class CatalogTests(unittest.TestCase):
    def test_definitions_cover_every_spec(self) -> None:
        names = [d["function"]["name"] for d in tool_definitions()]
        self.assertEqual(set(names), set(TOOL_SPECS))
        self.assertTrue(all(d["type"] == "function" for d in tool_definitions()))

    def test_mutating_tools(self) -> None:
        self.assertEqual(MUTATING_TOOLS, {"cancel_order", "cancel_taxi_ride", "request_taxi"})

    def test_keyword_expansion_is_bounded(self) -> None:
        expanded = expand_keywords(["Kebap", "kebab", ""])
        self.assertEqual(expanded[0], "kebap")
        self.assertEqual(len(expanded), len(set(expanded)))
        self.assertLessEqual(len(expanded), 6)


class DispatchTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.gateway = FakeGateway()
        self.executor = ToolExecutor(self.gateway)
        self.collectors = SideCollectors()

    async def test_unknown_tool(self) -> None:
        result = await self.executor.execute("order_pizza", "{}", make_context(), self.collectors)
        self.assertEqual(result, UNKNOWN_TOOL)
        self.assertEqual(self.gateway.rpc_calls, [])

    async def test_malformed_json(self) -> None:
        result = await self.executor.execute("search_food", "{keywords: kebap", make_context(), self.collectors)
        self.assertEqual(result, INVALID_ARGUMENTS)
        self.assertEqual(self.gateway.rpc_calls, [])

    async def test_schema_violation(self) -> None:
        result = await self.executor.execute("search_food", {"keywords": []}, make_context(), self.collectors)
        self.assertEqual(result, INVALID_ARGUMENTS)

        result = await self.executor.execute(
            "save_preference", {"preference_type": "horoscope", "value": "x"}, make_context(), self.collectors,
        )
        self.assertEqual(result, INVALID_ARGUMENTS)
        self.assertEqual(self.gateway.rpc_calls, [])

    async def test_empty_arguments_for_no_arg_tool(self) -> None:
        self.gateway.rpc_results["ai_get_order_status"] = {"has_active_order": False}
        result = await self.executor.execute("get_order_status", "", make_context(), self.collectors)
        self.assertIn("aktif siparişi bulunmuyor", result)

    async def test_gateway_error_becomes_neutral_text(self) -> None:
        self.gateway.rpc_results["ai_get_order_status"] = GatewayResult(data=None, error="timeout")
        with self.assertLogs("app.services.ai.tools.executor", level="WARNING"):
            result = await self.executor.execute("get_order_status", "{}", make_context(), self.collectors)
        self.assertIn("şu an alınamıyor", result)


class AddToCartTests(unittest.IsolatedAsyncioTestCase):
    async def test_missing_merchant_is_refused(self) -> None:
        collectors = SideCollectors()
        args = {k: v for k, v in CART_ARGS.items() if k != "merchant_id"}
        result = await ToolExecutor(FakeGateway()).execute("add_to_cart", args, make_context(), collectors)
        self.assertEqual(result, TOOL_SPECS["add_to_cart"].refusal)
        self.assertEqual(collectors.actions, [])
        self.assertEqual(collectors.cart_mutations, [])

    async def test_blank_merchant_is_refused(self) -> None:
        collectors = SideCollectors()
        args = dict(CART_ARGS, merchant_id="  ")
        result = await ToolExecutor(FakeGateway()).execute("add_to_cart", args, make_context(), collectors)
        self.assertEqual(result, TOOL_SPECS["add_to_cart"].refusal)
        self.assertEqual(collectors.actions, [])

    async def test_valid_item_adds_action(self) -> None:
        collectors = SideCollectors()
        args = dict(CART_ARGS, quantity=2)
        result = await ToolExecutor(FakeGateway()).execute("add_to_cart", args, make_context(), collectors)
        self.assertIn("sepete eklendi", result)
        self.assertEqual(len(collectors.actions), 1)
        action = collectors.actions[0]
        self.assertEqual(action.type, ActionType.ADD_TO_CART)
        self.assertEqual(action.payload["merchant_id"], "m1")
        self.assertEqual(action.payload["quantity"], 2)
        self.assertEqual(collectors.cart_mutations[0]["name"], "Adana Kebap")


class CancelOrderTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.gateway = FakeGateway(rpc_results={
            "ai_check_cancel_eligibility": {"can_cancel": True, "order_number": "1042"},
            "ai_cancel_order": {"success": True, "order_number": "1042"},
        })
        self.executor = ToolExecutor(self.gateway)

    async def test_check_phase_sets_pending_confirmation(self) -> None:
        collectors = SideCollectors()
        result = await self.executor.execute("cancel_order", {"confirmed": False}, make_context(), collectors)
        self.assertIn("İPTAL EDİLEBİLİR", result)
        self.assertEqual(collectors.pending_confirmation["tool"], "cancel_order")
        self.assertEqual(collectors.pending_confirmation["arguments"], {})
        self.assertIn("created_at", collectors.pending_confirmation)
        self.assertNotIn("ai_cancel_order", self.gateway.rpc_names())

    async def test_ineligible_order_sets_nothing(self) -> None:
        self.gateway.rpc_results["ai_check_cancel_eligibility"] = {"can_cancel": False, "reason": "already_confirmed"}
        collectors = SideCollectors()
        result = await self.executor.execute("cancel_order", {"confirmed": False}, make_context(), collectors)
        self.assertIn("İPTAL EDİLEMEZ", result)
        self.assertIsNone(collectors.pending_confirmation)

    async def test_confirm_phase_cancels_once(self) -> None:
        collectors = SideCollectors()
        result = await self.executor.execute("cancel_order", {"confirmed": True}, make_context(), collectors)
        self.assertIn("İPTAL BAŞARILI", result)
        self.assertEqual(self.gateway.rpc_names().count("ai_cancel_order"), 1)
        self.assertEqual(dict(self.gateway.rpc_calls)["ai_cancel_order"], {"p_user_id": "u1", "p_order_id": None})


class SearchFoodTests(unittest.IsolatedAsyncioTestCase):
    @staticmethod
    def restaurants(params):
        query = params["p_search_query"]
        return {"restaurants": [
            {
                "merchant_id": "m1",
                "business_name": "Halil Usta",
                "rating": 4.2,
                "matching_items": [
                    {"id": "p1", "name": "Adana Kebap", "price": 250, "discounted_price": 220},
                    {"id": f"p-{query}", "name": f"{query.title()} Dürüm", "price": 150},
                ],
            },
            {
                "merchant_id": "m2",
                "business_name": "Ocakbaşı",
                "rating": 4.8,
                "matching_items": [{"id": "p9", "name": "Urfa Kebap", "price": 240}],
            },
        ]}

    async def test_results_are_merged_and_ranked(self) -> None:
        gateway = FakeGateway(rpc_results={
            "ai_search_restaurants": self.restaurants,
            "ai_search_store_products": [],
        })
        collectors = SideCollectors()
        result = await ToolExecutor(gateway).execute(
            "search_food", {"keywords": ["kebap"]}, make_context(), collectors,
        )

        self.assertLess(result.index("Ocakbaşı"), result.index("Halil Usta"))
        searched = [params["p_search_query"] for name, params in gateway.rpc_calls if name == "ai_search_restaurants"]
        self.assertEqual(searched, expand_keywords(["kebap"]))
        self.assertEqual(dict(gateway.rpc_calls)["ai_search_restaurants"]["p_customer_lat"], 35.18)

        merchants = [card["merchant_id"] for card in collectors.product_cards]
        self.assertEqual(merchants[0], "m2")
        halil = [card for card in collectors.product_cards if card["merchant_id"] == "m1"]
        self.assertLessEqual(len(halil), 4)
        self.assertEqual(len({card["product_id"] for card in halil}), len(halil))

        adana = next(card for card in halil if card["product_id"] == "p1")
        self.assertEqual(adana["price"], 220)
        self.assertEqual(adana["original_price"], 250)
        self.assertEqual(adana["merchant_name"], "Halil Usta")
        self.assertEqual(adana["merchant_type"], "restaurant")
        self.assertEqual(len(collectors.search_snapshot), len(collectors.product_cards))

    async def test_store_results_default_to_store_type(self) -> None:
        gateway = FakeGateway(rpc_results={
            "ai_search_restaurants": [],
            "ai_search_store_products": [
                {"merchant_id": "s1", "business_name": "Market", "matching_items": [{"id": "w1", "name": "Su"}]},
            ],
        })
        collectors = SideCollectors()
        await ToolExecutor(gateway).execute("search_food", {"keywords": ["su"]}, make_context(), collectors)
        self.assertEqual(collectors.product_cards[0]["merchant_type"], "store")

    async def test_location_lookup_when_address_unknown(self) -> None:
        gateway = FakeGateway(
            rpc_results={"ai_search_restaurants": [], "ai_search_store_products": []},
            tables={"user_addresses": [{"user_id": "u1", "is_default": True, "latitude": 1.0, "longitude": 2.0}]},
        )
        context = make_context(user_address=None)
        result = await ToolExecutor(gateway).execute("search_food", {"keywords": ["pilav"]}, context, SideCollectors())
        self.assertIn("Sonuç bulunamadı", result)
        self.assertEqual(context.user_address["latitude"], 1.0)
        self.assertEqual(dict(gateway.rpc_calls)["ai_search_restaurants"]["p_customer_lon"], 2.0)

    async def test_searches_run_concurrently(self) -> None:
        gateway = SlowGateway(0.1, rpc_results={
            "ai_search_restaurants": self.restaurants,
            "ai_search_store_products": [],
        })
        loop = asyncio.get_running_loop()
        started = loop.time()
        await ToolExecutor(gateway).execute("search_food", {"keywords": ["kebap"]}, make_context(), SideCollectors())
        elapsed = loop.time() - started

        calls = len(gateway.rpc_calls)
        self.assertEqual(calls, 2 * len(expand_keywords(["kebap"])))
        self.assertEqual(gateway.peak_in_flight, calls)
        self.assertLess(elapsed, 0.1 * 2)

    async def test_every_search_failing(self) -> None:
        failed = GatewayResult(data=None, error="down")
        gateway = FakeGateway(rpc_results={"ai_search_restaurants": failed, "ai_search_store_products": failed})
        collectors = SideCollectors()
        result = await ToolExecutor(gateway).execute("search_food", {"keywords": ["pilav"]}, make_context(), collectors)
        self.assertIn("Arama şu an yapılamıyor", result)
        self.assertEqual(collectors.product_cards, [])


class RentalAndTaxiTests(unittest.IsolatedAsyncioTestCase):
    async def test_rental_cards_are_capped(self) -> None:
        cars = [{"car_id": f"c{i}", "brand": "Fiat", "model": "Egea", "daily_price": 900} for i in range(12)]
        gateway = FakeGateway(rpc_results={"ai_search_rental_cars": {"cars": cars}})
        collectors = SideCollectors()
        await ToolExecutor(gateway).execute(
            "search_rental_cars", {"category": "economy", "city": ""}, make_context(), collectors,
        )
        self.assertEqual(len(collectors.rental_cards), MAX_RENTAL_CARDS)
        self.assertEqual(dict(gateway.rpc_calls)["ai_search_rental_cars"], {"p_category": "economy"})

    async def test_taxi_request_two_phases(self) -> None:
        gateway = FakeGateway(rpc_results={
            "ai_check_taxi_request_eligibility": {"can_request": True, "estimated_fare": 180},
            "ai_request_taxi": {"success": True, "ride_number": "T7"},
        })
        executor = ToolExecutor(gateway)

        check = SideCollectors()
        text = await executor.execute("request_taxi", {"destination": "Havalimanı"}, make_context(), check)
        self.assertIn("Havalimanı", text)
        self.assertEqual(check.pending_confirmation["tool"], "request_taxi")
        self.assertEqual(check.pending_confirmation["arguments"], {"destination": "Havalimanı"})
        self.assertNotIn("ai_request_taxi", gateway.rpc_names())

        confirm = SideCollectors()
        text = await executor.execute(
            "request_taxi", {"destination": "Havalimanı", "confirmed": True}, make_context(), confirm,
        )
        self.assertIn("#T7", text)
        params = dict(gateway.rpc_calls)["ai_request_taxi"]
        self.assertEqual(params["p_vehicle_type"], "standard")
        self.assertEqual(params["p_pickup_lat"], 35.18)

    async def test_save_preference(self) -> None:
        gateway = FakeGateway(rpc_results={"ai_save_food_preference": {"success": True}})
        text = await ToolExecutor(gateway).execute(
            "save_preference", {"preference_type": "allergy", "value": "fıstık"}, make_context(), SideCollectors(),
        )
        self.assertIn("Tercih kaydedildi", text)
        self.assertEqual(dict(gateway.rpc_calls)["ai_save_food_preference"]["p_value"], "fıstık")


if __name__ == "__main__":
    unittest.main()
