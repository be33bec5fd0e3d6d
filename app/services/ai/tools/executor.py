"""
Tool Executor - runs one LLM-requested tool call

Dispatch goes through a name -> handler table that must cover the whole
catalog. Arguments are JSON-decoded and validated against the tool schema
before the handler runs. Handlers return prompt-ready text and push
structured output (actions, product/rental cards, cart records) into the
turn's SideCollectors.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import jsonschema

from app.core.ai.types import Action, SideCollectors, ToolContext
from app.services.data_gateway import DataGateway, GatewayResult
from app.services.ai import context_formatter as fmt
from app.services.ai.parallel_fetch import run_batch
from app.services.ai.tools.catalog import TOOL_SPECS, ToolSpec

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any], ToolContext, SideCollectors], Awaitable[str]]

MAX_SEARCH_KEYWORDS = 6
MAX_CARD_MERCHANTS = 5
MAX_ITEMS_PER_MERCHANT = 4
MAX_RENTAL_CARDS = 8

INVALID_ARGUMENTS = "Bu işlem için verilen bilgiler geçersiz. Kullanıcıdan eksik bilgiyi iste."
UNKNOWN_TOOL = "Bu işlem şu an desteklenmiyor."
SERVICE_UNAVAILABLE = "{what} şu an alınamıyor. Kullanıcıya kısa bir süre sonra tekrar denemesini öner."

# Keyword -> related search terms tried alongside it
SEARCH_SYNONYMS: Dict[str, List[str]] = {
    "kebap": ["kebab", "adana", "urfa", "iskender"],
    "kebab": ["kebap"],
    "döner": ["dürüm"],
    "dürüm": ["döner", "wrap"],
    "burger": ["hamburger"],
    "hamburger": ["burger"],
    "pizza": ["pide"],
    "tatlı": ["künefe", "baklava", "sütlaç"],
    "tavuk": ["kanat", "tavuklu"],
    "balık": ["levrek", "çupra", "hamsi"],
    "çorba": ["mercimek"],
    "kahve": ["latte", "americano"],
    "su": ["içme suyu", "maden suyu"],
    "ekmek": ["tost ekmeği"],
}


class ToolArgumentError(ValueError):
    pass


def parse_arguments(arguments: Union[str, Dict[str, Any], None]) -> Dict[str, Any]:
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, dict):
        return dict(arguments)
    try:
        parsed = json.loads(arguments)
    except ValueError as e:
        raise ToolArgumentError(f"arguments are not valid JSON: {e}") from e
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ToolArgumentError("arguments must be a JSON object")
    return parsed


def validate_arguments(spec: ToolSpec, arguments: Dict[str, Any]) -> Optional[str]:
    """Validation error message, or None when the arguments fit the schema."""
    try:
        jsonschema.validate(instance=arguments, schema=spec.parameters)
    except jsonschema.ValidationError as exc:
        return exc.message
    return None


def expand_keywords(keywords: List[str]) -> List[str]:
    expanded: List[str] = []
    for keyword in keywords:
        base = (keyword or "").strip().lower()
        if not base:
            continue
        for term in [base] + SEARCH_SYNONYMS.get(base, []):
            if term not in expanded:
                expanded.append(term)
    return expanded[:MAX_SEARCH_KEYWORDS]


def _compact(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None and v != ""}


def _rows(data: Any, *keys: str) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        return [row for row in data if isinstance(row, dict)]
    if isinstance(data, dict):
        for key in keys:
            value = data.get(key)
            if isinstance(value, list):
                return [row for row in value if isinstance(row, dict)]
    return []


def _rating(merchant: Dict[str, Any]) -> float:
    try:
        return float(merchant.get("rating") or 0)
    except (TypeError, ValueError):
        return 0.0


class ToolExecutor:
    def __init__(self, gateway: DataGateway):
        self.gateway = gateway
        self._handlers: Dict[str, Handler] = {
            "search_food": self._search_food,
            "get_recommendations": self._get_recommendations,
            "get_order_status": self._get_order_status,
            "cancel_order": self._cancel_order,
            "save_preference": self._save_preference,
            "search_rental_cars": self._search_rental_cars,
            "get_rental_booking_status": self._get_rental_booking_status,
            "search_car_listings": self._search_car_listings,
            "search_jobs": self._search_jobs,
            "add_to_cart": self._add_to_cart,
            "get_taxi_fare_estimate": self._get_taxi_fare_estimate,
            "get_taxi_ride_status": self._get_taxi_ride_status,
            "cancel_taxi_ride": self._cancel_taxi_ride,
            "request_taxi": self._request_taxi,
            "get_taxi_ride_history": self._get_taxi_ride_history,
        }
        uncovered = set(TOOL_SPECS) ^ set(self._handlers)
        if uncovered:
            raise RuntimeError(f"Tool handlers out of sync with catalog: {sorted(uncovered)}")

    async def execute(
        self,
        name: str,
        arguments: Union[str, Dict[str, Any], None],
        context: ToolContext,
        collectors: SideCollectors,
    ) -> str:
        spec = TOOL_SPECS.get(name)
        if spec is None:
            logger.warning("LLM requested unknown tool %s", name)
            return UNKNOWN_TOOL

        try:
            args = parse_arguments(arguments)
        except ToolArgumentError as e:
            logger.warning("Tool %s: %s", name, e)
            return spec.refusal or INVALID_ARGUMENTS

        error = validate_arguments(spec, args)
        if error:
            logger.warning("Tool %s rejected arguments %s: %s", name, args, error)
            return spec.refusal or INVALID_ARGUMENTS

        logger.info("Executing tool %s for session %s", name, context.session_id)
        return await self._handlers[name](args, context, collectors)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    async def _customer_location(self, context: ToolContext) -> Tuple[Optional[float], Optional[float]]:
        if context.user_address is None:
            result = await self.gateway.select(
                "user_addresses",
                "latitude, longitude",
                filters={"user_id": context.user_id, "is_default": True},
                first=True,
            )
            context.user_address = result.data or {}
        address = context.user_address or {}
        return address.get("latitude"), address.get("longitude")

    @staticmethod
    def _request_confirmation(collectors: SideCollectors, tool: str, args: Dict[str, Any]):
        collectors.pending_confirmation = {
            "tool": tool,
            "arguments": {k: v for k, v in args.items() if k != "confirmed"},
            "created_at": datetime.now(timezone.utc).isoformat(),
        }

    def _unavailable(self, what: str, result: GatewayResult, tool: str) -> str:
        logger.warning("Tool %s gateway error: %s", tool, result.error)
        return SERVICE_UNAVAILABLE.format(what=what)

    # ------------------------------------------------------------------
    # food
    # ------------------------------------------------------------------

    async def _search_food(self, args: Dict[str, Any], context: ToolContext, collectors: SideCollectors) -> str:
        keywords = expand_keywords(args.get("keywords") or [])
        if not keywords:
            return INVALID_ARGUMENTS

        lat, lon = await self._customer_location(context)
        location = _compact({"p_customer_lat": lat, "p_customer_lon": lon})

        calls = {}
        for keyword in keywords:
            params = {"p_search_query": keyword, **location}
            calls[f"restaurant:{keyword}"] = self.gateway.rpc("ai_search_restaurants", params)
            calls[f"store:{keyword}"] = self.gateway.rpc("ai_search_store_products", params)
        results = await run_batch(calls)

        if all(not r.ok for r in results.values()):
            logger.warning("search_food: every search call failed for %s", keywords)
            return "Arama şu an yapılamıyor. Kullanıcıya biraz sonra tekrar denemesini öner."

        merchants: Dict[str, Dict[str, Any]] = {}
        for name, result in results.items():
            if not result.ok:
                continue
            default_type = "restaurant" if name.startswith("restaurant:") else "store"
            for row in _rows(result.data, "restaurants", "stores", "merchants"):
                merchant_id = row.get("merchant_id")
                if not merchant_id:
                    continue
                existing = merchants.get(merchant_id)
                if existing is None:
                    merchants[merchant_id] = {
                        **row,
                        "merchant_type": row.get("merchant_type") or default_type,
                        "matching_items": list(row.get("matching_items") or []),
                    }
                    continue
                seen = {item.get("id") or item.get("name") for item in existing["matching_items"]}
                for item in row.get("matching_items") or []:
                    key = item.get("id") or item.get("name")
                    if key not in seen:
                        existing["matching_items"].append(item)
                        seen.add(key)

        ranked = sorted(merchants.values(), key=_rating, reverse=True)
        self._collect_product_cards(ranked, collectors)

        return fmt.format_restaurant_search({
            "search_query": ", ".join(args.get("keywords") or []),
            "result_count": len(ranked),
            "restaurants": ranked,
        })

    @staticmethod
    def _collect_product_cards(merchants: List[Dict[str, Any]], collectors: SideCollectors):
        for merchant in merchants[:MAX_CARD_MERCHANTS]:
            for item in (merchant.get("matching_items") or [])[:MAX_ITEMS_PER_MERCHANT]:
                product_id = item.get("id") or item.get("product_id")
                if not product_id:
                    continue
                price = item.get("discounted_price") or item.get("price")
                snapshot = {
                    "product_id": str(product_id),
                    "name": item.get("name") or "",
                    "price": price,
                    "merchant_id": str(merchant["merchant_id"]),
                    "merchant_name": merchant.get("business_name") or "",
                    "merchant_type": merchant.get("merchant_type") or "restaurant",
                    "image_url": item.get("image_url") or "",
                }
                collectors.search_snapshot.append(snapshot)
                collectors.product_cards.append({
                    **snapshot,
                    "original_price": item.get("price") if item.get("discounted_price") else None,
                    "description": (item.get("description") or "")[:120],
                    "merchant_rating": merchant.get("rating"),
                    "delivery_time": merchant.get("delivery_time"),
                    "is_open": merchant.get("is_open", True),
                })

    async def _get_recommendations(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        results = await run_batch({
            "recommendation": self.gateway.rpc("ai_get_food_recommendations", {"p_user_id": context.user_id}),
            "promotions": self.gateway.rpc("ai_get_user_promotions", {"p_user_id": context.user_id}),
        })
        recommendation = results["recommendation"]
        if not recommendation.ok or not recommendation.data:
            return self._unavailable("Öneri bilgileri", recommendation, "get_recommendations")

        blocks = [fmt.format_food_recommendation(recommendation.data)]
        promotions = results["promotions"]
        if promotions.ok:
            blocks.append(fmt.format_promotions(promotions.data))
        return "\n\n".join(b for b in blocks if b)

    async def _save_preference(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        result = await self.gateway.rpc("ai_save_food_preference", {
            "p_user_id": context.user_id,
            "p_preference_type": args["preference_type"],
            "p_value": args["value"],
        })
        if not result.ok:
            return self._unavailable("Tercih kaydı", result, "save_preference")
        return fmt.format_preference_saved(result.data if isinstance(result.data, dict) else None,
                                           args["preference_type"], args["value"])

    async def _add_to_cart(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        required = ("product_id", "name", "price", "merchant_id")
        if any(args.get(field) in (None, "") for field in required) or not str(args.get("merchant_id")).strip():
            logger.info("add_to_cart refused, missing fields: %s", args)
            return TOOL_SPECS["add_to_cart"].refusal

        quantity = max(1, int(args.get("quantity") or 1))
        action = Action.add_to_cart(
            product_id=str(args["product_id"]),
            name=args["name"],
            price=args["price"],
            merchant_id=str(args["merchant_id"]),
            merchant_name=args.get("merchant_name") or "",
            merchant_type=args.get("merchant_type") or "restaurant",
            quantity=quantity,
            image_url=args.get("image_url") or "",
        )
        collectors.actions.append(action)
        collectors.cart_mutations.append(dict(action.payload))
        merchant = f" ({args['merchant_name']})" if args.get("merchant_name") else ""
        return f"✅ {quantity} x {args['name']}{merchant} sepete eklendi. Kullanıcıya kısaca bildir."

    # ------------------------------------------------------------------
    # orders
    # ------------------------------------------------------------------

    async def _get_order_status(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        result = await self.gateway.rpc("ai_get_order_status", {"p_user_id": context.user_id})
        if not result.ok:
            return self._unavailable("Sipariş durumu", result, "get_order_status")
        return fmt.format_order_status(result.data)

    async def _cancel_order(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        if not args.get("confirmed"):
            result = await self.gateway.rpc("ai_check_cancel_eligibility", {"p_user_id": context.user_id})
            if not result.ok or not result.data:
                return self._unavailable("İptal uygunluk bilgisi", result, "cancel_order")
            if result.data.get("can_cancel"):
                self._request_confirmation(collectors, "cancel_order", args)
            return fmt.format_cancel_result(result.data, was_confirmed=False)

        result = await self.gateway.rpc("ai_cancel_order", {"p_user_id": context.user_id, "p_order_id": None})
        if not result.ok or not result.data:
            logger.error("ai_cancel_order failed for user %s: %s", context.user_id, result.error)
            return "İptal işlemi şu an gerçekleştirilemedi. Kullanıcıya müşteri hizmetleriyle iletişime geçmesini öner."
        return fmt.format_cancel_result(result.data, was_confirmed=True)

    # ------------------------------------------------------------------
    # rental cars, car sales, jobs
    # ------------------------------------------------------------------

    async def _search_rental_cars(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        result = await self.gateway.rpc("ai_search_rental_cars", _compact({
            "p_category": args.get("category"),
            "p_transmission": args.get("transmission"),
            "p_fuel_type": args.get("fuel_type"),
            "p_max_daily_price": args.get("max_daily_price"),
            "p_brand": args.get("brand"),
            "p_city": args.get("city"),
            "p_pickup_date": args.get("pickup_date"),
            "p_dropoff_date": args.get("dropoff_date"),
        }))
        if not result.ok:
            return self._unavailable("Kiralık araç bilgileri", result, "search_rental_cars")

        cars = _rows(result.data, "cars")
        for car in cars:
            if len(collectors.rental_cards) >= MAX_RENTAL_CARDS:
                break
            collectors.rental_cards.append({
                "car_id": car.get("car_id") or car.get("id"),
                "brand": car.get("brand"),
                "model": car.get("model"),
                "year": car.get("year"),
                "category": car.get("category"),
                "transmission": car.get("transmission"),
                "fuel_type": car.get("fuel_type"),
                "daily_price": car.get("daily_price"),
                "seats": car.get("seats"),
                "company_name": car.get("company_name"),
                "city": car.get("city"),
                "image_url": car.get("image_url") or "",
                "rating": car.get("rating"),
            })
        data = result.data if isinstance(result.data, dict) else {"cars": cars}
        return fmt.format_rental_search(data)

    async def _get_rental_booking_status(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        result = await self.gateway.rpc("ai_get_rental_booking_status", {"p_user_id": context.user_id})
        if not result.ok:
            return self._unavailable("Rezervasyon bilgisi", result, "get_rental_booking_status")
        return fmt.format_rental_booking_status(result.data)

    async def _search_car_listings(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        result = await self.gateway.rpc("ai_search_car_listings", _compact({
            "p_brand": args.get("brand"),
            "p_model": args.get("model"),
            "p_min_year": args.get("min_year"),
            "p_max_price": args.get("max_price"),
            "p_fuel_type": args.get("fuel_type"),
            "p_transmission": args.get("transmission"),
            "p_body_type": args.get("body_type"),
            "p_city": args.get("city"),
        }))
        if not result.ok:
            return self._unavailable("Araç ilanları", result, "search_car_listings")
        data = result.data if isinstance(result.data, dict) else {"listings": _rows(result.data)}
        return fmt.format_car_listings(data)

    async def _search_jobs(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        result = await self.gateway.rpc("ai_search_jobs", _compact({
            "p_keyword": args.get("keyword"),
            "p_city": args.get("city"),
            "p_job_type": args.get("job_type"),
            "p_category": args.get("category"),
            "p_min_salary": args.get("min_salary"),
        }))
        if not result.ok:
            return self._unavailable("İş ilanları", result, "search_jobs")
        data = result.data if isinstance(result.data, dict) else {"jobs": _rows(result.data)}
        return fmt.format_job_listings(data)

    # ------------------------------------------------------------------
    # taxi
    # ------------------------------------------------------------------

    async def _get_taxi_fare_estimate(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        result = await self.gateway.rpc("ai_get_taxi_fare_estimate", _compact({
            "p_user_id": context.user_id,
            "p_vehicle_type": args.get("vehicle_type"),
        }))
        if not result.ok:
            return self._unavailable("Taksi ücret bilgisi", result, "get_taxi_fare_estimate")
        return fmt.format_taxi_fare(result.data)

    async def _get_taxi_ride_status(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        result = await self.gateway.rpc("ai_get_taxi_ride_status", {"p_user_id": context.user_id})
        if not result.ok:
            return self._unavailable("Taksi durumu", result, "get_taxi_ride_status")
        return fmt.format_taxi_ride_status(result.data)

    async def _cancel_taxi_ride(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        if not args.get("confirmed"):
            result = await self.gateway.rpc("ai_check_taxi_cancel_eligibility", {"p_user_id": context.user_id})
            if not result.ok or not result.data:
                return self._unavailable("İptal uygunluk bilgisi", result, "cancel_taxi_ride")
            if result.data.get("can_cancel"):
                self._request_confirmation(collectors, "cancel_taxi_ride", args)
            return fmt.format_taxi_cancel(result.data, was_confirmed=False)

        result = await self.gateway.rpc("ai_cancel_taxi_ride", {"p_user_id": context.user_id, "p_ride_id": None})
        if not result.ok or not result.data:
            logger.error("ai_cancel_taxi_ride failed for user %s: %s", context.user_id, result.error)
            return "Taksi iptali şu an gerçekleştirilemedi. Kullanıcıya uygulamadan tekrar denemesini öner."
        return fmt.format_taxi_cancel(result.data, was_confirmed=True)

    async def _request_taxi(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        params = _compact({
            "p_user_id": context.user_id,
            "p_destination": args["destination"],
            "p_vehicle_type": args.get("vehicle_type") or "standard",
        })

        if not args.get("confirmed"):
            result = await self.gateway.rpc("ai_check_taxi_request_eligibility", params)
            if not result.ok or not result.data:
                return self._unavailable("Taksi ön kontrolü", result, "request_taxi")
            if result.data.get("can_request"):
                self._request_confirmation(collectors, "request_taxi", args)
            return fmt.format_taxi_request(
                {"destination": args["destination"], "vehicle_type": params["p_vehicle_type"], **result.data},
                was_confirmed=False,
            )

        lat, lon = await self._customer_location(context)
        result = await self.gateway.rpc(
            "ai_request_taxi",
            {**params, **_compact({"p_pickup_lat": lat, "p_pickup_lon": lon})},
        )
        if not result.ok or not result.data:
            logger.error("ai_request_taxi failed for user %s: %s", context.user_id, result.error)
            return "Taksi şu an çağrılamadı. Kullanıcıya biraz sonra tekrar denemesini öner."
        return fmt.format_taxi_request(
            {"vehicle_type": params["p_vehicle_type"], **result.data},
            was_confirmed=True,
        )

    async def _get_taxi_ride_history(self, args, context: ToolContext, collectors: SideCollectors) -> str:
        result = await self.gateway.rpc("ai_get_taxi_ride_history", {"p_user_id": context.user_id, "p_limit": 10})
        if not result.ok:
            return self._unavailable("Taksi geçmişi", result, "get_taxi_ride_history")
        data = result.data if isinstance(result.data, dict) else {"rides": _rows(result.data)}
        return fmt.format_taxi_history(data)
