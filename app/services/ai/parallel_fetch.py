"""
Parallel Fetch Scheduler

Runs a named set of independent fetches concurrently and maps every
outcome, success or failure, back to its name. One failing fetch never
cancels or blocks its siblings.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, Mapping, Optional

from app.core.ai.types import AppSource, ScreenContext
from app.services.data_gateway import DataGateway, GatewayResult
from app.services.ai.keyword_classifier import IntentFlags

logger = logging.getLogger(__name__)

DEFAULT_COMMISSION_RATE = 15.0
KNOWLEDGE_BASE_FETCH_LIMIT = 15


async def run_batch(named: Mapping[str, Awaitable[Any]]) -> Dict[str, GatewayResult]:
    """All-settled join. Rejections become ``GatewayResult(data=None, error=reason)``."""
    names = list(named.keys())
    outcomes = await asyncio.gather(*named.values(), return_exceptions=True)

    results: Dict[str, GatewayResult] = {}
    for name, outcome in zip(names, outcomes):
        if isinstance(outcome, BaseException):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            logger.error("Fetch %s failed: %s", name, outcome)
            results[name] = GatewayResult(data=None, error=str(outcome) or type(outcome).__name__)
        elif isinstance(outcome, GatewayResult):
            results[name] = outcome
        else:
            results[name] = GatewayResult(data=outcome)
    return results


async def fetch_merchant_info(gateway: DataGateway, user_id: str) -> GatewayResult:
    """Merchant row plus its platform commission rate (sequential: rate depends on merchant type)."""
    merchant = await gateway.select(
        "merchants",
        "id, business_name, type, is_active, created_at",
        filters={"user_id": user_id},
        first=True,
    )
    if not merchant.ok or not merchant.data:
        return merchant

    service_type = "restaurant" if merchant.data.get("type") == "restaurant" else "store"
    commission = await gateway.select(
        "platform_commissions",
        "platform_commission_rate",
        filters={"service_type": service_type, "is_active": True},
        first=True,
    )
    rate = DEFAULT_COMMISSION_RATE
    if commission.ok and commission.data and commission.data.get("platform_commission_rate") is not None:
        try:
            rate = float(commission.data["platform_commission_rate"])
        except (TypeError, ValueError):
            logger.warning("Unparseable commission rate: %r", commission.data["platform_commission_rate"])

    return GatewayResult(data={**merchant.data, "commission_rate": rate})


def plan_turn_fetches(
    *,
    gateway: DataGateway,
    session_store: Any,
    scratch_store: Any,
    user_id: str,
    session_id: str,
    message: str,
    app_source: AppSource,
    flags: IntentFlags,
    screen_context: Optional[ScreenContext] = None,
    history_limit: int = 8,
) -> Dict[str, Awaitable[Any]]:
    """Named fetches for one turn, gated by intent flags and app source."""
    is_customer = app_source.is_customer_facing
    needs_food_rec = is_customer and (flags.is_food_query or flags.is_preference_update)
    needs_search = is_customer and (flags.is_restaurant_search_query or flags.food_keywords is not None)

    fetches: Dict[str, Awaitable[Any]] = {
        "system_prompt": gateway.select(
            "ai_system_prompts",
            "system_prompt, restrictions",
            filters={"app_source": app_source.value, "is_active": True},
            first=True,
        ),
        "knowledge_base": gateway.select(
            "ai_knowledge_base",
            "question, answer, category",
            filters={"is_active": True},
            or_filter=f"app_source.eq.{app_source.value},app_source.eq.all",
            order=("priority", True),
            limit=KNOWLEDGE_BASE_FETCH_LIMIT,
        ),
        "history": session_store.recent_history(session_id, limit=history_limit),
        "save_user_message": session_store.save_message(session_id, "user", message),
        "scratch": scratch_store.load(session_id),
    }

    if is_customer and flags.is_order_query:
        fetches["order_status"] = gateway.rpc("ai_get_order_status", {"p_user_id": user_id})

    if needs_food_rec:
        fetches["food_recommendation"] = gateway.rpc("ai_get_food_recommendations", {"p_user_id": user_id})
        fetches["promotions"] = gateway.rpc("ai_get_user_promotions", {"p_user_id": user_id})

    if (
        app_source == AppSource.SUPER_APP
        and screen_context is not None
        and screen_context.entity_id
        and screen_context.is_detail_screen
    ):
        fetches["merchant_products"] = gateway.rpc(
            "ai_search_merchant_products",
            {
                "p_merchant_id": screen_context.entity_id,
                "p_search_query": message if len(message) > 2 else None,
                "p_merchant_type": screen_context.entity_type or "restaurant",
            },
        )

    if app_source == AppSource.MERCHANT_PANEL:
        fetches["merchant_data"] = fetch_merchant_info(gateway, user_id)

    if is_customer and (needs_search or flags.is_food_query):
        fetches["user_address"] = gateway.select(
            "user_addresses",
            "latitude, longitude",
            filters={"user_id": user_id, "is_default": True},
            first=True,
        )

    if is_customer and (needs_search or needs_food_rec):
        fetches["user_allergies"] = gateway.select(
            "user_food_preferences",
            "allergies",
            filters={"user_id": user_id},
            first=True,
        )

    return fetches
