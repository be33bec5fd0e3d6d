"""
Order Chat Handler

Answers a customer's question about one order in the merchant's voice,
using live order status and the assigned courier's distance.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from app.services.data_gateway import DataGateway
from app.services.ai.llm_client import LLMClient, LLMError
from app.utils.geo import coordinates, estimate_arrival_minutes, haversine_km

logger = logging.getLogger(__name__)

MESSAGES_TABLE = "order_messages"
HISTORY_LIMIT = 10
MAX_TOKENS = 300
TEMPERATURE = 0.7
AI_CONFIDENCE = 0.85

ORDER_STATUS_TEXTS = {
    "pending": "Onay Bekliyor",
    "confirmed": "Onaylandı",
    "preparing": "Hazırlanıyor",
    "ready": "Hazır - Kurye Bekleniyor",
    "picked_up": "Kurye Teslim Aldı",
    "on_the_way": "Yolda",
    "delivering": "Teslim Ediliyor",
    "delivered": "Teslim Edildi",
    "cancelled": "İptal Edildi",
}


class OrderChatError(Exception):
    """Request cannot be served (unknown order, not the caller's order)"""


def describe_courier(
    courier: Optional[Dict[str, Any]],
    distance_km: Optional[float],
    eta_minutes: Optional[int],
) -> str:
    if not courier:
        return "Henüz atanmadı"
    text = courier.get("full_name") or "Kurye"
    if distance_km is not None and eta_minutes is not None:
        text += f" ({distance_km:.1f} km uzaklıkta, tahmini {eta_minutes} dakika)"
    elif coordinates(courier.get("current_latitude"), courier.get("current_longitude")):
        text += " (mesafe hesaplanamadı - teslimat konumu eksik)"
    return text


def build_order_prompt(
    order: Dict[str, Any],
    merchant_name: str,
    courier_info: str,
    distance_km: Optional[float],
    eta_minutes: Optional[int],
) -> str:
    status = order.get("status") or ""
    lines = [
        "Sen bir restoran asistanısın ve restoran adına müşteri sorularını yanıtlıyorsun.",
        "ÖNEMLİ: Mesajın başına herhangi bir etiket (AI, asistan vs.) EKLEME. Direkt cevabı yaz.",
        "",
        f"Restoran: {merchant_name}",
        f"Sipariş No: {order.get('order_number') or '-'}",
        f"Durum: {ORDER_STATUS_TEXTS.get(status, status)}",
        f"Kurye: {courier_info}",
    ]
    if distance_km is not None:
        lines.append(f"Kurye Mesafesi: {distance_km:.1f} km")
    if eta_minutes is not None:
        lines.append(f"Tahmini Varış: {eta_minutes} dakika")
    lines += [
        "",
        "Kurallar:",
        "1. Kısa ve net yanıt ver (1-3 cümle)",
        "2. Sipariş durumuna göre bilgi ver",
        "3. Eğer kurye atandıysa ve mesafe bilgisi varsa, gerçek mesafe ve tahmini süreyi kullan",
        "4. Samimi ama profesyonel ol",
        "5. Bilmediğin konularda \"Restoranımız size kısa sürede dönüş yapacaktır\" de",
        "6. Türkçe yanıt ver",
    ]
    return "\n".join(lines)


class OrderChatHandler:
    def __init__(self, gateway: DataGateway, llm: LLMClient):
        self.gateway = gateway
        self.llm = llm

    async def handle(self, user_id: str, order_id: str, message: str) -> Dict[str, Any]:
        order_result = await self.gateway.select(
            "orders",
            "id, user_id, merchant_id, courier_id, status, order_number, "
            "delivery_latitude, delivery_longitude, delivery_address",
            filters={"id": order_id, "user_id": user_id},
            first=True,
        )
        order = order_result.data if order_result.ok else None
        if not order:
            raise OrderChatError("Order not found or unauthorized")

        merchant_result = await self.gateway.select(
            "merchants", "id, business_name", filters={"id": order.get("merchant_id")}, first=True
        )
        merchant_name = (merchant_result.data or {}).get("business_name") or "Restoran"

        courier, distance_km, eta_minutes = await self._courier_position(order)

        customer_message = await self.gateway.insert(
            MESSAGES_TABLE,
            {
                "order_id": order_id,
                "merchant_id": order.get("merchant_id"),
                "sender_type": "customer",
                "sender_id": user_id,
                "sender_name": "Müşteri",
                "message": message,
                "is_ai_response": False,
            },
            first=True,
        )

        history = await self.gateway.select(
            MESSAGES_TABLE,
            "sender_type, message, is_ai_response",
            filters={"order_id": order_id},
            order=("created_at", True),
            limit=HISTORY_LIMIT,
        )
        # newest first from the query; the prompt wants oldest first
        recent = list(reversed(history.data or []))

        messages: List[Dict[str, Any]] = [{
            "role": "system",
            "content": build_order_prompt(
                order, merchant_name, describe_courier(courier, distance_km, eta_minutes), distance_km, eta_minutes
            ),
        }]
        for row in recent:
            role = "user" if row.get("sender_type") == "customer" else "assistant"
            messages.append({"role": role, "content": row.get("message") or ""})

        ai_text: Optional[str] = None
        try:
            completion = await self.llm.complete(messages, max_tokens=MAX_TOKENS, temperature=TEMPERATURE)
            ai_text = completion.content or None
        except LLMError as e:
            logger.warning(f"Order chat answer skipped for order {order_id}: {e}")

        ai_record = None
        if ai_text:
            saved = await self.gateway.insert(
                MESSAGES_TABLE,
                {
                    "order_id": order_id,
                    "merchant_id": order.get("merchant_id"),
                    "sender_type": "merchant",
                    "sender_id": None,
                    "sender_name": f"🤖 {merchant_name} (AI Asistan)",
                    "message": ai_text,
                    "is_ai_response": True,
                    "ai_confidence": AI_CONFIDENCE,
                },
                first=True,
            )
            ai_record = saved.data

        all_messages = await self.gateway.select(
            MESSAGES_TABLE, filters={"order_id": order_id}, order=("created_at", False)
        )
        return {
            "success": True,
            "customer_message": customer_message.data,
            "ai_response": ai_record,
            "ai_responded": bool(ai_text),
            "messages": all_messages.data or [],
        }

    async def _courier_position(self, order: Dict[str, Any]):
        if not order.get("courier_id"):
            return None, None, None

        courier_result = await self.gateway.select(
            "couriers",
            "id, full_name, current_latitude, current_longitude",
            filters={"id": order["courier_id"]},
            first=True,
        )
        courier = courier_result.data if courier_result.ok else None
        if not courier:
            return None, None, None

        origin = coordinates(courier.get("current_latitude"), courier.get("current_longitude"))
        target = coordinates(order.get("delivery_latitude"), order.get("delivery_longitude"))
        if origin is None or target is None:
            return courier, None, None

        distance_km = haversine_km(origin[0], origin[1], target[0], target[1])
        return courier, distance_km, estimate_arrival_minutes(distance_km)
