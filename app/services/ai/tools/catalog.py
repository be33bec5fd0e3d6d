"""
Tool catalog exposed to the LLM

Each entry is the function schema sent with ``tools=`` plus whether the tool
mutates state. Mutating tools follow the two-phase ``confirmed`` protocol.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

RENTAL_CATEGORIES = ["economy", "compact", "midsize", "suv", "luxury", "van"]
TRANSMISSIONS = ["automatic", "manual"]
FUEL_TYPES = ["gasoline", "diesel", "hybrid", "electric", "lpg"]
BODY_TYPES = ["sedan", "hatchback", "suv", "station_wagon", "coupe", "pickup", "minivan"]
PREFERENCE_TYPES = [
    "allergy",
    "dietary_restriction",
    "favorite_cuisine",
    "disliked_ingredient",
    "spice_level",
    "budget_range",
]
MERCHANT_TYPES = ["restaurant", "store", "market"]
TAXI_VEHICLE_TYPES = ["standard", "comfort", "premium", "xl"]
JOB_TYPES = ["full_time", "part_time", "contract", "internship", "remote"]

_NO_ARGS: Dict[str, Any] = {"type": "object", "properties": {}}

_CONFIRMED = {
    "type": "boolean",
    "description": "false: sadece uygunluk kontrolü yap ve kullanıcıdan onay iste. "
                   "true: kullanıcı son mesajında açıkça onayladıysa işlemi gerçekleştir.",
}


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: Dict[str, Any]
    mutating: bool = False
    # Returned instead of the generic message when arguments fail validation
    refusal: Optional[str] = None

    def to_openai(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


_SPECS: List[ToolSpec] = [
    ToolSpec(
        name="search_food",
        description="Restoran, mağaza ve marketlerde yemek/ürün arar. Ürün, fiyat veya restoran hakkında "
                    "bilgi vermeden önce MUTLAKA bu aracı çağır.",
        parameters={
            "type": "object",
            "properties": {
                "keywords": {
                    "type": "array",
                    "items": {"type": "string", "minLength": 1},
                    "minItems": 1,
                    "description": "Aranacak yemek/ürün adları, ör: [\"kebap\", \"lahmacun\"]",
                },
            },
            "required": ["keywords"],
        },
    ),
    ToolSpec(
        name="get_recommendations",
        description="Kullanıcının tercihleri, sipariş geçmişi ve öğün saatine göre kişisel yemek önerisi bilgilerini getirir.",
        parameters=_NO_ARGS,
    ),
    ToolSpec(
        name="get_order_status",
        description="Kullanıcının aktif siparişinin durumunu, kurye bilgisini ve tahmini varış süresini getirir.",
        parameters=_NO_ARGS,
    ),
    ToolSpec(
        name="cancel_order",
        description="Aktif siparişi iptal eder. Önce confirmed=false ile uygunluk kontrol edilir; "
                    "kullanıcı onaylarsa confirmed=true ile iptal edilir.",
        parameters={
            "type": "object",
            "properties": {"confirmed": _CONFIRMED},
            "required": ["confirmed"],
        },
        mutating=True,
    ),
    ToolSpec(
        name="save_preference",
        description="Kullanıcının yemek tercihini (alerji, diyet, sevdiği mutfak vb.) kaydeder.",
        parameters={
            "type": "object",
            "properties": {
                "preference_type": {"type": "string", "enum": PREFERENCE_TYPES},
                "value": {"type": "string", "minLength": 1},
            },
            "required": ["preference_type", "value"],
        },
    ),
    ToolSpec(
        name="search_rental_cars",
        description="Kiralık araç arar.",
        parameters={
            "type": "object",
            "properties": {
                "category": {"type": "string", "enum": RENTAL_CATEGORIES},
                "transmission": {"type": "string", "enum": TRANSMISSIONS},
                "fuel_type": {"type": "string", "enum": FUEL_TYPES},
                "max_daily_price": {"type": "number", "minimum": 0},
                "brand": {"type": "string"},
                "city": {"type": "string"},
                "pickup_date": {"type": "string", "description": "YYYY-MM-DD"},
                "dropoff_date": {"type": "string", "description": "YYYY-MM-DD"},
            },
        },
    ),
    ToolSpec(
        name="get_rental_booking_status",
        description="Kullanıcının aktif araç kiralama rezervasyonunun durumunu getirir.",
        parameters=_NO_ARGS,
    ),
    ToolSpec(
        name="add_to_cart",
        description="Ürünü sepete ekler. SADECE arama sonuçlarında veya ekranda gösterilen gerçek ürün "
                    "bilgileriyle çağır; her farklı ürün için ayrı çağrı yap.",
        parameters={
            "type": "object",
            "properties": {
                "product_id": {"type": "string"},
                "name": {"type": "string"},
                "price": {"type": "number", "minimum": 0},
                "merchant_id": {"type": "string"},
                "merchant_name": {"type": "string"},
                "merchant_type": {"type": "string", "enum": MERCHANT_TYPES},
                "image_url": {"type": "string"},
                "quantity": {"type": "integer", "minimum": 1},
            },
            "required": ["product_id", "name", "price", "merchant_id", "merchant_name", "merchant_type"],
        },
        refusal="Ürün sepete eklenemedi: ürün bilgileri eksik. Önce search_food ile ürünü bul ve "
                "sonuçtaki bilgileri kullan.",
    ),
    ToolSpec(
        name="search_car_listings",
        description="Satılık araç ilanlarını arar.",
        parameters={
            "type": "object",
            "properties": {
                "brand": {"type": "string"},
                "model": {"type": "string"},
                "min_year": {"type": "integer"},
                "max_price": {"type": "number", "minimum": 0},
                "fuel_type": {"type": "string", "enum": FUEL_TYPES},
                "transmission": {"type": "string", "enum": TRANSMISSIONS},
                "body_type": {"type": "string", "enum": BODY_TYPES},
                "city": {"type": "string"},
            },
        },
    ),
    ToolSpec(
        name="search_jobs",
        description="İş ilanlarını arar.",
        parameters={
            "type": "object",
            "properties": {
                "keyword": {"type": "string"},
                "city": {"type": "string"},
                "job_type": {"type": "string", "enum": JOB_TYPES},
                "category": {"type": "string"},
                "min_salary": {"type": "number", "minimum": 0},
            },
        },
    ),
    ToolSpec(
        name="get_taxi_fare_estimate",
        description="Taksi araç tiplerine göre tahmini ücret bilgisini getirir.",
        parameters={
            "type": "object",
            "properties": {"vehicle_type": {"type": "string", "enum": TAXI_VEHICLE_TYPES}},
        },
    ),
    ToolSpec(
        name="get_taxi_ride_status",
        description="Kullanıcının aktif taksi yolculuğunun durumunu getirir.",
        parameters=_NO_ARGS,
    ),
    ToolSpec(
        name="cancel_taxi_ride",
        description="Aktif taksi yolculuğunu iptal eder. Önce confirmed=false ile kontrol, onay gelirse confirmed=true.",
        parameters={
            "type": "object",
            "properties": {"confirmed": _CONFIRMED},
            "required": ["confirmed"],
        },
        mutating=True,
    ),
    ToolSpec(
        name="request_taxi",
        description="Kullanıcının varsayılan adresinden taksi çağırır. Önce confirmed=false ile ücret ve "
                    "uygunluk kontrol edilir; kullanıcı onaylarsa confirmed=true ile çağrılır.",
        parameters={
            "type": "object",
            "properties": {
                "destination": {"type": "string", "minLength": 1},
                "vehicle_type": {"type": "string", "enum": TAXI_VEHICLE_TYPES},
                "confirmed": _CONFIRMED,
            },
            "required": ["destination"],
        },
        mutating=True,
    ),
    ToolSpec(
        name="get_taxi_ride_history",
        description="Kullanıcının geçmiş taksi yolculuklarını getirir.",
        parameters=_NO_ARGS,
    ),
]

TOOL_SPECS: Dict[str, ToolSpec] = {spec.name: spec for spec in _SPECS}

MUTATING_TOOLS = frozenset(spec.name for spec in _SPECS if spec.mutating)


def tool_definitions() -> List[Dict[str, Any]]:
    """The ``tools`` payload for a chat-completion request."""
    return [spec.to_openai() for spec in _SPECS]
