"""
Shared types for AI services
"""
from __future__ import annotations

from typing import Dict, Any, Optional, List
from enum import Enum
from dataclasses import dataclass, field


class AppSource(str, Enum):
    """Client application that opened the conversation"""
    SUPER_APP = "super_app"
    CUSTOMER_APP = "customer_app"
    MERCHANT_PANEL = "merchant_panel"
    COURIER_APP = "courier_app"
    DRIVER_APP = "driver_app"
    ADMIN_PANEL = "admin_panel"

    @property
    def is_customer_facing(self) -> bool:
        return self in (AppSource.SUPER_APP, AppSource.CUSTOMER_APP)


class ActionType(str, Enum):
    NAVIGATE = "navigate"
    ADD_TO_CART = "add_to_cart"


@dataclass
class Action:
    """UI instruction returned to the client alongside the reply"""
    type: ActionType
    payload: Dict[str, Any]

    @classmethod
    def navigate(cls, route: str) -> "Action":
        return cls(type=ActionType.NAVIGATE, payload={"route": route})

    @classmethod
    def add_to_cart(
        cls,
        product_id: str,
        name: str,
        price: float,
        merchant_id: str,
        merchant_name: str = "",
        merchant_type: str = "restaurant",
        quantity: int = 1,
        image_url: str = "",
    ) -> "Action":
        return cls(
            type=ActionType.ADD_TO_CART,
            payload={
                "product_id": product_id,
                "name": name,
                "price": price,
                "image_url": image_url or "",
                "merchant_id": merchant_id,
                "merchant_name": merchant_name or "",
                "merchant_type": merchant_type or "restaurant",
                "quantity": quantity,
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "payload": dict(self.payload)}


@dataclass
class ScreenContext:
    """Screen the user was looking at when the message was sent"""
    screen_type: str
    entity_id: Optional[str] = None
    entity_name: Optional[str] = None
    entity_type: Optional[str] = None  # restaurant, store, market

    @property
    def is_detail_screen(self) -> bool:
        return bool(self.screen_type) and self.screen_type.endswith("_detail")


@dataclass
class AuthenticatedUser:
    id: str
    email: Optional[str] = None


@dataclass
class ToolCall:
    """One function call proposed by the model"""
    id: str
    name: str
    arguments: str = "{}"

    def to_message_entry(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments or "{}"},
        }


@dataclass
class CompletionResult:
    """Normalised chat-completion response"""
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    total_tokens: int = 0


@dataclass
class SideCollectors:
    """Structured output gathered while tools run, emitted next to the reply"""
    actions: List[Action] = field(default_factory=list)
    product_cards: List[Dict[str, Any]] = field(default_factory=list)
    rental_cards: List[Dict[str, Any]] = field(default_factory=list)
    search_snapshot: List[Dict[str, Any]] = field(default_factory=list)
    cart_mutations: List[Dict[str, Any]] = field(default_factory=list)
    pending_confirmation: Optional[Dict[str, Any]] = None


@dataclass
class ScratchContext:
    """Per-session carry-over state between turns"""
    last_search_context: List[Dict[str, Any]] = field(default_factory=list)
    last_cart_context: List[Dict[str, Any]] = field(default_factory=list)
    pending_confirmation: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "last_search_context": self.last_search_context,
            "last_cart_context": self.last_cart_context,
            "pending_confirmation": self.pending_confirmation,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScratchContext":
        data = data or {}
        return cls(
            last_search_context=list(data.get("last_search_context") or []),
            last_cart_context=list(data.get("last_cart_context") or []),
            pending_confirmation=data.get("pending_confirmation"),
        )

    def is_empty(self) -> bool:
        return not (self.last_search_context or self.last_cart_context or self.pending_confirmation)


@dataclass
class ToolContext:
    """Per-turn facts the tool handlers need"""
    user_id: str
    session_id: str
    app_source: AppSource
    message: str
    user_address: Optional[Dict[str, Any]] = None
    screen_context: Optional[ScreenContext] = None

