"""Chat request/response schemas."""
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field

from app.core.ai.types import AppSource, ScreenContext


class ScreenContextSchema(BaseModel):
    """Screen the user was on when sending the message."""
    screen_type: str
    entity_id: Optional[str] = None
    entity_name: Optional[str] = None
    entity_type: Optional[str] = None  # restaurant, store, market

    def to_domain(self) -> ScreenContext:
        return ScreenContext(
            screen_type=self.screen_type,
            entity_id=self.entity_id,
            entity_name=self.entity_name,
            entity_type=self.entity_type,
        )


class ChatRequest(BaseModel):
    """Chat request from a client app."""
    message: str = Field(..., min_length=1)
    app_source: AppSource
    session_id: Optional[str] = None
    user_type: str = "customer"
    screen_context: Optional[ScreenContextSchema] = None
    generate_audio: bool = False
    stream: bool = False


class ActionSchema(BaseModel):
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class ChatResponse(BaseModel):
    """Non-streaming chat response."""
    success: bool = True
    session_id: str
    message: str
    tokens_used: int = 0
    actions: Optional[List[ActionSchema]] = None
    search_results: Optional[List[Dict[str, Any]]] = None
    rental_results: Optional[List[Dict[str, Any]]] = None
    audio: Optional[str] = None
    audio_format: Optional[str] = None


class TTSRequest(BaseModel):
    text: Optional[str] = None
    voice: str = "nova"


class TTSResponse(BaseModel):
    success: bool = True
    audio: str
    format: str = "mp3"


class OrderChatRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class OrderChatResponse(BaseModel):
    success: bool = True
    customer_message: Optional[Dict[str, Any]] = None
    ai_response: Optional[Dict[str, Any]] = None
    ai_responded: bool = False
    messages: List[Dict[str, Any]] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
