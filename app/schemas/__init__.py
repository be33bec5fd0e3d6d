"""
Schemas package for the super-app assistant backend.

- chat: chat, TTS and order-chat request/response models
"""

from app.schemas.chat import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    OrderChatRequest,
    OrderChatResponse,
    ScreenContextSchema,
    TTSRequest,
    TTSResponse,
)

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "ErrorResponse",
    "OrderChatRequest",
    "OrderChatResponse",
    "ScreenContextSchema",
    "TTSRequest",
    "TTSResponse",
]
