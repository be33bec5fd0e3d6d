"""Assistant endpoints: chat turn, standalone TTS and order chat."""
from typing import Any
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from app.core.ai.types import AuthenticatedUser
from app.core.dependencies import (
    get_current_user,
    get_order_chat_handler,
    get_response_emitter,
    get_voice_handler,
)
from app.schemas.chat import (
    ChatRequest,
    ChatResponse,
    OrderChatRequest,
    OrderChatResponse,
    TTSRequest,
    TTSResponse,
)
from app.services.ai.order_chat_handler import OrderChatError, OrderChatHandler
from app.services.ai.orchestrator import ChatServiceError, ChatTurnRequest
from app.services.ai.response_emitter import ResponseEmitter
from app.services.ai.voice_handler import TTSError, VoiceHandler

logger = logging.getLogger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(
    request: ChatRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    emitter: ResponseEmitter = Depends(get_response_emitter),
) -> Any:
    """
    Run one assistant turn.

    With `stream=true` the reply is delivered as server-sent events
    (`session`, `search_results`, `rental_results`, `chunk`, `actions`, `done`
    or `error`). Audio needs the full text, so `generate_audio` forces the
    JSON response.
    """
    turn = ChatTurnRequest(
        user_id=current_user.id,
        message=request.message,
        app_source=request.app_source,
        session_id=request.session_id,
        user_type=request.user_type,
        screen_context=request.screen_context.to_domain() if request.screen_context else None,
        generate_audio=request.generate_audio,
        stream=request.stream and not request.generate_audio,
    )
    logger.info(f"Chat turn from {turn.app_source.value} user={current_user.id} stream={turn.stream}")

    if turn.stream:
        return StreamingResponse(
            emitter.stream_events(turn),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )
    return await emitter.respond_json(turn)


@router.post("/tts", response_model=TTSResponse)
async def text_to_speech(
    request: TTSRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    voice: VoiceHandler = Depends(get_voice_handler),
) -> Any:
    """Synthesize speech for arbitrary text (mp3, base64)."""
    if not request.text:
        raise ChatServiceError("Text is required")
    try:
        audio = await voice.text_to_speech(request.text, request.voice)
    except ValueError:
        raise ChatServiceError("No speakable text")
    except TTSError as e:
        logger.error(f"TTS failed for user {current_user.id}: {e}")
        raise ChatServiceError("TTS generation failed")
    return TTSResponse(audio=audio)


@router.post("/order-chat", response_model=OrderChatResponse)
async def order_chat(
    request: OrderChatRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    handler: OrderChatHandler = Depends(get_order_chat_handler),
) -> Any:
    """Answer a customer's question about one of their orders in the merchant's voice."""
    try:
        return await handler.handle(current_user.id, request.order_id, request.message)
    except OrderChatError as e:
        raise ChatServiceError(str(e))
