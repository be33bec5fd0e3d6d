"""
Response Emitter

Renders a finished turn either as one JSON body or as an SSE event stream:

    session -> search_results? -> rental_results? -> chunk* -> actions? -> done
    (or session -> ... -> error)

Persistence of the assistant message and scratch context happens once the
full reply text is known, detached from the response.
"""
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from app.services.ai.llm_client import LLMError
from app.services.ai.orchestrator import (
    AI_SERVICE_ERROR,
    EMPTY_REPLY,
    GENERIC_ERROR,
    ChatOrchestrator,
    ChatServiceError,
    ChatTurnRequest,
    PreparedTurn,
)
from app.services.ai.sse import format_event
from app.services.ai.voice_handler import VoiceHandler

logger = logging.getLogger(__name__)

MAX_CARDS = 8


def card_payload(turn: PreparedTurn) -> Dict[str, Any]:
    """Cards and actions shared by the JSON body and the SSE events."""
    collectors = turn.collectors
    payload: Dict[str, Any] = {}
    if collectors.product_cards:
        payload["search_results"] = collectors.product_cards[:MAX_CARDS]
    if collectors.rental_cards:
        payload["rental_results"] = collectors.rental_cards[:MAX_CARDS]
    if collectors.actions:
        payload["actions"] = [action.to_dict() for action in collectors.actions]
    return payload


class ResponseEmitter:
    def __init__(self, orchestrator: ChatOrchestrator, voice: Optional[VoiceHandler] = None):
        self.orchestrator = orchestrator
        self.voice = voice

    async def respond_json(self, request: ChatTurnRequest) -> Dict[str, Any]:
        """
        Run the whole turn and return the JSON body.

        ChatServiceError propagates to the route, which maps it to a 400.
        """
        session_id = await self.orchestrator.open_session(request)
        turn = await self.orchestrator.prepare(request, session_id)
        message = await self.orchestrator.finalize(turn)

        body: Dict[str, Any] = {
            "success": True,
            "session_id": session_id,
            "message": message,
            "tokens_used": turn.tokens_used,
        }
        body.update(card_payload(turn))

        if request.generate_audio and self.voice is not None:
            audio = await self.voice.inline_audio(message)
            if audio:
                body["audio"] = audio
                body["audio_format"] = "mp3"

        self.orchestrator.persist(turn, message)
        return body

    async def stream_events(self, request: ChatTurnRequest) -> AsyncIterator[str]:
        """SSE frames for one turn; failures end the stream with an ``error`` event."""
        try:
            session_id = await self.orchestrator.open_session(request)
        except ChatServiceError as e:
            yield format_event("error", {"error": e.message})
            return

        yield format_event("session", {"session_id": session_id})

        try:
            turn = await self.orchestrator.prepare(request, session_id)

            collectors = turn.collectors
            if collectors.product_cards:
                yield format_event("search_results", {"products": collectors.product_cards[:MAX_CARDS]})
            if collectors.rental_cards:
                yield format_event("rental_results", {"cars": collectors.rental_cards[:MAX_CARDS]})

            parts: List[str] = []
            async for delta in self.orchestrator.finalize_stream(turn):
                if delta.text:
                    parts.append(delta.text)
                    yield format_event("chunk", {"text": delta.text})

            message = "".join(parts) or EMPTY_REPLY
            if collectors.actions:
                yield format_event("actions", {"actions": [a.to_dict() for a in collectors.actions]})
            yield format_event("done", {"message": message, "tokens_used": turn.tokens_used})
        except (ChatServiceError, LLMError) as e:
            logger.error(f"Streaming turn failed for session {session_id}: {e}")
            yield format_event("error", {"error": AI_SERVICE_ERROR})
            return
        except Exception as e:
            logger.error(f"Unexpected streaming error for session {session_id}: {e}", exc_info=True)
            yield format_event("error", {"error": GENERIC_ERROR})
            return

        self.orchestrator.persist(turn, message)
