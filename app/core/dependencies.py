"""FastAPI dependency providers for the chat API."""
from functools import lru_cache
from typing import Any, Optional
import logging

from fastapi import Depends, Header

from app.config.database import get_supabase_service_client
from app.core.ai.types import AuthenticatedUser
from app.core.supabase_auth import get_current_supabase_user
from app.services.data_gateway import DataGateway
from app.services.ai.llm_client import LLMClient
from app.services.ai.order_chat_handler import OrderChatHandler
from app.services.ai.orchestrator import ChatOrchestrator
from app.services.ai.response_emitter import ResponseEmitter
from app.services.ai.scratch_store import create_scratch_store
from app.services.ai.session_store import BackgroundWriter
from app.services.ai.voice_handler import VoiceHandler

logger = logging.getLogger(__name__)


def get_supabase_client() -> Any:
    return get_supabase_service_client()


def get_data_gateway(supabase=Depends(get_supabase_client)) -> DataGateway:
    return DataGateway(supabase)


async def get_current_user(
    authorization: Optional[str] = Header(None),
    gateway: DataGateway = Depends(get_data_gateway),
) -> AuthenticatedUser:
    """
    Get current authenticated user from the Supabase bearer token.
    Missing or invalid tokens end the request with a 401 before any other work.
    """
    return await get_current_supabase_user(authorization, gateway)


# Process-wide clients; connection pools are reused across requests.

@lru_cache()
def get_llm_client() -> LLMClient:
    return LLMClient()


@lru_cache()
def get_voice_handler() -> VoiceHandler:
    return VoiceHandler()


@lru_cache()
def get_scratch_store():
    return create_scratch_store()


@lru_cache()
def get_background_writer() -> BackgroundWriter:
    return BackgroundWriter()


def get_chat_orchestrator(
    gateway: DataGateway = Depends(get_data_gateway),
    llm: LLMClient = Depends(get_llm_client),
    scratch_store=Depends(get_scratch_store),
    writer: BackgroundWriter = Depends(get_background_writer),
) -> ChatOrchestrator:
    return ChatOrchestrator(gateway=gateway, llm=llm, scratch_store=scratch_store, writer=writer)


def get_response_emitter(
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
    voice: VoiceHandler = Depends(get_voice_handler),
) -> ResponseEmitter:
    return ResponseEmitter(orchestrator, voice)


def get_order_chat_handler(
    gateway: DataGateway = Depends(get_data_gateway),
    llm: LLMClient = Depends(get_llm_client),
) -> OrderChatHandler:
    return OrderChatHandler(gateway, llm)
