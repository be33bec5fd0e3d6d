"""
LLM Client - chat completion boundary

Non-streaming completions (including tool calling) go through the Groq SDK.
Streaming completions are read as raw SSE over httpx so partial frames can be
buffered across network chunks.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from groq import AsyncGroq

from app.config.settings import settings
from app.core.ai.types import CompletionResult, ToolCall
from app.services.ai.sse import SSELineBuffer, delta_text, usage_tokens

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Upstream completion call failed"""


@dataclass
class StreamDelta:
    text: str = ""
    total_tokens: Optional[int] = None


class LLMClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        timeout: Optional[float] = None,
        groq_client: Optional[AsyncGroq] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key or settings.GROQ_API_KEY
        self.model = model or settings.GROQ_MODEL or "llama-3.3-70b-versatile"
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS
        self.temperature = settings.LLM_TEMPERATURE if temperature is None else temperature
        self.timeout = timeout or settings.LLM_TIMEOUT_SECONDS
        self._groq = groq_client
        self._http = http_client

    @property
    def groq(self) -> AsyncGroq:
        if self._groq is None:
            if not self.api_key:
                raise LLMError("GROQ_API_KEY is not configured")
            self._groq = AsyncGroq(api_key=self.api_key, timeout=self.timeout)
        return self._groq

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout)
        return self._http

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> CompletionResult:
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
        }
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"

        try:
            response = await self.groq.chat.completions.create(**params)
        except LLMError:
            raise
        except Exception as e:
            logger.error(f"Groq completion failed: {e}")
            raise LLMError("AI service error") from e

        if not response.choices:
            raise LLMError("AI service returned no choices")

        message = response.choices[0].message
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=call.function.arguments or "{}",
            )
            for call in (message.tool_calls or [])
        ]
        usage = getattr(response, "usage", None)
        return CompletionResult(
            content=message.content or "",
            tool_calls=tool_calls,
            total_tokens=(usage.total_tokens or 0) if usage else 0,
        )

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[StreamDelta]:
        """Yield text deltas, and a final usage-only delta when the provider reports it."""
        if not self.api_key:
            raise LLMError("GROQ_API_KEY is not configured")

        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
            "stream": True,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        buffer = SSELineBuffer()

        try:
            async with self.http.stream(
                "POST", f"{self.base_url}/chat/completions", json=payload, headers=headers
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    logger.error(f"LLM stream error {response.status_code}: {body[:500]!r}")
                    raise LLMError("AI service error")

                async for text in response.aiter_text():
                    for frame in buffer.feed(text):
                        delta = self._to_delta(frame)
                        if delta is not None:
                            yield delta

            for frame in buffer.flush():
                delta = self._to_delta(frame)
                if delta is not None:
                    yield delta
        except httpx.HTTPError as e:
            logger.error(f"LLM stream transport error: {e}")
            raise LLMError("AI service error") from e

    @staticmethod
    def _to_delta(frame: Dict[str, Any]) -> Optional[StreamDelta]:
        text = delta_text(frame)
        tokens = usage_tokens(frame)
        if not text and tokens is None:
            return None
        return StreamDelta(text=text, total_tokens=tokens)

    async def aclose(self):
        if self._http is not None:
            await self._http.aclose()
