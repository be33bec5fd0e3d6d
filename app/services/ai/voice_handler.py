"""
VoiceHandler: text-to-speech for assistant replies.

Two uses:
- inline audio on a chat turn (``generate_audio``): short input, fast model,
  failures swallowed so the text reply still goes out
- the standalone TTS endpoint: longer input, HD model, failures reported
"""
from __future__ import annotations

import base64
import logging
import re
from typing import Optional

import httpx

from app.config.settings import settings

logger = logging.getLogger(__name__)

INLINE_MAX_CHARS = 500
STANDALONE_MAX_CHARS = 4096
AUDIO_FORMAT = "mp3"

_EMOJI_PATTERN = re.compile(
    "["
    "\U0001F600-\U0001F6FF"
    "\u2600-\u27BF"
    "\U0001F300-\U0001F5FF"
    "\U0001F900-\U0001F9FF"
    "\U0001FA00-\U0001FA6F"
    "\U0001FA70-\U0001FAFF"
    "]"
)
_BRACKET_TAG_PATTERN = re.compile(r"\[.*?\]")
_MARKDOWN_PATTERN = re.compile(r"[*_~`#]+")
_WHITESPACE_PATTERN = re.compile(r"\s+")


class TTSError(Exception):
    """Speech synthesis failed"""


def clean_text_for_speech(text: Optional[str]) -> str:
    """Drop emoji, bracketed tags and markdown markers; collapse whitespace."""
    cleaned = _EMOJI_PATTERN.sub("", text or "")
    cleaned = _BRACKET_TAG_PATTERN.sub("", cleaned)
    cleaned = _MARKDOWN_PATTERN.sub("", cleaned)
    return _WHITESPACE_PATTERN.sub(" ", cleaned).strip()


class VoiceHandler:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.base_url = (base_url or settings.TTS_BASE_URL).rstrip("/")
        self._http = http_client

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=30.0)
        return self._http

    async def synthesize(
        self,
        text: str,
        *,
        voice: Optional[str] = None,
        model: Optional[str] = None,
        speed: float = 1.0,
    ) -> bytes:
        """Raw MP3 bytes for already-cleaned text."""
        if not self.api_key:
            raise TTSError("OPENAI_API_KEY is not configured")

        try:
            response = await self.http.post(
                f"{self.base_url}/audio/speech",
                headers={"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
                json={
                    "model": model or settings.TTS_MODEL,
                    "voice": voice or settings.TTS_VOICE,
                    "input": text,
                    "response_format": AUDIO_FORMAT,
                    "speed": speed,
                },
            )
        except httpx.HTTPError as e:
            raise TTSError(f"TTS request failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"TTS error {response.status_code}: {response.text[:300]}")
            raise TTSError("TTS generation failed")
        return response.content

    async def inline_audio(self, reply: str) -> Optional[str]:
        """Base64 audio for a chat reply, or None when anything goes wrong."""
        cleaned = clean_text_for_speech(reply)
        if not cleaned:
            return None
        try:
            audio = await self.synthesize(cleaned[:INLINE_MAX_CHARS], model=settings.TTS_MODEL, speed=1.1)
        except TTSError as e:
            logger.warning(f"Inline TTS skipped: {e}")
            return None
        return base64.b64encode(audio).decode("ascii")

    async def text_to_speech(self, text: str, voice: Optional[str] = None) -> str:
        """
        Base64 audio for the standalone endpoint.

        Raises ValueError when nothing speakable remains, TTSError on upstream failure.
        """
        cleaned = clean_text_for_speech(text)
        if not cleaned:
            raise ValueError("No speakable text")
        audio = await self.synthesize(
            cleaned[:STANDALONE_MAX_CHARS],
            voice=voice,
            model=settings.TTS_HD_MODEL,
            speed=1.0,
        )
        return base64.b64encode(audio).decode("ascii")

    async def aclose(self):
        if self._http is not None:
            await self._http.aclose()
