"""
Server-sent event helpers

``format_event`` renders outbound frames. ``SSELineBuffer`` decodes an
upstream OpenAI-style stream whose network chunks may split a ``data:``
line anywhere; the incomplete tail is held until the next read.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def format_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False, default=str)}\n\n"


class SSELineBuffer:
    def __init__(self):
        self._buffer = ""

    def feed(self, text: str) -> List[Dict[str, Any]]:
        """Append a chunk and return the JSON payloads of every completed line."""
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        payloads = []
        for line in lines:
            payload = self._parse_line(line)
            if payload is not None:
                payloads.append(payload)
        return payloads

    def flush(self) -> List[Dict[str, Any]]:
        """Parse whatever remains once the upstream stream has ended."""
        remaining, self._buffer = self._buffer, ""
        payload = self._parse_line(remaining)
        return [payload] if payload is not None else []

    @property
    def pending(self) -> str:
        return self._buffer

    @staticmethod
    def _parse_line(line: str) -> Optional[Dict[str, Any]]:
        trimmed = line.strip()
        if not trimmed.startswith("data:"):
            return None
        data = trimmed[5:].strip()
        if not data or data == DONE_SENTINEL:
            return None
        try:
            parsed = json.loads(data)
        except ValueError:
            logger.debug("Skipping malformed SSE frame: %.80s", data)
            return None
        return parsed if isinstance(parsed, dict) else None


def delta_text(payload: Dict[str, Any]) -> str:
    choices = payload.get("choices") or []
    if not choices:
        return ""
    delta = (choices[0] or {}).get("delta") or {}
    return delta.get("content") or ""


def usage_tokens(payload: Dict[str, Any]) -> Optional[int]:
    """Total tokens from an OpenAI ``usage`` block or Groq's ``x_groq.usage``."""
    usage = payload.get("usage") or (payload.get("x_groq") or {}).get("usage")
    if not usage:
        return None
    return int(usage.get("total_tokens") or 0)
