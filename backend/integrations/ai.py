"""
AI generation collaborator for the ai_* actions.

``ClaudeProvider`` talks to the Anthropic Messages API over httpx.
``extract_json`` recovers a JSON value from model output that may be
wrapped in prose or markdown fences.
"""

import json
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
import structlog

from app.config import Settings, get_settings
from core.exceptions import IntegrationError

logger = structlog.get_logger(__name__)


# ─── Smart JSON Extractor ──────────────────────────────────────

def extract_json(text: str) -> Any:
    """Extract clean JSON from a model response that may contain markdown or prose.

    Tries multiple strategies in order:
    1. Direct JSON parse (fastest path)
    2. Strip markdown code fences (```json ... ```)
    3. Find first { ... } or [ ... ] block via bracket balancing
    4. Regex fallback for simple objects

    Returns parsed JSON object or raises ValueError.
    """
    if not text or not text.strip():
        raise ValueError("Empty response")

    clean = text.strip()

    # Strategy 1: Direct parse
    try:
        return json.loads(clean)
    except json.JSONDecodeError:
        pass

    # Strategy 2: Markdown code fences
    fence = re.search(r"```(?:json|JSON)?\s*\n?(.*?)```", clean, re.DOTALL)
    if fence:
        try:
            return json.loads(fence.group(1).strip())
        except json.JSONDecodeError:
            pass

    # Strategy 3: Bracket-balanced extraction
    for opener, closer in (("{", "}"), ("[", "]")):
        candidate = _balanced_block(clean, opener, closer)
        if candidate is None:
            continue
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue

    # Strategy 4: Simple flat object
    simple_obj = re.search(r"\{[^{}]+\}", clean)
    if simple_obj:
        try:
            return json.loads(simple_obj.group())
        except json.JSONDecodeError:
            pass

    raise ValueError(f"Could not extract JSON from response: {clean[:200]}")


def _balanced_block(text: str, opener: str, closer: str) -> Optional[str]:
    start = text.find(opener)
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape_next = False
    for i in range(start, len(text)):
        c = text[i]
        if escape_next:
            escape_next = False
            continue
        if c == "\\":
            escape_next = True
            continue
        if c == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if c == opener:
            depth += 1
        elif c == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


# ─── Provider port ─────────────────────────────────────────────

class AIProvider(ABC):
    """Call boundary for text generation."""

    @property
    @abstractmethod
    def is_configured(self) -> bool: ...

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        """Plain text completion for one prompt."""

    async def generate_structured(self, prompt: str) -> Any:
        """Completion parsed as JSON."""
        text = await self.generate(
            prompt,
            system="Respond with valid JSON only. Do not wrap it in prose.",
        )
        try:
            return extract_json(text)
        except ValueError as e:
            raise IntegrationError(str(e), provider="ai") from e


class ClaudeProvider(AIProvider):
    """Anthropic Messages API over httpx."""

    API_BASE = "https://api.anthropic.com/v1"
    API_VERSION = "2023-06-01"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.ANTHROPIC_API_KEY)

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        if not self.is_configured:
            raise IntegrationError("AI provider API key not configured", provider="anthropic")

        settings = self.settings
        payload: dict[str, Any] = {
            "model": settings.CLAUDE_MODEL,
            "max_tokens": max_tokens or settings.CLAUDE_MAX_TOKENS,
            "temperature": settings.CLAUDE_TEMPERATURE,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            payload["system"] = system

        start_time = time.monotonic()
        try:
            async with httpx.AsyncClient(
                base_url=self.API_BASE,
                headers={
                    "x-api-key": settings.ANTHROPIC_API_KEY,
                    "anthropic-version": self.API_VERSION,
                    "content-type": "application/json",
                },
                timeout=float(settings.CLAUDE_TIMEOUT),
                transport=self._transport,
            ) as client:
                response = await client.post("/messages", json=payload)
        except httpx.TimeoutException as e:
            raise IntegrationError("AI request timed out", provider="anthropic") from e
        except httpx.HTTPError as e:
            raise IntegrationError(f"AI request failed: {e}", provider="anthropic") from e

        duration_ms = (time.monotonic() - start_time) * 1000
        if response.status_code != 200:
            logger.error("Claude API error", status=response.status_code, body=response.text[:500])
            raise IntegrationError(
                f"API error {response.status_code}: {response.text[:200]}",
                provider="anthropic",
            )

        data = response.json()
        usage = data.get("usage", {})
        logger.debug(
            "Claude request completed",
            model=payload["model"],
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            duration_ms=round(duration_ms, 1),
        )
        return "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type") == "text"
        )
