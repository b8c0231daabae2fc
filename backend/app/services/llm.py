"""Shared LLM access through LiteLLM plus validated JSON decoding of replies."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any

from app.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decoded:
    """Result of decoding an LLM reply: exactly one of value / error is set."""

    value: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        body = text.split("```")[1]
        if body.startswith("json"):
            body = body[4:]
        return body.strip()
    return text


def _loads(text: str | None) -> Decoded:
    if not text:
        return Decoded(error="empty reply")
    try:
        return Decoded(value=json.loads(_strip_code_fence(text)))
    except (json.JSONDecodeError, IndexError) as e:
        return Decoded(error=f"invalid JSON: {e}")


def decode_json_array(text: str | None) -> Decoded:
    """Decode a reply expected to be a JSON array of strings.

    Non-string items are dropped; anything that is not an array is an error.
    """
    result = _loads(text)
    if not result.ok:
        return result
    if not isinstance(result.value, list):
        return Decoded(error=f"expected JSON array, got {type(result.value).__name__}")
    return Decoded(value=[item for item in result.value if isinstance(item, str)])


def decode_json_object(text: str | None) -> Decoded:
    """Decode a reply expected to be a JSON object."""
    result = _loads(text)
    if not result.ok:
        return result
    if not isinstance(result.value, dict):
        return Decoded(error=f"expected JSON object, got {type(result.value).__name__}")
    return result


class LLMClient:
    """Thin async wrapper around ``litellm.acompletion`` with a hard timeout."""

    def __init__(self, api_key: str | None = None, timeout: float = 60.0):
        self.api_key = api_key or None
        self.timeout = timeout

    async def complete(
        self,
        model: str,
        messages: list[dict],
        temperature: float = 0.2,
        max_tokens: int | None = None,
        json_object: bool = False,
    ) -> str:
        """Return the text content of the first choice.

        Transport errors and timeouts propagate; callers decide whether
        they are fatal.
        """
        import litellm

        response = await asyncio.wait_for(
            litellm.acompletion(
                model=model,
                messages=messages,
                api_key=self.api_key,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"} if json_object else None,
            ),
            timeout=self.timeout,
        )
        return response.choices[0].message.content or ""


_llm_client: LLMClient | None = None


def get_llm_client() -> LLMClient:
    """Process-wide LLM client, created on first use."""
    global _llm_client
    if _llm_client is None:
        _llm_client = LLMClient(api_key=settings.LLM_API_KEY, timeout=settings.LLM_TIMEOUT)
    return _llm_client
