"""
Thin wrapper around the hosted completion model (OpenAI-compatible API).
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from diary import config

logger = logging.getLogger(__name__)


class AIServiceError(Exception):
    """Model initialization or completion failed."""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message)
        self.details = details


def get_client():
    """Build an OpenAI client. Raises AIServiceError when not configured."""
    if not config.OPENAI_KEY:
        raise AIServiceError("AI 服务初始化失败", "OPENAI_API_KEY not set")
    try:
        import openai
        return openai.OpenAI(api_key=config.OPENAI_KEY, base_url=config.OPENAI_BASE_URL)
    except Exception as e:
        raise AIServiceError("AI 服务初始化失败", f"{type(e).__name__}: {e}") from e


def complete(messages: list, temperature: float, max_tokens: int, model: str = None) -> str:
    """Run one chat completion and return the reply text ('' if the model sent none)."""
    client = get_client()
    try:
        r = client.chat.completions.create(
            model=model or config.CHAT_MODEL,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except Exception as e:
        logger.error("[ai] completion failed: %s: %s", type(e).__name__, e)
        raise AIServiceError(str(e) or type(e).__name__, type(e).__name__) from e
    if not r.choices:
        return ""
    return (r.choices[0].message.content or "").strip()


# ── JSON output handling ──

@dataclass(frozen=True)
class Ok:
    value: Any
    fallback: bool = False


@dataclass(frozen=True)
class Fallback:
    value: Any
    reason: str = ""
    fallback: bool = True


def strip_code_fence(text: str) -> str:
    """Remove a ```json ... ``` wrapper if the model added one."""
    text = (text or "").strip()
    text = re.sub(r"^```(?:json|JSON)?\s*", "", text)
    text = re.sub(r"\s*```$", "", text)
    return text.strip()


def parse_json_object(text: str, default: dict) -> Ok | Fallback:
    """Parse model output as a JSON object, or return Fallback(default)."""
    cleaned = strip_code_fence(text)
    if not cleaned:
        return Fallback(dict(default), "empty response")
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        return Fallback(dict(default), f"invalid JSON: {e}")
    if not isinstance(data, dict):
        return Fallback(dict(default), f"expected object, got {type(data).__name__}")
    return Ok(data)
