"""
Thin wrapper over the Groq chat-completion API.
"""

import logging
from typing import Dict, List, Optional

from groq import Groq
from pydantic import BaseModel

from screener.app.common.config import get_config
from screener.app.llm.cache import response_cache

logger = logging.getLogger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1024
VALID_ROLES = ("system", "user", "assistant")

_client: Optional[Groq] = None


class ChatUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResult(BaseModel):
    content: str
    usage: ChatUsage


def get_groq_client() -> Groq:
    global _client
    if _client is None:
        api_key = get_config().groq_api_key
        if not api_key:
            raise RuntimeError("GROQ_API_KEY not set")
        _client = Groq(api_key=api_key)
    return _client


def reset_groq_client() -> None:
    global _client
    _client = None


def _check_messages(messages: List[Dict[str, str]]) -> None:
    for message in messages:
        if message.get("role") not in VALID_ROLES:
            raise ValueError(f"Invalid chat role: {message.get('role')!r}")


def create_chat_completion(
    messages: List[Dict[str, str]],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    use_cache: bool = False,
) -> ChatCompletionResult:
    """
    Send a chat completion request and reshape the response.

    Unset parameters fall back to GROQ_MODEL, temperature 0.7 and 1024
    max tokens. An explicit 0 is passed through unchanged.
    """
    _check_messages(messages)

    if use_cache:
        cached = response_cache.get(messages)
        if cached is not None:
            logger.debug("Chat completion served from cache")
            return cached.model_copy(deep=True)

    completion = get_groq_client().chat.completions.create(
        messages=messages,
        model=model or get_config().groq_model,
        temperature=DEFAULT_TEMPERATURE if temperature is None else temperature,
        max_tokens=DEFAULT_MAX_TOKENS if max_tokens is None else max_tokens,
    )

    content = ""
    if completion.choices:
        content = completion.choices[0].message.content or ""

    usage = completion.usage
    result = ChatCompletionResult(
        content=content,
        usage=ChatUsage(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            total_tokens=getattr(usage, "total_tokens", 0) or 0,
        ),
    )

    if use_cache:
        response_cache.set(messages, result.model_copy(deep=True))
    return result
