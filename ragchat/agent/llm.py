"""
Response LLM: OpenAI (primary) or Hugging Face router (fallback).

When OPENAI_API_KEY is set, uses OpenAI chat completions; otherwise uses the
HF router. Any failure is raised as ServiceUnavailableError so the pipeline
records it as a response-stage failure.
"""

import logging

import httpx
from openai import OpenAI, OpenAIError

from ragchat.core.config import (
    HF_API_KEY,
    HF_CHAT_URL,
    HF_LLM_MODEL,
    LLM_API_TIMEOUT,
    LLM_MAX_TOKENS,
    OPENAI_API_KEY,
    OPENAI_LLM_MODEL,
)
from ragchat.core.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


def _call_openai(prompt: str, max_new_tokens: int) -> str:
    """Call OpenAI chat completions. Returns generated text."""
    client = OpenAI(api_key=OPENAI_API_KEY, timeout=LLM_API_TIMEOUT)
    try:
        response = client.chat.completions.create(
            model=OPENAI_LLM_MODEL,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_new_tokens,
        )
    except OpenAIError as e:
        raise ServiceUnavailableError(f"OpenAI request failed: {e}") from e
    msg = response.choices[0].message if response.choices else None
    out = ((msg.content if msg else None) or "").strip()
    logger.info("[llm:openai] OUT response_len=%d", len(out))
    return out


def _call_hf(prompt: str, max_new_tokens: int) -> str:
    """Call Hugging Face router chat completions. Returns generated text."""
    headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
    payload = {
        "model": HF_LLM_MODEL,
        "messages": [{"role": "user", "content": prompt}],
        "max_tokens": max_new_tokens,
    }
    try:
        with httpx.Client(timeout=LLM_API_TIMEOUT) as client:
            response = client.post(HF_CHAT_URL, json=payload, headers=headers)
    except httpx.HTTPError as e:
        raise ServiceUnavailableError(f"Hugging Face request failed: {e}") from e
    if response.status_code != 200:
        logger.warning("[llm:hf] HF LLM error %s: %s", response.status_code, response.text[:200])
        raise ServiceUnavailableError(f"Hugging Face returned HTTP {response.status_code}")
    choices = response.json().get("choices") or []
    msg = {}
    if choices and isinstance(choices[0], dict):
        msg = choices[0].get("message") or {}
    out = (msg.get("content") or "").strip()
    logger.info("[llm:hf] OUT response_len=%d", len(out))
    return out


def complete(prompt: str, max_new_tokens: int = LLM_MAX_TOKENS) -> str:
    """
    Generate text for a prompt with whichever LLM is configured.

    Raises:
        ServiceUnavailableError: If no LLM is configured, the call fails, or it returns nothing.
    """
    logger.info("[llm] IN  prompt_len=%d max_new_tokens=%d", len(prompt), max_new_tokens)
    if OPENAI_API_KEY:
        out = _call_openai(prompt, max_new_tokens)
    elif HF_API_KEY:
        out = _call_hf(prompt, max_new_tokens)
    else:
        raise ServiceUnavailableError("No LLM configured: set OPENAI_API_KEY or HF_API_KEY")
    if not out:
        raise ServiceUnavailableError("LLM returned an empty response")
    return out
