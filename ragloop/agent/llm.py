"""
Agent LLM: OpenAI (primary) with Hugging Face router fallback for plain text.

Four call shapes are used by the loop: plain text (query rewrite), chat with
tools (knowledge extraction), structured output (sufficiency evaluation) and
streamed text (final answer). Failures raise TransientServiceError; a missing
key raises ServiceUnavailableError.
"""

import json
import logging
from typing import Any, Iterator, TypeVar

import httpx
import openai
from openai import OpenAI
from pydantic import BaseModel, ValidationError

from ragloop.core.config import (
    HF_API_KEY,
    HF_CHAT_URL,
    HF_LLM_MODEL,
    LLM_API_TIMEOUT,
    OPENAI_API_KEY,
    OPENAI_LLM_MODEL,
    OPENAI_SYNTHESIS_MODEL,
)
from ragloop.core.errors import (
    SchemaValidationError,
    ServiceUnavailableError,
    TransientServiceError,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def get_openai_client() -> OpenAI:
    if not OPENAI_API_KEY:
        raise ServiceUnavailableError("OPENAI_API_KEY must be set in .env")
    return OpenAI(api_key=OPENAI_API_KEY, timeout=LLM_API_TIMEOUT)


def _call_openai(prompt: str, max_new_tokens: int) -> str:
    """Call OpenAI chat completions. Returns generated text."""
    client = get_openai_client()
    try:
        response = client.chat.completions.create(
            model=OPENAI_LLM_MODEL,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_new_tokens,
        )
    except openai.OpenAIError as e:
        raise TransientServiceError(f"OpenAI request failed: {e}") from e
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
        raise TransientServiceError(f"HF request failed: {e}") from e
    if response.status_code != 200:
        raise TransientServiceError(f"HF LLM error {response.status_code}: {response.text[:200]}")
    choices = response.json().get("choices") or []
    if choices and isinstance(choices[0], dict):
        out = ((choices[0].get("message") or {}).get("content") or "").strip()
        logger.info("[llm:hf] OUT response_len=%d", len(out))
        return out
    return ""


def generate_text(prompt: str, max_new_tokens: int = 256) -> str:
    """
    Plain text generation. Uses OpenAI when OPENAI_API_KEY is set, else Hugging Face.
    If OpenAI fails or returns empty and HF_API_KEY is set, falls back to HF.
    """
    logger.info("[llm] IN  prompt_len=%d max_new_tokens=%d", len(prompt), max_new_tokens)
    logger.debug("[llm] prompt_sample=%r", prompt[:500])
    if not OPENAI_API_KEY and not HF_API_KEY:
        raise ServiceUnavailableError("Set OPENAI_API_KEY or HF_API_KEY in .env")
    if OPENAI_API_KEY:
        try:
            out = _call_openai(prompt, max_new_tokens)
        except TransientServiceError:
            if not HF_API_KEY:
                raise
            logger.warning("[llm] OpenAI failed; falling back to Hugging Face")
            out = ""
        if out or not HF_API_KEY:
            return out
        logger.info("[llm] OpenAI returned empty; falling back to Hugging Face")
    return _call_hf(prompt, max_new_tokens)


def chat_with_tools(
    messages: list[dict[str, Any]],
    tools: list[dict[str, Any]],
    max_tokens: int = 512,
    tool_choice: str = "auto",
) -> tuple[str | None, list[dict[str, Any]] | None]:
    """
    Call OpenAI chat with tools. Used for knowledge extraction.
    Returns (content, tool_calls). If tool_calls is non-empty, caller should execute
    them and call again with tool results; content without tool_calls is the final text.
    """
    client = get_openai_client()
    try:
        response = client.chat.completions.create(
            model=OPENAI_LLM_MODEL,
            messages=messages,
            tools=tools,
            tool_choice=tool_choice,
            max_tokens=max_tokens,
        )
    except openai.OpenAIError as e:
        raise TransientServiceError(f"OpenAI tool call failed: {e}") from e
    msg = response.choices[0].message if response.choices else None
    if not msg:
        return None, None
    content = (getattr(msg, "content", None) or "").strip() or None
    raw_tool_calls = getattr(msg, "tool_calls", None) or []
    tool_calls = []
    for tc in raw_tool_calls:
        fid = getattr(tc, "id", None) or ""
        fn = getattr(tc, "function", None)
        if not fn:
            continue
        fname = getattr(fn, "name", None) or ""
        fargs = getattr(fn, "arguments", None) or "{}"
        try:
            args = json.loads(fargs) if isinstance(fargs, str) else fargs
        except json.JSONDecodeError:
            args = {}
        tool_calls.append({"id": fid, "name": fname, "arguments": args})
    if tool_calls:
        logger.info("[llm:chat_with_tools] OUT tool_calls=%s", [t["name"] for t in tool_calls])
    if content:
        logger.info("[llm:chat_with_tools] OUT content_len=%d", len(content))
    return content, tool_calls if tool_calls else None


def generate_structured(prompt: str, schema: type[ModelT], max_tokens: int = 300) -> ModelT:
    """
    Structured generation constrained to schema's JSON schema.
    Raises SchemaValidationError when the output does not validate.
    """
    client = get_openai_client()
    try:
        response = client.chat.completions.create(
            model=OPENAI_LLM_MODEL,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": schema.__name__,
                    "schema": schema.model_json_schema(),
                },
            },
        )
    except openai.OpenAIError as e:
        raise TransientServiceError(f"OpenAI structured call failed: {e}") from e
    msg = response.choices[0].message if response.choices else None
    raw = ((msg.content if msg else None) or "").strip()
    logger.info("[llm:generate_structured] OUT raw=%r", raw[:300])
    if not raw:
        raise SchemaValidationError(f"Empty structured output for {schema.__name__}")
    try:
        return schema.model_validate_json(raw)
    except ValidationError as e:
        raise SchemaValidationError(f"Output does not match {schema.__name__}: {e}") from e


def stream_text(prompt: str, max_tokens: int = 1024) -> Iterator[tuple]:
    """
    Stream a completion. Yields:
    - ('content_delta', str) for each text fragment;
    - ('error', str) if the stream fails (no further items);
    - ('content_done',) when the answer is complete.
    """
    client = get_openai_client()
    try:
        stream = client.chat.completions.create(
            model=OPENAI_SYNTHESIS_MODEL,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            stream=True,
        )
        total = 0
        for chunk in stream:
            if not chunk.choices:
                continue
            d = chunk.choices[0].delta
            if getattr(d, "content", None):
                total += len(d.content)
                yield ("content_delta", d.content)
    except openai.OpenAIError as e:
        logger.warning("[llm:stream_text] stream failed: %s", e)
        yield ("error", str(e))
        return
    logger.info("[llm:stream_text] OUT content_done len=%d", total)
    yield ("content_done",)
