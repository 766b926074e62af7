"""httpx transport for OpenAI-compatible provider gateways.

Provider HTTP calls are pure: no retry logic here.  Non-2xx responses are
raised as ``TransportError`` with status, decoded body and headers; the
provider layer maps them into the error taxonomy.  Connection and timeout
failures surface as the original ``httpx`` exceptions.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import orjson
import structlog

from ai_orchestrator.ports.outbound import ProviderTransport, TransportError

logger = structlog.get_logger(__name__)

_END_MARKER = "[DONE]"


def _decode(content: bytes) -> Any:
    if not content:
        return None
    try:
        return orjson.loads(content)
    except orjson.JSONDecodeError:
        return content.decode("utf-8", errors="replace")


def normalize_completion(data: Any) -> Any:
    """Flatten a chat response into ``{id, model, content, finish_reason, usage}``.

    Understands the ``choices`` shape and the ``content``-blocks shape;
    anything else is returned untouched.
    """
    if not isinstance(data, dict):
        return data
    if "choices" in data:
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        usage = data.get("usage") or {}
        return {
            "id": data.get("id", ""),
            "model": data.get("model"),
            "content": message.get("content") or "",
            "finish_reason": choice.get("finish_reason") or "stop",
            "tool_calls": message.get("tool_calls") or [],
            "usage": {
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
            },
        }
    if isinstance(data.get("content"), list):
        text = "".join(
            block.get("text", "") for block in data["content"] if block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        return {
            "id": data.get("id", ""),
            "model": data.get("model"),
            "content": text,
            "finish_reason": data.get("stop_reason") or "stop",
            "tool_calls": [b for b in data["content"] if b.get("type") == "tool_use"],
            "usage": {
                "prompt_tokens": usage.get("input_tokens", 0),
                "completion_tokens": usage.get("output_tokens", 0),
            },
        }
    return data


def _delta_text(chunk: Any) -> str:
    if not isinstance(chunk, dict):
        return ""
    if "choices" in chunk:
        choices = chunk.get("choices") or [{}]
        return (choices[0].get("delta") or {}).get("content") or ""
    if chunk.get("type") == "content_block_delta":
        return (chunk.get("delta") or {}).get("text") or ""
    return ""


class HttpxTransport(ProviderTransport):
    """Async HTTP transport with SSE streaming."""

    def __init__(self, *, timeout: float = 60.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(
        self, endpoint: str, body: dict[str, Any], *, headers: dict[str, str]
    ) -> dict[str, Any]:
        response = await self._client.post(endpoint, json=body, headers=headers)
        if response.is_error:
            raise TransportError(
                response.status_code,
                _decode(response.content),
                headers=dict(response.headers),
            )
        return normalize_completion(_decode(response.content))  # type: ignore[no-any-return]

    async def stream(
        self, endpoint: str, body: dict[str, Any], *, headers: dict[str, str]
    ) -> AsyncIterator[str]:
        async with self._client.stream("POST", endpoint, json=body, headers=headers) as response:
            if response.is_error:
                content = await response.aread()
                raise TransportError(
                    response.status_code, _decode(content), headers=dict(response.headers)
                )
            async for line in response.aiter_lines():
                if not line.startswith("data:"):
                    continue
                payload = line[5:].strip()
                if payload == _END_MARKER:
                    yield _END_MARKER
                    return
                if not payload:
                    continue
                try:
                    chunk = orjson.loads(payload)
                except orjson.JSONDecodeError:
                    logger.debug("sse_payload_skipped", endpoint=endpoint)
                    continue
                if isinstance(chunk, dict) and chunk.get("type") == "message_stop":
                    yield _END_MARKER
                    return
                text = _delta_text(chunk)
                if text:
                    yield text

    async def close(self) -> None:
        await self._client.aclose()
