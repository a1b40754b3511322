from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from openai import AsyncOpenAI

from ..ids import new_tool_call_id
from ..models.messages import ContextMessage, ImagePart, MessageRole
from .errors import CancellationToken, wrap_provider_exception
from .types import (
    CompletionResult,
    FinishReason,
    RawToolCall,
    StreamEvent,
    StreamRequest,
    TokenUsage,
    ToolSpec,
)

logger = logging.getLogger(__name__)

_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
}


def map_finish_reason(raw: str | None, *, has_tool_calls: bool) -> FinishReason:
    if raw is None:
        return FinishReason.TOOL_CALLS if has_tool_calls else FinishReason.UNKNOWN
    reason = _FINISH_REASONS.get(raw, FinishReason.OTHER)
    # Some OpenAI-compatible gateways report "stop" for a step that ended in tool calls.
    if has_tool_calls and reason is FinishReason.STOP:
        return FinishReason.TOOL_CALLS
    return reason


def to_openai_messages(system: str, messages: list[ContextMessage]) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    if system:
        out.append({"role": "system", "content": system})
    for msg in messages:
        if msg.role is MessageRole.TOOL:
            out.append({"role": "tool", "tool_call_id": msg.tool_call_id or "", "content": msg.text()})
            continue
        if msg.role is MessageRole.ASSISTANT:
            item: dict[str, Any] = {"role": "assistant", "content": msg.text() or None}
            if msg.tool_calls:
                item["tool_calls"] = [
                    {
                        "id": call.tool_call_id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": json.dumps(call.arguments, ensure_ascii=False)},
                    }
                    for call in msg.tool_calls
                ]
            out.append(item)
            continue
        if isinstance(msg.content, str):
            out.append({"role": str(msg.role), "content": msg.content})
            continue
        parts: list[dict[str, Any]] = []
        for part in msg.content:
            if isinstance(part, ImagePart):
                parts.append({"type": "image_url", "image_url": {"url": part.data_url()}})
            else:
                parts.append({"type": "text", "text": part})
        out.append({"role": str(msg.role), "content": parts})
    return out


def to_openai_tools(tools: list[ToolSpec]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {"name": spec.name, "description": spec.description, "parameters": spec.input_schema},
        }
        for spec in tools
    ]


def _usage_from(raw: Any) -> TokenUsage | None:
    if raw is None:
        return None
    details = getattr(raw, "prompt_tokens_details", None)
    cached = getattr(details, "cached_tokens", None) if details is not None else None
    return TokenUsage(
        input_tokens=int(getattr(raw, "prompt_tokens", 0) or 0),
        output_tokens=int(getattr(raw, "completion_tokens", 0) or 0),
        cached_input_tokens=int(cached or 0),
    )


class OpenAICompatibleStreamProvider:
    """
    Chat Completions streaming adapter for OpenAI and OpenAI-compatible endpoints.

    `name` is the provider family used for schema adaptation (e.g. "gemini" when pointed at a
    Gemini OpenAI-compatible endpoint).
    """

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        base_url: str | None = None,
        name: str = "openai",
        profile_id: str | None = None,
        timeout_s: float | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.name = name
        self.model = model
        self._profile_id = profile_id
        if client is None:
            client_kwargs: dict[str, Any] = {"api_key": api_key, "base_url": base_url}
            if timeout_s is not None:
                client_kwargs["timeout"] = httpx.Timeout(timeout_s)
            client = AsyncOpenAI(**client_kwargs)
        self._client = client

    def _request_kwargs(self, request: StreamRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": to_openai_messages(request.system, request.messages),
        }
        if request.tools:
            kwargs["tools"] = to_openai_tools(request.tools)
            kwargs["tool_choice"] = request.tool_choice
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_output_tokens is not None:
            kwargs["max_tokens"] = request.max_output_tokens
        if request.provider_options:
            kwargs["extra_body"] = dict(request.provider_options)
        return kwargs

    async def stream(self, request: StreamRequest, *, cancel: CancellationToken) -> AsyncIterator[StreamEvent]:
        tool_calls_by_index: dict[int, dict[str, Any]] = {}
        finish_raw: str | None = None
        usage: TokenUsage | None = None

        try:
            response = await self._client.chat.completions.create(
                **self._request_kwargs(request),
                stream=True,
                stream_options={"include_usage": True},
            )
            try:
                async for chunk in response:
                    if cancel.cancelled:
                        break
                    chunk_usage = _usage_from(getattr(chunk, "usage", None))
                    if chunk_usage is not None:
                        usage = chunk_usage
                    for choice in getattr(chunk, "choices", None) or []:
                        delta = getattr(choice, "delta", None)
                        if delta is not None:
                            reasoning = getattr(delta, "reasoning_content", None)
                            if isinstance(reasoning, str) and reasoning:
                                yield StreamEvent.reasoning_delta(reasoning)
                            content = getattr(delta, "content", None)
                            if isinstance(content, str) and content:
                                yield StreamEvent.text_delta(content)
                            for tc in getattr(delta, "tool_calls", None) or []:
                                index = int(getattr(tc, "index", 0) or 0)
                                rec = tool_calls_by_index.setdefault(index, {"id": None, "name": "", "raw": ""})
                                if getattr(tc, "id", None):
                                    rec["id"] = tc.id
                                fn = getattr(tc, "function", None)
                                name = getattr(fn, "name", None) if fn is not None else None
                                if isinstance(name, str) and name and not rec["name"]:
                                    rec["name"] = name
                                    yield StreamEvent.tool_input_start(name)
                                args_delta = getattr(fn, "arguments", None) if fn is not None else None
                                if isinstance(args_delta, str) and args_delta:
                                    rec["raw"] += args_delta
                        if getattr(choice, "finish_reason", None):
                            finish_raw = choice.finish_reason
            finally:
                await response.close()
        except Exception as e:
            logger.debug("Provider stream failed provider=%s model=%s: %s", self.name, self.model, e)
            yield StreamEvent.failure(
                wrap_provider_exception(e, provider_name=self.name, profile_id=self._profile_id, model=self.model, operation="stream")
            )
            return

        for index in sorted(tool_calls_by_index):
            rec = tool_calls_by_index[index]
            yield StreamEvent.call(RawToolCall(tool_call_id=rec["id"] or new_tool_call_id(), tool_name=rec["name"], input=rec["raw"]))
        yield StreamEvent.step_finish(map_finish_reason(finish_raw, has_tool_calls=bool(tool_calls_by_index)), usage)

    async def complete(self, request: StreamRequest, *, cancel: CancellationToken) -> CompletionResult:
        del cancel
        try:
            resp = await self._client.chat.completions.create(**self._request_kwargs(request))
        except Exception as e:
            raise wrap_provider_exception(e, provider_name=self.name, profile_id=self._profile_id, model=self.model, operation="complete") from e

        choice = (getattr(resp, "choices", None) or [None])[0]
        message = getattr(choice, "message", None)
        tool_calls = [
            RawToolCall(
                tool_call_id=str(getattr(tc, "id", None) or new_tool_call_id()),
                tool_name=str(tc.function.name),
                input=str(tc.function.arguments or ""),
            )
            for tc in (getattr(message, "tool_calls", None) or [])
            if getattr(tc, "function", None) is not None
        ]
        return CompletionResult(
            text=str(getattr(message, "content", None) or ""),
            tool_calls=tool_calls,
            finish_reason=map_finish_reason(getattr(choice, "finish_reason", None), has_tool_calls=bool(tool_calls)),
            usage=_usage_from(getattr(resp, "usage", None)) or TokenUsage(),
        )
