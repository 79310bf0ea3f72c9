"""LLM client abstraction with Anthropic and OpenAI-compatible backends.

Both backends speak the OpenAI-style :class:`ChatMessage` / :class:`ToolCall`
types; the Anthropic client converts to and from content blocks.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable
from typing import Any, Optional, TypeVar

from chatlog_agent.ai.types import ChatMessage, ChatOptions, ChatResponse, ChatStreamChunk, TokenUsage, ToolCall
from chatlog_agent.config import LLMConfig
from chatlog_agent.core.cancel import CancelToken
from chatlog_agent.errors import AgentCancelledError, LLMError
from chatlog_agent.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def run_cancellable(awaitable: Awaitable[T], cancel_token: Optional[CancelToken]) -> T:
    """Await ``awaitable`` unless the token fires first, then raise :class:`AgentCancelledError`."""
    if cancel_token is None:
        return await awaitable
    if cancel_token.cancelled:
        raise AgentCancelledError("cancelled before request")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
    if task.done():
        return task.result()
    task.cancel()
    raise AgentCancelledError("cancelled during request")


class LLMClient(ABC):
    """Abstract chat backend."""

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    async def chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResponse:
        """Send the conversation and return the complete response."""
        ...

    @abstractmethod
    def chat_stream(self, messages: list[ChatMessage], options: ChatOptions) -> AsyncIterator[ChatStreamChunk]:
        """Stream the response; the last chunk has ``is_finished`` set and carries usage."""
        ...


# ── Anthropic ──────────────────────────────────────────────────────────


def _to_anthropic_tools(tools: Optional[list[dict[str, Any]]]) -> list[dict[str, Any]]:
    """OpenAI function definitions → Anthropic ``input_schema`` tools."""
    converted = []
    for tool in tools or []:
        fn = tool.get("function", tool)
        converted.append(
            {
                "name": fn["name"],
                "description": fn.get("description", ""),
                "input_schema": fn.get("parameters") or {"type": "object", "properties": {}},
            }
        )
    return converted


def _to_anthropic_messages(messages: list[ChatMessage]) -> tuple[str, list[dict[str, Any]]]:
    """Split out the system prompt and convert the rest to Anthropic content blocks.

    Consecutive ``tool`` messages are merged into one user turn of
    ``tool_result`` blocks.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []

    for msg in messages:
        if msg.role == "system":
            system_parts.append(msg.content)
        elif msg.role == "tool":
            block = {"type": "tool_result", "tool_use_id": msg.tool_call_id or "", "content": msg.content}
            last = converted[-1] if converted else None
            if last and last["role"] == "user" and isinstance(last["content"], list) and all(
                b.get("type") == "tool_result" for b in last["content"]
            ):
                last["content"].append(block)
            else:
                converted.append({"role": "user", "content": [block]})
        elif msg.role == "assistant" and msg.tool_calls:
            blocks: list[dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for call in msg.tool_calls:
                try:
                    parsed = json.loads(call.arguments or "{}")
                except json.JSONDecodeError:
                    parsed = {}
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": parsed if isinstance(parsed, dict) else {},
                    }
                )
            converted.append({"role": "assistant", "content": blocks})
        else:
            converted.append({"role": msg.role, "content": msg.content})

    return "\n\n".join(p for p in system_parts if p), converted


def _anthropic_finish_reason(stop_reason: Optional[str]) -> str:
    if stop_reason == "tool_use":
        return "tool_calls"
    if stop_reason == "max_tokens":
        return "length"
    return "stop"


def _from_anthropic_message(message: Any) -> ChatResponse:
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    for block in message.content:
        if block.type == "text":
            text_parts.append(block.text)
        elif block.type == "tool_use":
            tool_calls.append(
                ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input, ensure_ascii=False))
            )
    usage = TokenUsage(
        prompt_tokens=message.usage.input_tokens,
        completion_tokens=message.usage.output_tokens,
        total_tokens=message.usage.input_tokens + message.usage.output_tokens,
    )
    return ChatResponse(
        content="".join(text_parts),
        tool_calls=tool_calls or None,
        finish_reason=_anthropic_finish_reason(message.stop_reason),
        usage=usage,
    )


class AnthropicClient(LLMClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: LLMConfig):
        import anthropic

        super().__init__(config.model)
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key or None,
            base_url=config.base_url or None,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    def _request_kwargs(self, messages: list[ChatMessage], options: ChatOptions) -> dict[str, Any]:
        system, converted = _to_anthropic_messages(messages)
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": options.max_tokens,
            "messages": converted,
            "temperature": options.temperature,
        }
        if system:
            kwargs["system"] = system
        tools = _to_anthropic_tools(options.tools)
        if tools:
            kwargs["tools"] = tools
        return kwargs

    async def chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResponse:
        import anthropic

        kwargs = self._request_kwargs(messages, options)
        logger.debug("api_request", provider="anthropic", model=self.model, message_count=len(messages))
        try:
            message = await run_cancellable(self._client.messages.create(**kwargs), options.cancel_token)
        except anthropic.APIError as e:
            raise LLMError(str(e), status_code=getattr(e, "status_code", None), cause=e) from e

        response = _from_anthropic_message(message)
        logger.debug(
            "api_response",
            provider="anthropic",
            model=self.model,
            input_tokens=response.usage.prompt_tokens,
            output_tokens=response.usage.completion_tokens,
            stop_reason=message.stop_reason,
        )
        return response

    async def chat_stream(
        self, messages: list[ChatMessage], options: ChatOptions
    ) -> AsyncIterator[ChatStreamChunk]:
        import anthropic

        kwargs = self._request_kwargs(messages, options)
        cancel_token = options.cancel_token
        logger.debug("api_stream_request", provider="anthropic", model=self.model, message_count=len(messages))
        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for event in stream:
                    if cancel_token is not None and cancel_token.cancelled:
                        return
                    if event.type == "text" and event.text:
                        yield ChatStreamChunk(content=event.text)
                final = await stream.get_final_message()
        except anthropic.APIError as e:
            raise LLMError(str(e), status_code=getattr(e, "status_code", None), cause=e) from e

        response = _from_anthropic_message(final)
        yield ChatStreamChunk(
            tool_calls=response.tool_calls,
            is_finished=True,
            finish_reason=response.finish_reason,
            usage=response.usage,
        )


# ── OpenAI-compatible ──────────────────────────────────────────────────


def _openai_usage(usage: Any) -> Optional[TokenUsage]:
    if usage is None:
        return None
    return TokenUsage(
        prompt_tokens=usage.prompt_tokens or 0,
        completion_tokens=usage.completion_tokens or 0,
        total_tokens=usage.total_tokens or 0,
    )


class OpenAICompatibleClient(LLMClient):
    """Chat-completions backend for OpenAI and compatible servers (DeepSeek, Qwen, Ollama, ...)."""

    def __init__(self, config: LLMConfig):
        import openai

        super().__init__(config.model)
        self._client = openai.AsyncOpenAI(
            api_key=config.api_key or "not-needed",
            base_url=config.base_url or None,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    def _request_kwargs(self, messages: list[ChatMessage], options: ChatOptions) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_api_dict() for m in messages],
            "temperature": options.temperature,
            "max_tokens": options.max_tokens,
        }
        if options.tools:
            kwargs["tools"] = options.tools
        return kwargs

    async def chat(self, messages: list[ChatMessage], options: ChatOptions) -> ChatResponse:
        import openai

        kwargs = self._request_kwargs(messages, options)
        logger.debug("api_request", provider="openai", model=self.model, message_count=len(messages))
        try:
            completion = await run_cancellable(self._client.chat.completions.create(**kwargs), options.cancel_token)
        except openai.APIError as e:
            raise LLMError(str(e), status_code=getattr(e, "status_code", None), cause=e) from e

        choice = completion.choices[0]
        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
            for tc in (choice.message.tool_calls or [])
        ]
        usage = _openai_usage(completion.usage)
        logger.debug(
            "api_response",
            provider="openai",
            model=self.model,
            finish_reason=choice.finish_reason,
            total_tokens=usage.total_tokens if usage else None,
        )
        return ChatResponse(
            content=choice.message.content or "",
            tool_calls=tool_calls or None,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    async def chat_stream(
        self, messages: list[ChatMessage], options: ChatOptions
    ) -> AsyncIterator[ChatStreamChunk]:
        import openai

        kwargs = self._request_kwargs(messages, options)
        cancel_token = options.cancel_token
        partial_calls: dict[int, dict[str, str]] = {}
        finish_reason: Optional[str] = None
        usage: Optional[TokenUsage] = None

        logger.debug("api_stream_request", provider="openai", model=self.model, message_count=len(messages))
        try:
            stream = await self._client.chat.completions.create(
                **kwargs, stream=True, stream_options={"include_usage": True}
            )
            try:
                async for chunk in stream:
                    if cancel_token is not None and cancel_token.cancelled:
                        return
                    if chunk.usage is not None:
                        usage = _openai_usage(chunk.usage)
                    if not chunk.choices:
                        continue
                    choice = chunk.choices[0]
                    delta = choice.delta
                    for tc in delta.tool_calls or []:
                        slot = partial_calls.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                        if tc.id:
                            slot["id"] = tc.id
                        if tc.function is not None:
                            if tc.function.name:
                                slot["name"] += tc.function.name
                            if tc.function.arguments:
                                slot["arguments"] += tc.function.arguments
                    if choice.finish_reason:
                        finish_reason = choice.finish_reason
                    if delta.content:
                        yield ChatStreamChunk(content=delta.content)
            finally:
                await stream.close()
        except openai.APIError as e:
            raise LLMError(str(e), status_code=getattr(e, "status_code", None), cause=e) from e

        tool_calls = [
            ToolCall(id=slot["id"] or f"call_{index}", name=slot["name"], arguments=slot["arguments"] or "{}")
            for index, slot in sorted(partial_calls.items())
        ]
        yield ChatStreamChunk(
            tool_calls=tool_calls or None,
            is_finished=True,
            finish_reason=finish_reason or "stop",
            usage=usage,
        )


def create_llm_client(config: LLMConfig) -> LLMClient:
    """Create the chat backend selected by ``config.provider``."""
    if config.provider == "anthropic":
        logger.info("llm_client_created", provider="anthropic", model=config.model)
        return AnthropicClient(config)
    logger.info("llm_client_created", provider="openai", model=config.model, base_url=config.base_url or None)
    return OpenAICompatibleClient(config)
