"""Agent orchestrator: the multi-round LLM / tool-calling loop for one user turn."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Optional

from chatlog_agent.ai.client import LLMClient
from chatlog_agent.ai.prompt import PromptConfig, build_system_prompt, prompt_text
from chatlog_agent.ai.tagging import (
    StreamReconciler,
    extract_thinking,
    has_tool_call_tags,
    parse_tool_call_tags,
    strip_thinking,
)
from chatlog_agent.ai.tools.base import ToolContext
from chatlog_agent.ai.tools.common import t
from chatlog_agent.ai.tools.registry import ToolRegistry
from chatlog_agent.ai.types import (
    AgentResult,
    AgentStreamChunk,
    ChatMessage,
    ChatOptions,
    TokenUsage,
    ToolCall,
    ToolOutcome,
)
from chatlog_agent.core.cancel import CancelToken
from chatlog_agent.core.types import ChatType
from chatlog_agent.errors import AgentCancelledError, LLMError, format_ai_error
from chatlog_agent.log import get_logger

logger = get_logger(__name__)

StreamCallback = Callable[[AgentStreamChunk], None]


@dataclass
class AgentConfig:
    max_tool_rounds: int = 5
    temperature: float = 0.7
    max_tokens: int = 2048


class Agent:
    """Runs one conversation turn.

    An instance owns its message log, round counter, token usage and
    cancel token; create a new one per turn. History from earlier turns is
    passed in and copied, never shared.
    """

    def __init__(
        self,
        client: LLMClient,
        registry: ToolRegistry,
        context: ToolContext,
        config: Optional[AgentConfig] = None,
        history: Optional[list[ChatMessage]] = None,
        chat_type: ChatType = ChatType.GROUP,
        prompt_config: Optional[PromptConfig] = None,
        locale: str = "zh-CN",
        cancel_token: Optional[CancelToken] = None,
    ):
        self._client = client
        self._registry = registry
        self._context = context.with_locale(locale)
        self._config = config or AgentConfig()
        self._history = list(history or [])
        self._chat_type = chat_type
        self._prompt_config = prompt_config
        self._locale = locale
        self.cancel_token = cancel_token or CancelToken()

        self._messages: list[ChatMessage] = []
        self._tools_used: list[str] = []
        self._tool_rounds = 0
        self._usage = TokenUsage()
        self.last_result: Optional[AgentResult] = None

    @property
    def messages(self) -> list[ChatMessage]:
        return list(self._messages)

    @property
    def _cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def cancel(self) -> None:
        self.cancel_token.cancel()

    # ── Shared helpers ──────────────────────────────────────────────

    def _init_turn(self, user_message: str) -> None:
        system_prompt = build_system_prompt(
            self._chat_type, self._prompt_config, self._context.owner_info, self._locale
        )
        self._messages = [
            ChatMessage(role="system", content=system_prompt),
            *self._history,
            ChatMessage(role="user", content=user_message),
        ]
        self._tools_used = []
        self._tool_rounds = 0

    def _options(self, with_tools: bool = True) -> ChatOptions:
        return ChatOptions(
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
            tools=self._registry.get_all_tool_definitions() if with_tools else None,
            cancel_token=self.cancel_token,
        )

    def _result(self, content: str) -> AgentResult:
        result = AgentResult(
            content=content,
            tools_used=list(self._tools_used),
            tool_rounds=self._tool_rounds,
            total_usage=self._usage.copy(),
        )
        self.last_result = result
        return result

    def _done_chunk(self) -> AgentStreamChunk:
        return AgentStreamChunk(type="done", is_finished=True, usage=self._usage.copy())

    def _push_round_limit_instruction(self) -> None:
        logger.warning("agent_round_limit_reached", max_rounds=self._config.max_tool_rounds)
        self._messages.append(ChatMessage(role="user", content=prompt_text("round_limit_instruction", self._locale)))

    async def _execute_tools(self, calls: list[ToolCall]) -> list[ToolOutcome]:
        """Record the calls, run them as one batch and append a tool message per call."""
        for call in calls:
            logger.info("agent_tool_call", tool=call.name, arguments=call.arguments)

        self._messages.append(ChatMessage(role="assistant", content="", tool_calls=calls))
        outcomes = await self._registry.execute_tool_calls(calls, self._context)

        for call, outcome in zip(calls, outcomes):
            self._tools_used.append(call.name)
            if outcome.success:
                logger.info("agent_tool_result", tool=call.name)
                content = json.dumps(outcome.result, ensure_ascii=False, default=str)
            else:
                logger.warning("agent_tool_failed", tool=call.name, error=outcome.error)
                content = f"{t('error_prefix', self._locale)}: {outcome.error}"
            self._messages.append(ChatMessage(role="tool", content=content, tool_call_id=call.id))
        return outcomes

    # ── Blocking ────────────────────────────────────────────────────

    async def execute(self, user_message: str) -> AgentResult:
        """Run the turn to completion and return the final answer."""
        logger.info("agent_user_message", message=user_message)
        if self._cancelled:
            return self._result("")

        self._init_turn(user_message)

        try:
            while self._tool_rounds < self._config.max_tool_rounds:
                if self._cancelled:
                    logger.info("agent_cancelled", round=self._tool_rounds)
                    return self._result("")

                logger.debug("agent_round_start", round=self._tool_rounds)
                response = await self._client.chat(self._messages, self._options())
                self._usage.add(response.usage)

                calls: Optional[list[ToolCall]] = None
                if response.finish_reason == "tool_calls" and response.tool_calls:
                    calls = response.tool_calls
                elif has_tool_call_tags(response.content):
                    calls = parse_tool_call_tags(response.content)
                    if not calls:
                        _, clean = extract_thinking(response.content)
                        logger.info("agent_answer", content=clean)
                        return self._result(clean)
                else:
                    content = strip_thinking(response.content).strip()
                    logger.info("agent_answer", content=content)
                    return self._result(content)

                if self._cancelled:
                    logger.info("agent_cancelled_before_tools", round=self._tool_rounds)
                    return self._result("")

                await self._execute_tools(calls)
                self._tool_rounds += 1

            if self._cancelled:
                return self._result("")

            self._push_round_limit_instruction()
            response = await self._client.chat(self._messages, self._options(with_tools=False))
            self._usage.add(response.usage)
        except AgentCancelledError:
            logger.info("agent_cancelled_during_request", round=self._tool_rounds)
            return self._result("")

        _, content = extract_thinking(response.content)
        return self._result(content or prompt_text("empty_answer", self._locale))

    # ── Streaming ───────────────────────────────────────────────────

    async def stream(self, user_message: str) -> AsyncIterator[AgentStreamChunk]:
        """Run the turn, yielding content / tool_start / tool_result / done chunks.

        The final :class:`AgentResult` is available as :attr:`last_result`
        once the iterator is exhausted. After cancellation is observed only a
        ``done`` chunk follows, and the result content is exactly the text
        that was yielded.
        """
        logger.info("agent_user_message", message=user_message, stream=True)
        if self._cancelled:
            self._result("")
            yield self._done_chunk()
            return

        self._init_turn(user_message)
        emitted: list[str] = []

        try:
            while self._tool_rounds < self._config.max_tool_rounds:
                if self._cancelled:
                    break

                logger.debug("agent_round_start", round=self._tool_rounds, stream=True)
                reconciler = StreamReconciler()
                calls: Optional[list[ToolCall]] = None
                finish_reason: Optional[str] = None

                async with aclosing(self._client.chat_stream(self._messages, self._options())) as chunks:
                    async for chunk in chunks:
                        if self._cancelled:
                            break
                        if chunk.content:
                            visible = reconciler.feed(chunk.content)
                            if visible:
                                emitted.append(visible)
                                yield AgentStreamChunk(type="content", content=visible)
                        if chunk.tool_calls:
                            calls = chunk.tool_calls
                        self._usage.add(chunk.usage)
                        if chunk.is_finished:
                            finish_reason = chunk.finish_reason

                if self._cancelled:
                    break

                if not (finish_reason == "tool_calls" and calls):
                    outcome = reconciler.finish()
                    if not outcome.tool_calls:
                        if outcome.tail:
                            emitted.append(outcome.tail)
                            yield AgentStreamChunk(type="content", content=outcome.tail)
                        logger.info("agent_answer", content=outcome.content)
                        self._result(outcome.content)
                        yield self._done_chunk()
                        return
                    calls = outcome.tool_calls

                for call in calls:
                    if self._cancelled:
                        break
                    yield AgentStreamChunk(
                        type="tool_start",
                        tool_name=call.name,
                        tool_params=self._registry.display_params(call, self._context),
                    )

                if self._cancelled:
                    break

                outcomes = await self._execute_tools(calls)
                self._tool_rounds += 1
                for call, outcome in zip(calls, outcomes):
                    if self._cancelled:
                        break
                    yield AgentStreamChunk(
                        type="tool_result",
                        tool_name=call.name,
                        tool_result=outcome.result if outcome.success else outcome.error,
                    )
            else:
                if not self._cancelled:
                    async for chunk in self._stream_final_answer(emitted):
                        yield chunk
                    return
        except LLMError as e:
            logger.error("agent_llm_error", error=str(e), status_code=e.status_code)
            yield AgentStreamChunk(type="error", error=format_ai_error(e))
            raise

        logger.info("agent_cancelled", round=self._tool_rounds, stream=True)
        self._result("".join(emitted))
        yield self._done_chunk()

    async def _stream_final_answer(self, emitted: list[str]) -> AsyncIterator[AgentStreamChunk]:
        """Round limit reached: one more streamed call without tools."""
        self._push_round_limit_instruction()
        reconciler = StreamReconciler()

        async with aclosing(self._client.chat_stream(self._messages, self._options(with_tools=False))) as chunks:
            async for chunk in chunks:
                if self._cancelled:
                    break
                if chunk.content:
                    visible = reconciler.feed(chunk.content)
                    if visible:
                        emitted.append(visible)
                        yield AgentStreamChunk(type="content", content=visible)
                self._usage.add(chunk.usage)

        if self._cancelled:
            self._result("".join(emitted))
            yield self._done_chunk()
            return

        outcome = reconciler.finish()
        tail = outcome.tail if not outcome.tool_calls else ""
        content = outcome.content
        if not content:
            content = tail = prompt_text("empty_answer", self._locale)
        if tail:
            emitted.append(tail)
            yield AgentStreamChunk(type="content", content=tail)
        self._result(content)
        yield self._done_chunk()

    async def execute_stream(self, user_message: str, on_chunk: StreamCallback) -> AgentResult:
        """Callback-style wrapper around :meth:`stream`."""
        async for chunk in self.stream(user_message):
            on_chunk(chunk)
        assert self.last_result is not None
        return self.last_result


def history_from_dicts(items: list[dict[str, Any]]) -> list[ChatMessage]:
    """Build prior-turn history from ``{"role", "content"}`` dicts, ignoring other roles."""
    return [
        ChatMessage(role=item["role"], content=str(item.get("content", "")))
        for item in items
        if item.get("role") in ("user", "assistant")
    ]
