"""Provider-neutral chat types shared by the LLM clients and the agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Optional

if TYPE_CHECKING:
    from chatlog_agent.core.cancel import CancelToken

Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class ToolCall:
    """One function call requested by the model; ``arguments`` is a JSON string."""

    id: str
    name: str
    arguments: str = "{}"

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ChatMessage:
    role: Role
    content: str = ""
    tool_calls: Optional[list[ToolCall]] = None
    tool_call_id: Optional[str] = None

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the OpenAI chat-completions message format."""
        data: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_api_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        return data


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: Optional[TokenUsage]) -> None:
        if other is None:
            return
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens

    def copy(self) -> TokenUsage:
        return TokenUsage(self.prompt_tokens, self.completion_tokens, self.total_tokens)


@dataclass
class ChatOptions:
    temperature: float = 0.7
    max_tokens: int = 2048
    tools: Optional[list[dict[str, Any]]] = None
    cancel_token: Optional[CancelToken] = None

    def without_tools(self) -> ChatOptions:
        return ChatOptions(
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            tools=None,
            cancel_token=self.cancel_token,
        )


@dataclass
class ChatResponse:
    content: str = ""
    tool_calls: Optional[list[ToolCall]] = None
    finish_reason: str = "stop"  # "stop" | "length" | "tool_calls" | "error"
    usage: Optional[TokenUsage] = None


@dataclass
class ChatStreamChunk:
    """Incremental piece of a streamed response; usage arrives on the final chunk."""

    content: str = ""
    tool_calls: Optional[list[ToolCall]] = None
    is_finished: bool = False
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None


@dataclass
class ToolOutcome:
    success: bool
    result: Any = None
    error: Optional[str] = None


@dataclass
class AgentResult:
    content: str = ""
    tools_used: list[str] = field(default_factory=list)
    tool_rounds: int = 0
    total_usage: TokenUsage = field(default_factory=TokenUsage)


StreamChunkType = Literal["content", "tool_start", "tool_result", "done", "error"]


@dataclass
class AgentStreamChunk:
    type: StreamChunkType
    content: Optional[str] = None
    tool_name: Optional[str] = None
    tool_params: Optional[dict[str, Any]] = None
    tool_result: Any = None
    error: Optional[str] = None
    is_finished: bool = False
    usage: Optional[TokenUsage] = None
