"""Abstract tool interface for LLM function calling."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Optional

from chatlog_agent.storage.models import TimeFilter


@dataclass(frozen=True)
class OwnerInfo:
    """Who "I" am inside the analysed chat."""

    display_name: str
    platform_id: str


@dataclass(frozen=True)
class ToolContext:
    """Per-turn, read-only inputs shared by every tool call."""

    session_id: str
    owner_info: Optional[OwnerInfo] = None
    time_filter: Optional[TimeFilter] = None
    max_messages_limit: Optional[int] = None
    locale: str = "zh-CN"

    def with_locale(self, locale: str) -> ToolContext:
        return replace(self, locale=locale)


class Tool(ABC):
    """Base class for all model-callable tools."""

    # Tools whose ``limit`` is overridden by the user's max_messages_limit.
    honors_message_limit: bool = False
    # Tools that receive the context's default time filter when none is given.
    uses_default_time_filter: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the model."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the model."""
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        ...

    @abstractmethod
    async def execute(self, params: dict[str, Any], context: ToolContext) -> Any:
        """Run the tool and return a JSON-serializable result for the model."""
        ...

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the OpenAI function-calling tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
