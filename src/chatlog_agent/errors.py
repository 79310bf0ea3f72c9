"""Exception types and user-facing error translation."""

from __future__ import annotations

import json
import math
import re
from typing import Any, Optional

_RETRY_PATTERN = re.compile(r"retry in ([0-9.]+)s", re.IGNORECASE)
_MAX_ERROR_LENGTH = 300


class ChatlogAgentError(Exception):
    """Base class for all chatlog-agent errors."""


class LLMError(ChatlogAgentError):
    """An LLM call failed; the turn cannot continue."""

    def __init__(self, message: str, status_code: Optional[int] = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.status_code = status_code
        self.cause = cause


class ToolNotFoundError(ChatlogAgentError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name


class EmbeddingConfigError(ChatlogAgentError):
    """The active embedding configuration is missing or unusable."""


class AgentCancelledError(ChatlogAgentError):
    """Raised internally when a cancel token fires inside a provider call."""


def _collect_candidates(error: BaseException | Any) -> list[Any]:
    candidates: list[Any] = [error]
    for attr in ("cause", "__cause__", "last_error"):
        nested = getattr(error, attr, None)
        if nested is not None and nested not in candidates:
            candidates.append(nested)
    nested_list = getattr(error, "errors", None)
    if isinstance(nested_list, list):
        candidates.extend(nested_list)
    return candidates


def _extract_body_message(body: Any) -> str:
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(body.get("message"), str):
            return body["message"]
        return ""
    if isinstance(body, str):
        try:
            return _extract_body_message(json.loads(body))
        except json.JSONDecodeError:
            return body
    return ""


def format_ai_error(error: BaseException | Any) -> str:
    """Translate a provider exception into a short, friendly message.

    Rate limits are recognised by HTTP 429 or quota keywords, overload by 503 or
    availability keywords. A ``retry in N s`` hint in the provider message is
    surfaced as a suggested wait.
    """
    raw_message = ""
    status_code: Optional[int] = None
    retry_seconds: Optional[int] = None

    for candidate in _collect_candidates(error):
        if isinstance(candidate, str):
            raw_message = raw_message or candidate
            continue
        code = getattr(candidate, "status_code", None)
        if isinstance(code, int):
            status_code = code
        if not raw_message:
            raw_message = _extract_body_message(getattr(candidate, "body", None))
        if not raw_message:
            message = getattr(candidate, "message", None)
            if isinstance(message, str):
                raw_message = message
        if not raw_message and isinstance(candidate, BaseException):
            raw_message = str(candidate)
        if raw_message and retry_seconds is None:
            match = _RETRY_PATTERN.search(raw_message)
            if match:
                retry_seconds = math.ceil(float(match.group(1)))

    fallback = raw_message or str(error)
    lower = fallback.lower()

    if status_code == 429 or "quota" in lower or "resource_exhausted" in lower or "rate limit" in lower:
        if retry_seconds:
            return f"Rate limit or quota exceeded. Please wait {retry_seconds} seconds and retry, or switch model/plan."
        return "Rate limit or quota exceeded. Please retry later, or switch model/plan."

    if status_code in (502, 503, 529) or "overloaded" in lower or "unavailable" in lower:
        return "The model is currently overloaded. Please retry later."

    if len(fallback) > _MAX_ERROR_LENGTH:
        return f"{fallback[:_MAX_ERROR_LENGTH]}..."
    return fallback


class ChatNotFoundError(ChatlogAgentError):
    """No imported chat database exists for the requested session id."""

    def __init__(self, session_id: str):
        super().__init__(f"Chat not found: {session_id}")
        self.session_id = session_id
