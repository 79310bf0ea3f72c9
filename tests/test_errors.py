from __future__ import annotations

from chatlog_agent.errors import LLMError, format_ai_error


class ProviderError(Exception):
    def __init__(self, status_code: int, body: dict):
        super().__init__("provider error")
        self.status_code = status_code
        self.body = body


def test_rate_limit_with_retry_hint():
    error = ProviderError(429, {"error": {"message": "Quota exceeded, please retry in 12.3s"}})
    assert format_ai_error(error) == (
        "Rate limit or quota exceeded. Please wait 13 seconds and retry, or switch model/plan."
    )


def test_rate_limit_detected_from_nested_cause():
    wrapper = LLMError("request failed", cause=ProviderError(429, {"message": "slow down"}))
    assert format_ai_error(wrapper).startswith("Rate limit or quota exceeded.")


def test_overloaded():
    assert format_ai_error(LLMError("Service Unavailable", status_code=503)) == (
        "The model is currently overloaded. Please retry later."
    )


def test_other_errors_are_truncated():
    message = "x" * 400
    formatted = format_ai_error(RuntimeError(message))
    assert formatted == "x" * 300 + "..."
    assert format_ai_error(RuntimeError("invalid model name")) == "invalid model name"
