"""Tagged-text fallback protocol for models without native tool calling.

Some models answer in plain text, wrapping hidden reasoning in
``<think>...</think>`` and tool requests in
``<tool_call>{"name": ..., "arguments": ...}</tool_call>``. Detection is a
best-effort regex scan; prose that happens to contain a literal tag will be
treated as one.
"""

from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from chatlog_agent.ai.types import ToolCall
from chatlog_agent.log import get_logger

logger = get_logger(__name__)

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"
TOOL_CALL_OPEN = "<tool_call>"

_THINK_BLOCK_RE = re.compile(r"<think>([\s\S]*?)</think>", re.IGNORECASE)
_UNCLOSED_THINK_RE = re.compile(r"<think>([\s\S]*)$", re.IGNORECASE)
_TOOL_CALL_BLOCK_RE = re.compile(r"<tool_call>\s*([\s\S]*?)\s*</tool_call>", re.IGNORECASE)
_TOOL_CALL_OPEN_RE = re.compile(r"<tool_call>", re.IGNORECASE)
_OPENER_RE = re.compile(r"<think>|<tool_call>", re.IGNORECASE)
_THINK_CLOSE_RE = re.compile(r"</think>", re.IGNORECASE)


def strip_thinking(content: str) -> str:
    """Remove thinking blocks (and a dangling unclosed one) without trimming."""
    return _UNCLOSED_THINK_RE.sub("", _THINK_BLOCK_RE.sub("", content))


def extract_thinking(content: str) -> tuple[str, str]:
    """Split ``content`` into ``(thinking, clean_content)``, both trimmed."""
    parts = [m.group(1).strip() for m in _THINK_BLOCK_RE.finditer(content)]
    dangling = _UNCLOSED_THINK_RE.search(_THINK_BLOCK_RE.sub("", content))
    if dangling:
        parts.append(dangling.group(1).strip())
    return "\n".join(p for p in parts if p), strip_thinking(content).strip()


def has_tool_call_tags(content: str) -> bool:
    return bool(_TOOL_CALL_OPEN_RE.search(content))


def strip_tool_call_blocks(content: str) -> str:
    return _TOOL_CALL_BLOCK_RE.sub("", content)


def parse_tool_call_tags(content: str) -> list[ToolCall]:
    """Build tool calls from every well-formed ``<tool_call>`` block.

    A block must hold a JSON object with a ``name`` and ``arguments``; object
    arguments are re-serialized to a JSON string. Malformed blocks are logged
    and skipped.
    """
    calls: list[ToolCall] = []
    for match in _TOOL_CALL_BLOCK_RE.finditer(content):
        raw = match.group(1).strip()
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("tool_call_tag_parse_failed", content=raw[:200], error=str(e))
            continue
        if not isinstance(parsed, dict):
            continue
        name = parsed.get("name")
        arguments = parsed.get("arguments")
        if not name or arguments is None:
            continue
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        calls.append(ToolCall(id=f"fallback-{uuid.uuid4()}", name=str(name), arguments=arguments))
    return calls


def _partial_opener_length(text: str) -> int:
    """Length of the longest suffix of ``text`` that could still grow into an opening tag."""
    lower = text[-len(TOOL_CALL_OPEN):].lower()
    longest = 0
    for tag in (TOOL_CALL_OPEN, THINK_OPEN):
        for size in range(min(len(tag) - 1, len(lower)), longest, -1):
            if lower.endswith(tag[:size]):
                longest = size
                break
    return longest


@dataclass
class StreamOutcome:
    """What a finished stream resolved to.

    ``tail`` is visible text that was held back while it looked like the
    start of a tag and still has to be emitted.
    """

    content: str
    tool_calls: Optional[list[ToolCall]] = None
    tail: str = ""


class StreamReconciler:
    """Separates user-visible text from thinking and tool-call regions of a stream.

    Matching runs over the cumulative buffer, so tags split across deltas are
    recognised. Text that might be the beginning of a tag is held back until
    the next delta decides it.
    """

    def __init__(self) -> None:
        self.buffer = ""
        self.emitted = ""
        self._cursor = 0
        self._in_think = False
        self._in_tool_call = False

    @property
    def in_tool_call(self) -> bool:
        return self._in_tool_call

    def feed(self, delta: str) -> str:
        """Append a delta and return the text that may be shown now."""
        self.buffer += delta
        out: list[str] = []

        while not self._in_tool_call:
            if self._in_think:
                close = _THINK_CLOSE_RE.search(self.buffer, self._cursor)
                if close is None:
                    break
                self._cursor = close.end()
                self._in_think = False
                continue

            opener = _OPENER_RE.search(self.buffer, self._cursor)
            if opener is not None:
                out.append(self.buffer[self._cursor:opener.start()])
                if opener.group(0).lower() == THINK_OPEN:
                    self._in_think = True
                    self._cursor = opener.end()
                else:
                    self._in_tool_call = True
                    self._cursor = opener.start()
                continue

            pending = self.buffer[self._cursor:]
            safe_end = len(self.buffer) - _partial_opener_length(pending)
            out.append(self.buffer[self._cursor:safe_end])
            self._cursor = safe_end
            break

        visible = "".join(out)
        self.emitted += visible
        return visible

    def finish(self) -> StreamOutcome:
        """Resolve the complete buffer into tool calls or a final answer."""
        if has_tool_call_tags(self.buffer):
            calls = parse_tool_call_tags(self.buffer)
            if calls:
                _, clean = extract_thinking(self.buffer)
                return StreamOutcome(content=strip_tool_call_blocks(clean).strip(), tool_calls=calls)

        visible = strip_thinking(self.buffer)
        tail = visible[len(self.emitted):] if visible.startswith(self.emitted) else ""
        self.emitted += tail
        self._cursor = len(self.buffer)
        return StreamOutcome(content=visible.strip(), tail=tail)
