"""Projection of raw stream-json records into client-facing events.

The agent CLI emits one JSON object per line with a ``type`` tag
(``system``, ``assistant``, ``user``, ``result``) and nested content
blocks. Records are classified into a closed set of kinds first; each
kind has exactly one projector. Anything unrecognised lands in
``RecordKind.UNKNOWN`` and projects to nothing.

Text is truncated so that arbitrarily verbose transcripts stay cheap to
poll. The untouched raw records remain available through replay.
"""
from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

DEFAULT_MAX_CHARS = 2000
RESULT_MAX_CHARS = 4000


class RecordKind(str, Enum):
    SYSTEM = "system"
    ASSISTANT = "assistant"
    USER = "user"
    RESULT = "result"
    UNKNOWN = "unknown"


_KIND_BY_TAG = {kind.value: kind for kind in RecordKind if kind is not RecordKind.UNKNOWN}


@dataclass
class NormalizedEvent:
    """Base normalized event. ``type`` is the wire tag."""
    type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class AssistantText(NormalizedEvent):
    type: str = "assistant"
    text: str = ""


@dataclass
class ToolInvocation(NormalizedEvent):
    type: str = "tool_use"
    tool: str = ""
    input: str = ""


@dataclass
class ToolResult(NormalizedEvent):
    type: str = "tool_result"
    output: str = ""


@dataclass
class Completion(NormalizedEvent):
    type: str = "complete"
    result: str = ""
    duration_ms: float | None = None
    cost: float | None = None


def truncate(text: str, max_len: int = DEFAULT_MAX_CHARS) -> str:
    """Cut *text* to *max_len* chars, appending how much was dropped."""
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[:max_len] + f"\n... (truncated, {len(text) - max_len} more chars)"


def classify(raw: Any) -> RecordKind:
    """Map a raw record onto its kind without raising."""
    if not isinstance(raw, dict):
        return RecordKind.UNKNOWN
    tag = raw.get("type")
    if not isinstance(tag, str):
        return RecordKind.UNKNOWN
    return _KIND_BY_TAG.get(tag, RecordKind.UNKNOWN)


def _content_blocks(raw: dict[str, Any]) -> list[dict[str, Any]]:
    message = raw.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _stringify_input(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    try:
        return json.dumps(value, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)


def _tool_result_text(content: Any) -> str:
    """Tool results carry either a string or a list of content blocks."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and isinstance(block.get("text"), str):
                parts.append(block["text"])
            elif isinstance(block, str):
                parts.append(block)
        if parts:
            return "\n".join(parts)
    return _stringify_input(content)


def _number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return None


def _project_nothing(raw: dict[str, Any]) -> list[NormalizedEvent]:
    return []


def _project_assistant(raw: dict[str, Any]) -> list[NormalizedEvent]:
    events: list[NormalizedEvent] = []
    for block in _content_blocks(raw):
        block_type = block.get("type")
        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text:
                events.append(AssistantText(text=text))
        elif block_type == "tool_use":
            name = block.get("name")
            if isinstance(name, str) and name:
                events.append(
                    ToolInvocation(
                        tool=name,
                        input=truncate(_stringify_input(block.get("input"))),
                    )
                )
    return events


def _project_user(raw: dict[str, Any]) -> list[NormalizedEvent]:
    return [
        ToolResult(output=truncate(_tool_result_text(block.get("content"))))
        for block in _content_blocks(raw)
        if block.get("type") == "tool_result"
    ]


def _project_result(raw: dict[str, Any]) -> list[NormalizedEvent]:
    result = raw.get("result")
    return [
        Completion(
            result=truncate(result if isinstance(result, str) else "", RESULT_MAX_CHARS),
            duration_ms=_number(raw.get("duration_ms")),
            cost=_number(raw.get("total_cost_usd")),
        )
    ]


_PROJECTORS: dict[RecordKind, Callable[[dict[str, Any]], list[NormalizedEvent]]] = {
    RecordKind.SYSTEM: _project_nothing,
    RecordKind.ASSISTANT: _project_assistant,
    RecordKind.USER: _project_user,
    RecordKind.RESULT: _project_result,
    RecordKind.UNKNOWN: _project_nothing,
}


def normalize_event(raw: Any) -> list[NormalizedEvent]:
    """Project one raw record into zero or more normalized events."""
    return _PROJECTORS[classify(raw)](raw)


def normalize_events(
    raw_events: list[dict[str, Any]],
    from_index: int = 0,
) -> list[NormalizedEvent]:
    """Flatten normalized events for the raw log starting at *from_index*."""
    out: list[NormalizedEvent] = []
    for raw in raw_events[max(from_index, 0):]:
        out.extend(normalize_event(raw))
    return out
