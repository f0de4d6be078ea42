"""Streaming event normalization.

Turns raw JSON-lines output from any backend into canonical StreamEvents,
using only the field paths in the backend's descriptor.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from cliagent.runners.backends.models import BackendDescriptor, ContentMapping
from cliagent.runners.models import (
    BLOCK_COMPLETE,
    ERROR,
    SESSION_RESOLVED,
    TEXT_DELTA,
    TOOL_RESULT,
    TOOL_START,
    StreamEvent,
    Usage,
)

log = logging.getLogger("cli.events")

TOOL_RESULT_MAX_CHARS = 200
TRUNCATION_MARKER = "..."

_USAGE_KEYS = ("input", "output", "cache_read", "cache_write", "total")


def get_path(payload: Any, path: str | None) -> Any:
    """Follow a dotted path through nested dicts; None when any hop is missing."""
    if not path:
        return payload
    current = payload
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def select_entries(event: dict, mapping: ContentMapping, path: str | None, match: str | None) -> list[dict]:
    """Entries at ``path`` whose discriminant equals ``match``."""
    content = get_path(event, path)
    if isinstance(content, dict):
        content = [content]
    if not isinstance(content, list):
        return []
    return [
        entry
        for entry in content
        if isinstance(entry, dict) and (match is None or entry.get(mapping.type_field) == match)
    ]


def coerce_text(value: Any) -> str:
    """Flatten tool output (string, list of text blocks, or anything else) to text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "".join(coerce_text(item) for item in value)
    if isinstance(value, dict):
        if isinstance(value.get("text"), str):
            return value["text"]
        if "content" in value:
            return coerce_text(value["content"])
    return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)


def truncate_tool_result(text: str) -> str:
    if len(text) > TOOL_RESULT_MAX_CHARS:
        return text[:TOOL_RESULT_MAX_CHARS] + TRUNCATION_MARKER
    return text


def extract_session_id(payload: dict, fields: Iterable[str]) -> str | None:
    for key in fields:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def read_usage(raw: Any, usage_fields: dict, usage: Usage | None = None) -> Usage | None:
    """Copy reported counters from ``raw`` onto ``usage``; missing ones stay untouched."""
    if not isinstance(raw, dict):
        return usage
    found: dict[str, int] = {}
    for key in _USAGE_KEYS:
        for candidate in usage_fields.get(key, ()):
            value = _as_int(raw.get(candidate))
            if value is not None:
                found[key] = value
                break
    if not found:
        return usage
    usage = usage or Usage()
    for key, value in found.items():
        setattr(usage, key, value)
    return usage


def _error_message(event: dict) -> str:
    error = event.get("error")
    if isinstance(error, dict):
        data = error.get("data")
        message = error.get("message") or (data.get("message") if isinstance(data, dict) else None)
        if message:
            return str(message)
    message = event.get("message")
    if isinstance(message, dict):
        message = message.get("message") or message.get("text")
    return str(message or error or "CLI backend reported an error")


class StreamNormalizer:
    """Per-run state machine fed one raw line at a time."""

    def __init__(self, descriptor: BackendDescriptor):
        self.descriptor = descriptor
        self.format = descriptor.streaming_format
        self.session_id: str | None = None
        self.usage: Usage | None = None
        self.result_text: str | None = None
        self.saw_result = False
        self.dropped_lines = 0
        self._buffer = ""
        self._last_block: str | None = None
        self._allowed = set(descriptor.streaming_event_types)

    def feed(self, line: str) -> list[StreamEvent]:
        line = line.strip()
        if not line:
            return []
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            self.dropped_lines += 1
            log.debug(f"Dropping non-JSON line: {line[:100]}")
            return []
        if not isinstance(event, dict):
            return []
        return self.feed_event(event)

    def feed_event(self, event: dict) -> list[StreamEvent]:
        event_type = event.get("type")
        if self._allowed and event_type not in self._allowed:
            return []

        out: list[StreamEvent] = []
        self._handle_session(event, out)
        self._handle_usage(event)

        text = self.format.text
        if text is not None:
            if event_type in text.delta_event_types:
                self._handle_delta(event, text, out)
            if event_type in text.stop_event_types:
                self._flush_block(out)
            if event_type in text.event_types:
                self._handle_message_text(event, text, out)

        tool_use = self.format.tool_use
        if tool_use is not None and event_type in tool_use.event_types:
            self._last_block = None
            self._handle_tool_use(event, tool_use, out)

        tool_result = self.format.tool_result
        if tool_result is not None and event_type in tool_result.event_types:
            self._last_block = None
            self._handle_tool_result(event, tool_result, out)

        if event_type in self.format.result_event_types:
            self._last_block = None
            self._handle_result(event, out)
        elif event_type in self.format.error_event_types:
            out.append(StreamEvent(kind=ERROR, text=_error_message(event), is_error=True))
        return out

    def finish(self) -> list[StreamEvent]:
        """Flush a block left open when the stream ended without a stop marker."""
        out: list[StreamEvent] = []
        self._flush_block(out)
        return out

    def _handle_session(self, event: dict, out: list[StreamEvent]) -> None:
        session_id = extract_session_id(event, self.descriptor.session_id_fields)
        if session_id and session_id != self.session_id:
            self.session_id = session_id
            out.append(StreamEvent(kind=SESSION_RESOLVED, session_id=session_id))

    def _handle_usage(self, event: dict) -> None:
        if self.descriptor.usage_fields:
            self.usage = read_usage(event.get("usage"), dict(self.descriptor.usage_fields), self.usage)

    def _handle_delta(self, event: dict, mapping: ContentMapping, out: list[StreamEvent]) -> None:
        delta = get_path(event, mapping.delta_path)
        if not isinstance(delta, dict):
            return
        if mapping.delta_match_type and delta.get(mapping.type_field) != mapping.delta_match_type:
            return
        chunk = delta.get(mapping.delta_text_field)
        if isinstance(chunk, str) and chunk:
            self._buffer += chunk
            out.append(StreamEvent(kind=TEXT_DELTA, text=chunk))

    def _flush_block(self, out: list[StreamEvent]) -> None:
        if not self._buffer:
            return
        block, self._buffer = self._buffer, ""
        self._last_block = block
        out.append(StreamEvent(kind=BLOCK_COMPLETE, text=block))

    def _handle_message_text(self, event: dict, mapping: ContentMapping, out: list[StreamEvent]) -> None:
        self._flush_block(out)
        for entry in select_entries(event, mapping, mapping.content_path, mapping.match_type):
            text = entry.get(mapping.text_field or "text")
            if not isinstance(text, str) or not text.strip():
                continue
            if text == self._last_block:
                # Whole message repeating the block the deltas already delivered.
                self._last_block = None
                continue
            out.append(StreamEvent(kind=TEXT_DELTA, text=text))
            out.append(StreamEvent(kind=BLOCK_COMPLETE, text=text))

    def _handle_tool_use(self, event: dict, mapping: ContentMapping, out: list[StreamEvent]) -> None:
        for entry in select_entries(event, mapping, mapping.content_path, mapping.match_type):
            name = entry.get(mapping.name_field) if mapping.name_field else None
            out.append(
                StreamEvent(
                    kind=TOOL_START,
                    tool_id=_opt_str(entry.get(mapping.id_field) if mapping.id_field else None),
                    tool_name=_opt_str(name),
                    tool_input=entry.get(mapping.input_field) if mapping.input_field else None,
                )
            )

    def _handle_tool_result(self, event: dict, mapping: ContentMapping, out: list[StreamEvent]) -> None:
        for entry in select_entries(event, mapping, mapping.content_path, mapping.match_type):
            raw = entry.get(mapping.output_field) if mapping.output_field else entry
            text = coerce_text(raw)
            if not text:
                continue
            out.append(
                StreamEvent(
                    kind=TOOL_RESULT,
                    text=truncate_tool_result(text),
                    tool_id=_opt_str(entry.get(mapping.id_field) if mapping.id_field else None),
                    is_error=bool(entry.get(mapping.is_error_field)) if mapping.is_error_field else False,
                )
            )

    def _handle_result(self, event: dict, out: list[StreamEvent]) -> None:
        self.saw_result = True
        field = self.format.result_text_field
        raw = event.get(field) if field else None
        if isinstance(raw, dict):
            raw = raw.get("text")
        text = raw if isinstance(raw, str) and raw.strip() else None
        error_field = self.format.result_error_field
        if error_field and event.get(error_field):
            out.append(StreamEvent(kind=ERROR, text=text or "CLI run failed", is_error=True))
            return
        if text is not None:
            self.result_text = text


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
