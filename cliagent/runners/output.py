"""Parsing of non-streaming CLI output (text / single JSON / JSON-lines)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from cliagent.runners.backends.models import BackendDescriptor
from cliagent.runners.events import extract_session_id, read_usage
from cliagent.runners.models import Usage

log = logging.getLogger("cli.output")


@dataclass
class ParsedOutput:
    text: str
    session_id: str | None = None
    usage: Usage | None = None


def collect_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "".join(collect_text(item) for item in value)
    if not isinstance(value, dict):
        return ""
    if isinstance(value.get("text"), str):
        return value["text"]
    if isinstance(value.get("content"), (str, list)):
        return collect_text(value["content"])
    if isinstance(value.get("message"), dict):
        return collect_text(value["message"])
    return ""


def parse_json_output(raw: str, descriptor: BackendDescriptor) -> ParsedOutput | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        log.debug(f"{descriptor.id}: output is not JSON ({len(raw)} chars)")
        return None
    if not isinstance(parsed, dict):
        return None
    text = (
        collect_text(parsed.get("message"))
        or collect_text(parsed.get("content"))
        or collect_text(parsed.get("result"))
        or collect_text(parsed)
    )
    return ParsedOutput(
        text=text.strip(),
        session_id=extract_session_id(parsed, descriptor.session_id_fields),
        usage=read_usage(parsed.get("usage"), dict(descriptor.usage_fields)),
    )


def parse_jsonl_output(raw: str, descriptor: BackendDescriptor) -> ParsedOutput | None:
    texts: list[str] = []
    session_id: str | None = None
    usage: Usage | None = None
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(parsed, dict):
            continue
        session_id = extract_session_id(parsed, descriptor.session_id_fields) or session_id
        usage = read_usage(parsed.get("usage"), dict(descriptor.usage_fields), usage)

        item = parsed.get("item")
        if isinstance(item, dict) and isinstance(item.get("text"), str):
            item_type = str(item.get("type") or "").lower()
            if not item_type or "message" in item_type:
                texts.append(item["text"])
        elif isinstance(parsed.get("result"), str):
            texts.append(parsed["result"])

    text = "\n".join(texts).strip()
    if not text:
        return None
    return ParsedOutput(text=text, session_id=session_id, usage=usage)


def parse_output(raw: str, descriptor: BackendDescriptor, mode: str) -> ParsedOutput:
    """Parse full output per ``mode``; unparseable JSON falls back to raw text."""
    raw = raw.strip()
    if mode == "json":
        return parse_json_output(raw, descriptor) or ParsedOutput(text=raw)
    if mode == "jsonl":
        return parse_jsonl_output(raw, descriptor) or ParsedOutput(text=raw)
    return ParsedOutput(text=raw)
