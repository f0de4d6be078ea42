"""Shared helpers for logging CLI invocations and tool events.

Argv lines and tool inputs can carry prompts, system prompts and secrets.
This module centralizes:
- env-based gating of verbose output logging
- redaction of argv values (prompt, system prompt, images)
- redaction of sensitive keys in tool inputs
"""

from __future__ import annotations

import json
import os
from typing import Sequence

from cliagent.runners.backends.models import BackendDescriptor

_REDACT_KEYS = ("key", "token", "secret", "password", "auth", "cookie")


def should_log_output() -> bool:
    return os.getenv("CLIAGENT_LOG_OUTPUT", "").lower() in {"1", "true", "yes"}


def tool_input_max_len() -> int:
    return int(os.getenv("CLIAGENT_LOG_TOOL_INPUT_MAX", "2000"))


def redact_tool_input(obj: object) -> object:
    if isinstance(obj, dict):
        out: dict[object, object] = {}
        for k, v in obj.items():
            ks = str(k).lower()
            if any(rk in ks for rk in _REDACT_KEYS):
                out[k] = "[REDACTED]"
            else:
                out[k] = redact_tool_input(v)
        return out
    if isinstance(obj, list):
        return [redact_tool_input(x) for x in obj]
    return obj


def format_tool_input_preview(tool: str | None, raw_input: object) -> str | None:
    """Return a short, human-readable tool input preview (redacted if needed)."""

    if raw_input is None:
        return None

    name = (tool or "").lower()
    if name == "bash" and isinstance(raw_input, dict):
        cmd = raw_input.get("command")
        if isinstance(cmd, str) and cmd.strip():
            return cmd.strip()[: tool_input_max_len()]

    if name in {"read", "write", "edit"} and isinstance(raw_input, dict):
        fp = raw_input.get("filePath") or raw_input.get("file_path")
        if isinstance(fp, str) and fp:
            return fp

    if isinstance(raw_input, str):
        try:
            raw_input = json.loads(raw_input)
        except json.JSONDecodeError:
            return raw_input[: tool_input_max_len()]

    redacted = redact_tool_input(raw_input)
    preview = json.dumps(redacted, ensure_ascii=True, sort_keys=True, default=str)
    return preview[: tool_input_max_len()]


def redact_argv(
    descriptor: BackendDescriptor,
    args: Sequence[str],
    *,
    prompt_arg: str | None = None,
) -> str:
    """Render ``command args`` with prompt and system prompt replaced by sizes."""
    out: list[str] = []
    i = 0
    while i < len(args):
        arg = args[i]
        value = args[i + 1] if i + 1 < len(args) else ""
        if arg == descriptor.system_prompt_arg:
            out += [arg, f"<systemPrompt:{len(value)} chars>"]
            i += 2
            continue
        if arg == descriptor.image_arg:
            out += [arg, "<image>"]
            i += 2
            continue
        if arg in (descriptor.session_arg, descriptor.model_arg):
            out += [arg, value]
            i += 2
            continue
        if prompt_arg is not None and arg == prompt_arg:
            out.append(f"<prompt:{len(arg)} chars>")
        else:
            out.append(arg)
        i += 1
    return " ".join([descriptor.command, *out])
