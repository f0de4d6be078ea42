"""Shared runner data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union


@dataclass(frozen=True)
class ImageAttachment:
    """An image handed to the agent alongside the prompt."""

    data: bytes | str  # raw bytes or base64 text
    mime_type: str = "image/png"


@dataclass
class Usage:
    """Token counters. Fields stay None unless the backend reported them."""

    input: int | None = None
    output: int | None = None
    cache_read: int | None = None
    cache_write: int | None = None
    total: int | None = None

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.input, self.output, self.cache_read, self.cache_write, self.total)
        )


@dataclass(frozen=True)
class StreamEvent:
    """Canonical, backend-independent unit of streaming output."""

    kind: str  # text_delta | block_complete | tool_start | tool_result | session_resolved | error
    text: str = ""
    tool_id: str | None = None
    tool_name: str | None = None
    tool_input: Any = None
    is_error: bool = False
    session_id: str | None = None


TEXT_DELTA = "text_delta"
BLOCK_COMPLETE = "block_complete"
TOOL_START = "tool_start"
TOOL_RESULT = "tool_result"
SESSION_RESOLVED = "session_resolved"
ERROR = "error"


# Callbacks may be plain functions or coroutines.
Callback = Callable[[Any], Union[None, Awaitable[None]]]


@dataclass
class RunCallbacks:
    """Per-run live-update hooks."""

    on_partial_reply: Callback | None = None  # receives text
    on_block_reply: Callback | None = None  # receives text
    on_tool_start: Callback | None = None  # receives StreamEvent
    on_tool_result: Callback | None = None  # receives truncated text
    on_session_id: Callback | None = None  # receives native session id
    on_error: Callback | None = None  # receives message
    on_event: Callback | None = None  # receives every StreamEvent


@dataclass
class RunRequest:
    """One conversational turn to execute through a CLI backend."""

    session_key: str
    prompt: str
    provider: str = "claude-cli"
    model: str | None = None
    native_session_id: str | None = None
    images: list[ImageAttachment] = field(default_factory=list)
    workspace_dir: str = "."
    timeout_s: float | None = None
    extra_system_prompt: str | None = None
    run_id: str | None = None
    callbacks: RunCallbacks = field(default_factory=RunCallbacks)


@dataclass(frozen=True)
class Payload:
    text: str
    is_error: bool = False


@dataclass
class RunResult:
    """Final result from a CLI run."""

    payloads: list[Payload]
    aborted: bool
    duration_s: float
    session_id: str | None
    provider: str
    model: str
    usage: Usage | None = None
    exit_code: int | None = None

    @property
    def text(self) -> str:
        return "\n\n".join(p.text for p in self.payloads if not p.is_error)
