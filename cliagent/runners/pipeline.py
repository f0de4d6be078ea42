"""Shared runner pipeline helpers.

This module provides the pieces between a transport's raw lines and the
caller's live-update callbacks:
- a JSON-lines collector for non-streaming runs
- an event channel that delivers canonical events to RunCallbacks in order

The channel runs callbacks on its own task so a slow consumer never stalls
reading the child's output, and drops anything emitted after it is closed.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field

from cliagent.runners.models import (
    BLOCK_COMPLETE,
    ERROR,
    SESSION_RESOLVED,
    TEXT_DELTA,
    TOOL_RESULT,
    TOOL_START,
    Callback,
    RunCallbacks,
    StreamEvent,
)

log = logging.getLogger("cli.pipeline")


@dataclass
class LineCollector:
    """Accumulates every output line of a non-streaming run."""

    lines: list[str] = field(default_factory=list)

    async def __call__(self, line: str) -> None:
        self.lines.append(line)

    @property
    def text(self) -> str:
        return "\n".join(self.lines).strip()


_CLOSE = object()


class EventChannel:
    """Per-run FIFO delivery of StreamEvents to RunCallbacks."""

    def __init__(self, callbacks: RunCallbacks | None, *, label: str = ""):
        self.callbacks = callbacks or RunCallbacks()
        self.label = label
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._task = asyncio.create_task(self._drain())

    @property
    def closed(self) -> bool:
        return self._closed

    def emit(self, event: StreamEvent) -> None:
        if self._closed:
            log.debug(f"[{self.label}] dropping {event.kind} emitted after close")
            return
        self._queue.put_nowait(event)

    async def close(self) -> None:
        """Deliver everything already queued, then stop for good."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSE)
        await self._task

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            if event is _CLOSE:
                return
            await self._dispatch(event)

    async def _dispatch(self, event: StreamEvent) -> None:
        cb = self.callbacks
        await self._call(cb.on_event, event)
        if event.kind == TEXT_DELTA:
            await self._call(cb.on_partial_reply, event.text)
        elif event.kind == BLOCK_COMPLETE:
            await self._call(cb.on_block_reply, event.text)
        elif event.kind == TOOL_START:
            await self._call(cb.on_tool_start, event)
        elif event.kind == TOOL_RESULT:
            await self._call(cb.on_tool_result, event.text)
        elif event.kind == SESSION_RESOLVED:
            await self._call(cb.on_session_id, event.session_id)
        elif event.kind == ERROR:
            await self._call(cb.on_error, event.text)

    async def _call(self, callback: Callback | None, value: object) -> None:
        if callback is None:
            return
        try:
            result = callback(value)
            if inspect.isawaitable(result):
                await result
        except Exception:
            log.exception(f"[{self.label}] callback failed")
