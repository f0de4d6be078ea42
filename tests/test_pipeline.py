"""Tests for the event channel and line collector."""

import asyncio

import pytest

from cliagent.runners.models import RunCallbacks, StreamEvent
from cliagent.runners.pipeline import EventChannel, LineCollector


class TestEventChannel:
    """Test ordered delivery and close semantics."""

    @pytest.mark.asyncio
    async def test_fifo_delivery(self) -> None:
        seen: list[str] = []

        async def slow_partial(text: str) -> None:
            await asyncio.sleep(0.01)
            seen.append(f"partial:{text}")

        callbacks = RunCallbacks(on_partial_reply=slow_partial, on_block_reply=lambda t: seen.append(f"block:{t}"))
        channel = EventChannel(callbacks, label="test")

        channel.emit(StreamEvent(kind="text_delta", text="a"))
        channel.emit(StreamEvent(kind="text_delta", text="b"))
        channel.emit(StreamEvent(kind="block_complete", text="ab"))
        await channel.close()

        assert seen == ["partial:a", "partial:b", "block:ab"]

    @pytest.mark.asyncio
    async def test_nothing_after_close(self) -> None:
        events: list[StreamEvent] = []
        channel = EventChannel(RunCallbacks(on_event=events.append))

        await channel.close()
        channel.emit(StreamEvent(kind="text_delta", text="late"))
        await asyncio.sleep(0.01)
        await channel.close()

        assert events == []
        assert channel.closed is True

    @pytest.mark.asyncio
    async def test_dispatch_by_kind(self) -> None:
        calls: list[tuple[str, object]] = []
        callbacks = RunCallbacks(
            on_tool_start=lambda e: calls.append(("tool_start", e.tool_name)),
            on_tool_result=lambda t: calls.append(("tool_result", t)),
            on_session_id=lambda s: calls.append(("session", s)),
            on_error=lambda t: calls.append(("error", t)),
        )
        channel = EventChannel(callbacks)

        channel.emit(StreamEvent(kind="tool_start", tool_name="Bash"))
        channel.emit(StreamEvent(kind="tool_result", text="ok"))
        channel.emit(StreamEvent(kind="session_resolved", session_id="s-1"))
        channel.emit(StreamEvent(kind="error", text="bad", is_error=True))
        await channel.close()

        assert calls == [("tool_start", "Bash"), ("tool_result", "ok"), ("session", "s-1"), ("error", "bad")]


@pytest.mark.asyncio
async def test_line_collector() -> None:
    collector = LineCollector()
    await collector("one")
    await collector("two")
    assert collector.text == "one\ntwo"
