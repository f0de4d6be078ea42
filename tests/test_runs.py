"""Tests for RunHandle and RunRegistry."""

import asyncio

import pytest

from cliagent.runners.runs import RunHandle, RunRegistry


class StubProcess:
    pid = 1

    def __init__(self):
        self.kills = 0

    def write(self, data):
        pass

    def close_stdin(self):
        pass

    async def wait(self):
        return None

    def kill(self):
        self.kills += 1


def _handle(key: str = "main") -> RunHandle:
    return RunHandle(key, StubProcess(), backend_id="claude-cli")


class TestRunHandle:
    def test_abort_is_idempotent(self) -> None:
        handle = _handle()

        handle.abort()
        handle.abort()

        assert handle.process.kills == 1
        assert handle.aborted is True
        assert handle.is_streaming() is False

    def test_queue_message_is_noop(self) -> None:
        assert _handle().queue_message("hi") is False

    def test_mark_finished(self) -> None:
        handle = _handle()
        assert handle.is_streaming() is True
        handle.mark_finished()
        assert handle.is_streaming() is False

    def test_abort_after_finish_is_noop(self) -> None:
        handle = _handle()
        handle.mark_finished()

        handle.abort()

        assert handle.process.kills == 0
        assert handle.aborted is False


class TestRunRegistry:
    """Test registration, identity-checked clearing, and waits."""

    def test_register_and_clear(self) -> None:
        registry = RunRegistry()
        handle = _handle()

        registry.register("main", handle)
        assert registry.is_active("main")
        assert registry.is_streaming("main")
        assert registry.get("main") is handle

        assert registry.clear("main", handle) is True
        assert not registry.is_active("main")
        assert registry.is_streaming("main") is False

    def test_stale_clear_is_ignored(self) -> None:
        """A superseded run's late clear leaves the replacement in place."""
        registry = RunRegistry()
        old, new = _handle(), _handle()
        registry.register("main", old)
        registry.register("main", new)

        assert registry.clear("main", old) is False
        assert registry.get("main") is new
        assert old.process.kills == 0

    def test_abort_unknown_session(self) -> None:
        assert RunRegistry().abort("nobody") is False

    def test_abort_active_session(self) -> None:
        registry = RunRegistry()
        handle = _handle()
        registry.register("main", handle)

        assert registry.abort("main") is True
        assert handle.process.kills == 1
        assert registry.is_active("main")

    def test_queue_message_always_false(self) -> None:
        registry = RunRegistry()
        registry.register("main", _handle())
        assert registry.queue_message("main", "hello") is False
        assert registry.queue_message("nobody", "hello") is False

    @pytest.mark.asyncio
    async def test_wait_for_end_when_idle(self) -> None:
        assert await RunRegistry().wait_for_end("main") is True
        assert await RunRegistry().wait_for_end("") is True

    @pytest.mark.asyncio
    async def test_wait_for_end_resolves_on_clear(self) -> None:
        registry = RunRegistry()
        handle = _handle()
        registry.register("main", handle)

        waiters = [asyncio.create_task(registry.wait_for_end("main", 2.0)) for _ in range(2)]
        await asyncio.sleep(0)
        registry.clear("main", handle)

        assert await asyncio.gather(*waiters) == [True, True]

    @pytest.mark.asyncio
    async def test_wait_for_end_times_out(self) -> None:
        registry = RunRegistry()
        registry.register("main", _handle())

        assert await registry.wait_for_end("main", timeout_s=0.01) is False

    @pytest.mark.asyncio
    async def test_slot_is_fifo_per_backend(self) -> None:
        registry = RunRegistry()
        order: list[str] = []

        async def job(name: str, backend: str) -> None:
            async with registry.slot(backend):
                order.append(f"{name}:start")
                await asyncio.sleep(0.01)
                order.append(f"{name}:end")

        await asyncio.gather(job("a", "claude-cli"), job("b", "claude-cli"), job("c", "codex-cli"))

        assert order.index("a:end") < order.index("b:start")
        assert order.index("c:start") < order.index("a:end")
