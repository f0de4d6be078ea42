"""Shared child-process supervision for the pipe and pty transports."""

from __future__ import annotations

import asyncio
import logging
import os
import signal

from cliagent.runners.ports import LineCallback, ProcessExit
from cliagent.runners.transport.lines import LineSplitter

log = logging.getLogger("cli.transport")

DEFAULT_KILL_GRACE_S = 5.0
STDERR_LIMIT = 64 * 1024
READ_CHUNK = 64 * 1024


class SpawnError(RuntimeError):
    """The child process could not be started."""


class ManagedProcess:
    """A spawned child plus the task that turns its output into lines.

    ``kill()`` is idempotent: the first call sends SIGTERM to the child's
    process group and arms a SIGKILL for ``kill_grace_s`` later; every other
    call, including calls after exit, does nothing.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        on_line: LineCallback,
        kill_grace_s: float = DEFAULT_KILL_GRACE_S,
    ):
        self._process = process
        self._on_line = on_line
        self._kill_grace_s = kill_grace_s
        self._loop = asyncio.get_running_loop()
        self._splitter = LineSplitter()
        self._reader: asyncio.Task | None = None
        self._kill_requested = False
        self._escalation: asyncio.TimerHandle | None = None
        self._exit: ProcessExit | None = None
        self.kill_count = 0

    @property
    def pid(self) -> int | None:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    def start_reading(self, reader) -> None:
        self._reader = asyncio.create_task(reader)

    async def deliver_chunk(self, chunk: bytes) -> None:
        for line in self._splitter.feed(chunk):
            await self._deliver(line)

    async def deliver_tail(self) -> None:
        tail = self._splitter.flush()
        if tail is not None:
            await self._deliver(tail)

    async def _deliver(self, line: str) -> None:
        try:
            await self._on_line(line)
        except Exception:
            log.exception(f"Line handler failed (pid={self.pid})")

    def write(self, data: str) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            return
        try:
            stdin.write(data.encode())
        except (BrokenPipeError, ConnectionResetError) as e:
            log.debug(f"stdin write failed (pid={self.pid}): {e}")

    def close_stdin(self) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            return
        try:
            stdin.close()
        except (BrokenPipeError, ConnectionResetError) as e:
            log.debug(f"stdin close failed (pid={self.pid}): {e}")

    def kill(self) -> None:
        if self._kill_requested:
            return
        self._kill_requested = True
        if self._process.returncode is not None:
            return
        self.kill_count += 1
        log.debug(f"Terminating pid={self.pid}")
        self._signal(signal.SIGTERM)
        self._escalation = self._loop.call_later(self._kill_grace_s, self._force_kill)

    def _force_kill(self) -> None:
        if self._process.returncode is None:
            log.warning(f"pid={self.pid} ignored SIGTERM for {self._kill_grace_s}s, sending SIGKILL")
            self._signal(signal.SIGKILL)

    def _signal(self, sig: int) -> None:
        try:
            os.killpg(os.getpgid(self._process.pid), sig)
        except ProcessLookupError:
            return
        except OSError:
            try:
                self._process.send_signal(sig)
            except ProcessLookupError:
                pass

    def stderr_text(self) -> str:
        return ""

    async def wait(self) -> ProcessExit:
        if self._exit is not None:
            return self._exit
        code = await self._process.wait()
        if self._escalation is not None:
            self._escalation.cancel()
        await self._finish_reading()
        self._exit = ProcessExit(code=code, stderr=self.stderr_text())
        return self._exit

    async def _finish_reading(self) -> None:
        """Let the reader hit EOF, bounded in case a grandchild holds the stream open."""
        if self._reader is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._reader), timeout=self._kill_grace_s)
            except asyncio.TimeoutError:
                log.warning(f"Output of pid={self.pid} still open after exit; closing it")
                self._reader.cancel()
                try:
                    await self._reader
                except asyncio.CancelledError:
                    pass
            except Exception:
                log.exception(f"Output reader for pid={self.pid} failed")
        await self.deliver_tail()
