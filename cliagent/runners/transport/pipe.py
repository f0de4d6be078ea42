"""Pipe-based transport: separate stdout/stderr streams."""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping, Sequence

from cliagent.runners.ports import LineCallback
from cliagent.runners.transport.base import (
    DEFAULT_KILL_GRACE_S,
    READ_CHUNK,
    STDERR_LIMIT,
    ManagedProcess,
    SpawnError,
)

log = logging.getLogger("cli.transport")


class PipeProcess(ManagedProcess):
    """Child whose stdout is parsed line by line and whose stderr is kept aside."""

    def __init__(self, process: asyncio.subprocess.Process, **kwargs):
        super().__init__(process, **kwargs)
        self._stderr = bytearray()
        self._stderr_task: asyncio.Task | None = None

    def start(self) -> None:
        self.start_reading(self._pump_stdout())
        self._stderr_task = asyncio.create_task(self._pump_stderr())

    async def _pump_stdout(self) -> None:
        stream = self._process.stdout
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            await self.deliver_chunk(chunk)

    async def _pump_stderr(self) -> None:
        stream = self._process.stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK)
            if not chunk:
                break
            self._stderr.extend(chunk)
            if len(self._stderr) > STDERR_LIMIT:
                # Keep the tail; the last lines usually carry the error.
                del self._stderr[: len(self._stderr) - STDERR_LIMIT]

    async def _finish_reading(self) -> None:
        await super()._finish_reading()
        if self._stderr_task is not None:
            try:
                await asyncio.wait_for(self._stderr_task, timeout=self._kill_grace_s)
            except asyncio.TimeoutError:
                log.debug(f"stderr of pid={self.pid} still open after exit")

    def stderr_text(self) -> str:
        return self._stderr.decode(errors="replace").strip()


class PipeTransport:
    """Spawns children with plain pipes."""

    def __init__(self, *, kill_grace_s: float = DEFAULT_KILL_GRACE_S):
        self.kill_grace_s = kill_grace_s

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None,
        env: Mapping[str, str],
        on_line: LineCallback,
    ) -> PipeProcess:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=dict(env),
                start_new_session=True,
            )
        except OSError as e:
            raise SpawnError(f"{argv[0]}: {e}") from e

        child = PipeProcess(process, on_line=on_line, kill_grace_s=self.kill_grace_s)
        child.start()
        log.debug(f"Spawned pid={child.pid} via pipes: {argv[0]}")
        return child
