"""Pseudo-terminal transport.

Some agent CLIs only emit their streaming protocol when stdout is a terminal.
This transport gives the child a pty for stdout/stderr (one combined stream)
while stdin stays a pipe so prompts delivered on stdin still see EOF.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import os
import pty
import tty
from typing import Mapping, Sequence

from cliagent.runners.ports import LineCallback
from cliagent.runners.transport.base import DEFAULT_KILL_GRACE_S, READ_CHUNK, ManagedProcess, SpawnError

log = logging.getLogger("cli.transport")


class PtyProcess(ManagedProcess):
    """Child attached to a pty; there is no separate error channel."""

    def __init__(self, process: asyncio.subprocess.Process, master_fd: int, **kwargs):
        super().__init__(process, **kwargs)
        self._master_fd = master_fd
        self._chunks: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._closed = False

    def start(self) -> None:
        os.set_blocking(self._master_fd, False)
        self._loop.add_reader(self._master_fd, self._on_readable)
        self.start_reading(self._pump())

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, READ_CHUNK)
        except BlockingIOError:
            return
        except OSError as e:
            # Linux reports EIO on the master once every slave fd is closed.
            if e.errno != errno.EIO:
                log.debug(f"pty read failed (pid={self.pid}): {e}")
            data = b""
        if data:
            self._chunks.put_nowait(data)
            return
        self._close_master()
        self._chunks.put_nowait(None)

    async def _pump(self) -> None:
        while True:
            chunk = await self._chunks.get()
            if chunk is None:
                break
            await self.deliver_chunk(chunk)

    def _close_master(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._loop.remove_reader(self._master_fd)
        try:
            os.close(self._master_fd)
        except OSError:
            pass

    async def _finish_reading(self) -> None:
        try:
            await super()._finish_reading()
        finally:
            self._close_master()


class PtyTransport:
    """Spawns children with a pseudo-terminal for output."""

    def __init__(self, *, kill_grace_s: float = DEFAULT_KILL_GRACE_S):
        self.kill_grace_s = kill_grace_s

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None,
        env: Mapping[str, str],
        on_line: LineCallback,
    ) -> PtyProcess:
        master_fd, slave_fd = pty.openpty()
        try:
            tty.setraw(master_fd)
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=dict(env),
                start_new_session=True,
            )
        except OSError as e:
            os.close(master_fd)
            raise SpawnError(f"{argv[0]}: {e}") from e
        finally:
            # The child holds its own copy; ours would keep EOF from ever arriving.
            os.close(slave_fd)

        child = PtyProcess(process, master_fd, on_line=on_line, kill_grace_s=self.kill_grace_s)
        child.start()
        log.debug(f"Spawned pid={child.pid} via pty: {argv[0]}")
        return child
