"""Active-run registry and per-backend serialization.

Process-wide state, empty at import and never torn down before exit:
- the active handle per session key
- the "wait for end" futures per session key
- one FIFO lock per serialized backend id

All mutation goes through RunRegistry methods. ``clear`` compares handles by
identity, so a late finalize from a superseded run cannot remove the run that
replaced it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import AsyncIterator

from cliagent.runners.ports import SpawnedProcess

log = logging.getLogger("cli.runs")

DEFAULT_WAIT_TIMEOUT_S = 15.0
MIN_WAIT_TIMEOUT_S = 0.1


class RunHandle:
    """Owns one run's child process for the lifetime of that run."""

    def __init__(self, session_key: str, process: SpawnedProcess, *, backend_id: str = ""):
        self.session_key = session_key
        self.process = process
        self.backend_id = backend_id
        self.aborted = False
        self._streaming = True
        self._finished = False

    def abort(self) -> None:
        """Kill the child. Safe to call repeatedly; a no-op once the run has finished."""
        if self.aborted or self._finished:
            return
        self.aborted = True
        self._streaming = False
        log.debug(f"Aborting run for session={self.session_key}")
        self.process.kill()

    def is_streaming(self) -> bool:
        return self._streaming

    def mark_finished(self) -> None:
        self._finished = True
        self._streaming = False

    def queue_message(self, text: str) -> bool:
        # CLI backends cannot take input mid-run; callers start a follow-up run.
        return False


class RunRegistry:
    """Tracks at most one active run per session key."""

    def __init__(self) -> None:
        self._active: dict[str, RunHandle] = {}
        self._waiters: dict[str, set[asyncio.Future]] = {}
        self._slots: dict[str, asyncio.Lock] = {}

    def register(self, session_key: str, handle: RunHandle) -> None:
        previous = self._active.get(session_key)
        self._active[session_key] = handle
        if previous is not None and previous is not handle:
            log.info(f"Run replaced: session={session_key} (previous run left to its owner)")
        else:
            log.debug(f"Run registered: session={session_key} total={len(self._active)}")

    def clear(self, session_key: str, handle: RunHandle) -> bool:
        if self._active.get(session_key) is not handle:
            log.debug(f"Clear skipped: session={session_key} reason=handle_mismatch")
            return False
        del self._active[session_key]
        log.debug(f"Run cleared: session={session_key} total={len(self._active)}")
        self._notify_ended(session_key)
        return True

    def get(self, session_key: str) -> RunHandle | None:
        return self._active.get(session_key)

    def is_active(self, session_key: str) -> bool:
        return session_key in self._active

    def is_streaming(self, session_key: str) -> bool:
        handle = self._active.get(session_key)
        return handle.is_streaming() if handle else False

    def abort(self, session_key: str) -> bool:
        handle = self._active.get(session_key)
        if handle is None:
            log.debug(f"Abort failed: session={session_key} reason=no_active_run")
            return False
        handle.abort()
        return True

    def queue_message(self, session_key: str, text: str) -> bool:
        log.debug(f"Queue unsupported: session={session_key} chars={len(text)}")
        return False

    async def wait_for_end(self, session_key: str, timeout_s: float = DEFAULT_WAIT_TIMEOUT_S) -> bool:
        """True once the session has no active run; False if the timeout wins."""
        if not session_key or session_key not in self._active:
            return True
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._waiters.setdefault(session_key, set()).add(waiter)
        try:
            await asyncio.wait_for(asyncio.shield(waiter), timeout=max(MIN_WAIT_TIMEOUT_S, timeout_s))
            return True
        except asyncio.TimeoutError:
            log.warning(f"Wait for run end timed out: session={session_key}")
            return False
        finally:
            waiters = self._waiters.get(session_key)
            if waiters is not None:
                waiters.discard(waiter)
                if not waiters:
                    del self._waiters[session_key]

    def _notify_ended(self, session_key: str) -> None:
        waiters = self._waiters.pop(session_key, None)
        if not waiters:
            return
        log.debug(f"Notifying {len(waiters)} waiter(s): session={session_key}")
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(True)

    @contextlib.asynccontextmanager
    async def slot(self, backend_id: str) -> AsyncIterator[None]:
        """Exclusive, first-come-first-served execution slot for one backend."""
        lock = self._slots.setdefault(backend_id, asyncio.Lock())
        if lock.locked():
            log.debug(f"Waiting for {backend_id} slot")
        async with lock:
            yield


ACTIVE_RUNS = RunRegistry()
