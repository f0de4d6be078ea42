"""Ports (interfaces) for runner implementations.

The rest of the system (session manager, transcript writer, live updates)
should depend on these contracts rather than concrete runners or transports.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Protocol, Sequence, runtime_checkable

from cliagent.runners.models import RunRequest, RunResult, Usage

LineCallback = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class ProcessExit:
    code: int | None
    stderr: str = ""


@runtime_checkable
class SpawnedProcess(Protocol):
    """A running child, as seen by the orchestrator."""

    pid: int | None

    def write(self, data: str) -> None:
        ...

    def close_stdin(self) -> None:
        ...

    async def wait(self) -> ProcessExit:
        ...

    def kill(self) -> None:
        ...


@runtime_checkable
class ProcessTransport(Protocol):
    """Spawns one child per run and feeds its output lines to ``on_line``."""

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None,
        env: Mapping[str, str],
        on_line: LineCallback,
    ) -> SpawnedProcess:
        ...


@runtime_checkable
class Runner(Protocol):
    """A turn runner (CLI or embedded)."""

    async def run(self, request: RunRequest) -> RunResult:
        ...

    def abort(self, session_key: str) -> bool:
        ...

    def is_active(self, session_key: str) -> bool:
        ...

    def is_streaming(self, session_key: str) -> bool:
        ...

    def queue_message(self, session_key: str, text: str) -> bool:
        ...

    async def wait_for_end(self, session_key: str, timeout_s: float = 15.0) -> bool:
        ...


class SessionBridge(Protocol):
    """Maps this system's session keys to a backend's native session ids."""

    def get(self, session_key: str) -> str | None:
        ...

    def set(self, session_key: str, native_session_id: str) -> None:
        ...


class TranscriptSink(Protocol):
    """Receives finished turns. Must serialize its own writes per session."""

    def append(
        self,
        session_key: str,
        *,
        role: str,
        text: str,
        provider: str | None = None,
        model: str | None = None,
        usage: Usage | None = None,
    ) -> object:
        ...
