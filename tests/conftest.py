"""Shared fixtures: scripted fake transports and fresh registries."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import pytest

from cliagent.runners.cli import CliRunner
from cliagent.runners.config import RunnerConfig
from cliagent.runners.ports import LineCallback, ProcessExit
from cliagent.runners.runs import RunRegistry
from cliagent.runners.transport import SpawnError


@dataclass
class Script:
    """What one fake child prints and how it exits."""

    lines: Sequence[Any] = ()
    code: int = 0
    stderr: str = ""
    hang: bool = False
    spawn_error: str | None = None


class FakeProcess:
    def __init__(self, script: Script, on_line: LineCallback):
        self.pid = 4242
        self.script = script
        self.on_line = on_line
        self.written: list[str] = []
        self.stdin_closed = False
        self.kill_calls = 0
        self._killed = asyncio.Event()

    def write(self, data: str) -> None:
        self.written.append(data)

    def close_stdin(self) -> None:
        self.stdin_closed = True

    def kill(self) -> None:
        self.kill_calls += 1
        self._killed.set()

    async def wait(self) -> ProcessExit:
        for line in self.script.lines:
            await self.on_line(line if isinstance(line, str) else json.dumps(line))
        if self.script.hang:
            await self._killed.wait()
            return ProcessExit(code=-15, stderr=self.script.stderr)
        return ProcessExit(code=self.script.code, stderr=self.script.stderr)


@dataclass
class Spawn:
    argv: list[str]
    cwd: str | None
    env: dict[str, str]
    process: FakeProcess


@dataclass
class FakeTransport:
    scripts: list[Script] = field(default_factory=list)
    spawns: list[Spawn] = field(default_factory=list)

    async def spawn(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None,
        env: Mapping[str, str],
        on_line: LineCallback,
    ) -> FakeProcess:
        script = self.scripts.pop(0) if self.scripts else Script()
        if script.spawn_error:
            raise SpawnError(script.spawn_error)
        process = FakeProcess(script, on_line)
        self.spawns.append(Spawn(list(argv), cwd, dict(env), process))
        return process

    @property
    def last(self) -> Spawn:
        return self.spawns[-1]


@pytest.fixture
def registry() -> RunRegistry:
    return RunRegistry()


@pytest.fixture
def make_runner(registry):
    """Build a CliRunner around a FakeTransport that plays the given scripts."""

    def factory(*scripts: Script, config: RunnerConfig | None = None, **kwargs):
        transport = FakeTransport(list(scripts))
        runner = CliRunner(
            config or RunnerConfig(),
            registry=registry,
            transport=transport,
            reap_stale=False,
            **kwargs,
        )
        return runner, transport

    return factory


async def wait_until(predicate, timeout_s: float = 2.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout_s
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)
