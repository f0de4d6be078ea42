"""Runner registry.

This provides a single place to map a mode name to its concrete runner
implementation. Callers should depend on the `Runner` port.
"""

from __future__ import annotations

import logging
from typing import Any

from cliagent.runners.config import RunnerConfig
from cliagent.runners.models import RunRequest, RunResult
from cliagent.runners.ports import Runner
from cliagent.runners.runs import DEFAULT_WAIT_TIMEOUT_S

log = logging.getLogger("cli.runner")


class RunnerRouter:
    """Sends runs to the CLI runner or the embedded one, per config.

    Control calls (abort, steering, waits) try the embedded runner first and
    fall back to the CLI runner, so a session can be addressed without
    knowing which mode started it.
    """

    def __init__(self, config: RunnerConfig, cli: Runner, embedded: Runner | None = None):
        self.config = config
        self.cli = cli
        self.embedded = embedded

    def _select(self) -> Runner:
        if self.config.cli.enabled or self.embedded is None:
            return self.cli
        return self.embedded

    def _runners(self) -> list[Runner]:
        return [r for r in (self.embedded, self.cli) if r is not None]

    async def run(self, request: RunRequest) -> RunResult:
        runner = self._select()
        log.debug(f"Routing run for session={request.session_key} to {type(runner).__name__}")
        return await runner.run(request)

    def abort(self, session_key: str) -> bool:
        return any(r.abort(session_key) for r in self._runners())

    def is_active(self, session_key: str) -> bool:
        return any(r.is_active(session_key) for r in self._runners())

    def is_streaming(self, session_key: str) -> bool:
        return any(r.is_streaming(session_key) for r in self._runners())

    def queue_message(self, session_key: str, text: str) -> bool:
        return any(r.queue_message(session_key, text) for r in self._runners())

    async def wait_for_end(self, session_key: str, timeout_s: float = DEFAULT_WAIT_TIMEOUT_S) -> bool:
        for runner in self._runners():
            if runner.is_active(session_key):
                return await runner.wait_for_end(session_key, timeout_s)
        return True


def create_runner(
    engine: str,
    *,
    config: RunnerConfig | None = None,
    embedded: Runner | None = None,
    **kwargs: Any,
) -> Runner:
    engine = (engine or "").strip().lower()
    config = config or RunnerConfig.from_env()

    if engine == "cli":
        from cliagent.runners.cli import CliRunner

        runner = CliRunner(config, **kwargs)
        if not isinstance(runner, Runner):
            raise TypeError("CLI runner does not satisfy Runner port")
        return runner

    if engine == "embedded":
        if embedded is None:
            raise ValueError("Embedded engine requested but no embedded runner was given")
        if kwargs:
            # Keep the surface area explicit; the embedded runner is built by the caller.
            raise TypeError(f"Embedded runner does not accept extra args: {sorted(kwargs.keys())}")
        return embedded

    if engine == "auto":
        from cliagent.runners.cli import CliRunner

        return RunnerRouter(config, CliRunner(config, **kwargs), embedded)

    raise ValueError(f"Unknown engine: {engine}")
