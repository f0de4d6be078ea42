"""Process transports: one child per run, output delivered as lines."""

from cliagent.runners.transport.base import DEFAULT_KILL_GRACE_S, ManagedProcess, SpawnError
from cliagent.runners.transport.lines import LineSplitter
from cliagent.runners.transport.pipe import PipeProcess, PipeTransport
from cliagent.runners.transport.terminal import PtyProcess, PtyTransport

__all__ = [
    "DEFAULT_KILL_GRACE_S",
    "LineSplitter",
    "ManagedProcess",
    "PipeProcess",
    "PipeTransport",
    "PtyProcess",
    "PtyTransport",
    "SpawnError",
]
