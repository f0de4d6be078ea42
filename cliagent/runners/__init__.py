"""CLI runners for code agents."""

from cliagent.runners.backends import BackendDescriptor, UnknownBackendError, resolve_backend
from cliagent.runners.cli import CliRunner, run_cli_agent
from cliagent.runners.config import CliModeConfig, RunnerConfig
from cliagent.runners.failover import FailoverError
from cliagent.runners.models import (
    ImageAttachment,
    Payload,
    RunCallbacks,
    RunRequest,
    RunResult,
    StreamEvent,
    Usage,
)
from cliagent.runners.ports import Runner
from cliagent.runners.registry import RunnerRouter, create_runner
from cliagent.runners.runs import ACTIVE_RUNS, RunHandle, RunRegistry

__all__ = [
    "ACTIVE_RUNS",
    "BackendDescriptor",
    "CliModeConfig",
    "CliRunner",
    "FailoverError",
    "ImageAttachment",
    "Payload",
    "RunCallbacks",
    "RunHandle",
    "RunRegistry",
    "RunRequest",
    "RunResult",
    "Runner",
    "RunnerConfig",
    "RunnerRouter",
    "StreamEvent",
    "UnknownBackendError",
    "Usage",
    "create_runner",
    "resolve_backend",
    "run_cli_agent",
]
