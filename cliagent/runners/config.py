"""Runner configuration.

Configuration lives at the adapter boundary so higher-level code doesn't grow a
dependency on CliRunner's internal constructor signature. Loading config files
is the application's job; this module only shapes what it hands over.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from cliagent.runners.backends import (
    BUILTIN_BACKENDS,
    BackendDescriptor,
    DEFAULT_BACKEND_ID,
    BackendOverride,
    normalize_backend_id,
)

SKIP_PERMISSIONS_FLAG = "--dangerously-skip-permissions"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    return float(value)


@dataclass(frozen=True)
class CliModeConfig:
    """Global toggle selecting the CLI runner over the embedded one."""

    enabled: bool = False
    path: str | None = None
    flags: tuple[str, ...] = ()
    skip_permissions: bool = False
    backend: str = DEFAULT_BACKEND_ID

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "CliModeConfig":
        return cls(
            enabled=bool(data.get("enabled", False)),
            path=data.get("path") or None,
            flags=tuple(data.get("flags") or ()),
            skip_permissions=bool(data.get("skip_permissions", data.get("skipPermissions", False))),
            backend=data.get("backend") or DEFAULT_BACKEND_ID,
        )


@dataclass(frozen=True)
class RunnerConfig:
    backends: Mapping[str, BackendOverride] = field(default_factory=dict)
    cli: CliModeConfig = field(default_factory=CliModeConfig)
    default_provider: str = DEFAULT_BACKEND_ID
    default_timeout_s: float = 600.0
    kill_grace_s: float = 5.0
    log_output: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> "RunnerConfig":
        """Defaults from CLIAGENT_* environment variables."""
        cli = CliModeConfig(
            enabled=_env_bool("CLIAGENT_CLI_ENABLED"),
            path=os.getenv("CLIAGENT_CLI_PATH") or None,
            flags=tuple(os.getenv("CLIAGENT_CLI_FLAGS", "").split()),
            skip_permissions=_env_bool("CLIAGENT_CLI_SKIP_PERMISSIONS"),
        )
        values: dict[str, Any] = {
            "cli": cli,
            "default_provider": os.getenv("CLIAGENT_DEFAULT_PROVIDER", DEFAULT_BACKEND_ID),
            "default_timeout_s": _env_float("CLIAGENT_TIMEOUT_S", 600.0),
            "kill_grace_s": _env_float("CLIAGENT_KILL_GRACE_S", 5.0),
            "log_output": _env_bool("CLIAGENT_LOG_OUTPUT"),
        }
        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RunnerConfig":
        """Build from a parsed config dict (``{"backends": {...}, "cli": {...}, ...}``)."""
        backends = {
            key: value if isinstance(value, BackendOverride) else BackendOverride.from_mapping(value)
            for key, value in (data.get("backends") or {}).items()
        }
        cli = data.get("cli") or {}
        return cls(
            backends=backends,
            cli=cli if isinstance(cli, CliModeConfig) else CliModeConfig.from_mapping(cli),
            default_provider=data.get("default_provider", DEFAULT_BACKEND_ID),
            default_timeout_s=float(data.get("default_timeout_s", 600.0)),
            kill_grace_s=float(data.get("kill_grace_s", 5.0)),
            log_output=bool(data.get("log_output", False)),
        )

    def backend_overrides(self) -> dict[str, BackendOverride]:
        """Per-backend overrides with the CLI mode settings folded in."""
        overrides = {normalize_backend_id(k): v for k, v in self.backends.items()}
        if not self.cli.enabled:
            return overrides

        backend_id = normalize_backend_id(self.cli.backend)
        override = overrides.get(backend_id, BackendOverride())
        if self.cli.path:
            override = replace(override, command=self.cli.path)
        base = BUILTIN_BACKENDS.get(backend_id) or BackendDescriptor(id=backend_id, command="")
        current_args = override.args if override.args is not None else base.args
        extra = tuple(flag for flag in self.cli.flags if flag not in current_args)
        if self.cli.skip_permissions and SKIP_PERMISSIONS_FLAG not in current_args + extra:
            extra += (SKIP_PERMISSIONS_FLAG,)
        if extra:
            override = override.with_extra_args(extra, base)
        overrides[backend_id] = override
        return overrides
