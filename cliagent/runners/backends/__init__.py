"""Backend descriptors and resolution."""

from cliagent.runners.backends.defaults import BUILTIN_BACKENDS, CLAUDE_CLI, CODEX_CLI, DEFAULT_BACKEND_ID
from cliagent.runners.backends.models import (
    SESSION_ID_PLACEHOLDER,
    BackendDescriptor,
    BackendOverride,
    ContentMapping,
    StreamingFormat,
)
from cliagent.runners.backends.resolver import (
    UnknownBackendError,
    merge_backend,
    normalize_backend_id,
    normalize_model,
    resolve_backend,
    resolve_backend_ids,
)

__all__ = [
    "BUILTIN_BACKENDS",
    "CLAUDE_CLI",
    "CODEX_CLI",
    "DEFAULT_BACKEND_ID",
    "SESSION_ID_PLACEHOLDER",
    "BackendDescriptor",
    "BackendOverride",
    "ContentMapping",
    "StreamingFormat",
    "UnknownBackendError",
    "merge_backend",
    "normalize_backend_id",
    "normalize_model",
    "resolve_backend",
    "resolve_backend_ids",
]
