"""Backend resolution.

Maps a provider id to a concrete descriptor: the built-in for that id (if any)
merged with the user's override (if any). Callers depend on the descriptor,
never on which tool is behind it.
"""

from __future__ import annotations

import logging
from dataclasses import fields, replace
from typing import Any, Mapping

from cliagent.runners.backends.defaults import BUILTIN_BACKENDS
from cliagent.runners.backends.models import (
    BackendDescriptor,
    BackendOverride,
    ContentMapping,
    StreamingFormat,
)

log = logging.getLogger("cli.backends")

Overrides = Mapping[str, "BackendOverride | Mapping[str, Any]"]

_SHALLOW_MERGED = ("env", "model_aliases", "usage_fields")


class UnknownBackendError(LookupError):
    """Raised when a provider id has no usable descriptor."""

    def __init__(self, provider: str, detail: str = "no built-in or configured backend"):
        super().__init__(f"Unknown CLI backend: {provider} ({detail})")
        self.provider = provider


def normalize_backend_id(provider: str) -> str:
    return (provider or "").strip().lower()


def _as_override(value: "BackendOverride | Mapping[str, Any]") -> BackendOverride:
    if isinstance(value, BackendOverride):
        return value
    return BackendOverride.from_mapping(value)


def pick_override(overrides: Overrides | None, backend_id: str) -> BackendOverride | None:
    if not overrides:
        return None
    # Sorted so two keys normalizing to the same id resolve the same way every time.
    for key in sorted(overrides):
        if normalize_backend_id(key) == backend_id:
            return _as_override(overrides[key])
    return None


def _merge_mapping(base: ContentMapping | None, patch: Any) -> ContentMapping | None:
    if patch is None:
        return base
    if isinstance(patch, ContentMapping):
        patch = {f.name: getattr(patch, f.name) for f in fields(ContentMapping)}
    values = {
        key: tuple(value) if isinstance(value, list) else value
        for key, value in patch.items()
    }
    if base is None:
        return ContentMapping(**values)
    return replace(base, **values)


def _merge_streaming_format(base: StreamingFormat, patch: Mapping[str, Any] | None) -> StreamingFormat:
    if not patch:
        return base
    updates: dict[str, Any] = {}
    for key, value in patch.items():
        if key in ("text", "tool_use", "tool_result"):
            updates[key] = _merge_mapping(getattr(base, key), value)
        else:
            updates[key] = tuple(value) if isinstance(value, list) else value
    return replace(base, **updates)


def merge_backend(base: BackendDescriptor, override: BackendOverride | None) -> BackendDescriptor:
    """Merge an override onto a descriptor, field by field.

    Scalars and argument lists replace; env/model_aliases/usage_fields merge
    shallowly with override precedence; clear_env is a union; streaming_format
    merges per kind and per sub-key.
    """
    if override is None:
        return base

    updates: dict[str, Any] = {}
    for f in fields(BackendOverride):
        value = getattr(override, f.name)
        if value is None:
            continue
        if f.name in _SHALLOW_MERGED:
            updates[f.name] = {**getattr(base, f.name), **value}
        elif f.name == "clear_env":
            updates[f.name] = tuple(dict.fromkeys((*base.clear_env, *value)))
        elif f.name == "streaming_format":
            updates[f.name] = _merge_streaming_format(base.streaming_format, value)
        else:
            updates[f.name] = value
    return replace(base, **updates)


def _descriptor_from_override(backend_id: str, override: BackendOverride) -> BackendDescriptor:
    blank = BackendDescriptor(id=backend_id, command="")
    return merge_backend(blank, override)


def resolve_backend(provider: str, overrides: Overrides | None = None) -> BackendDescriptor:
    """Resolve a provider id to a merged descriptor, failing closed."""
    backend_id = normalize_backend_id(provider)
    override = pick_override(overrides, backend_id)
    builtin = BUILTIN_BACKENDS.get(backend_id)

    if builtin is not None:
        merged = merge_backend(builtin, override)
    elif override is not None:
        merged = _descriptor_from_override(backend_id, override)
    else:
        raise UnknownBackendError(provider)

    command = (merged.command or "").strip()
    if not command:
        raise UnknownBackendError(provider, "empty command")
    if command != merged.command:
        merged = replace(merged, command=command)
    log.debug(f"Resolved backend {backend_id}: command={command} streaming={merged.streaming}")
    return merged


def resolve_backend_ids(overrides: Overrides | None = None) -> set[str]:
    ids = set(BUILTIN_BACKENDS)
    for key in overrides or {}:
        ids.add(normalize_backend_id(key))
    return ids


def normalize_model(model: str | None, descriptor: BackendDescriptor) -> str:
    """Map a model id through the alias table; unmapped ids pass through."""
    model_id = (model or "").strip() or "default"
    return descriptor.model_aliases.get(model_id, model_id)
