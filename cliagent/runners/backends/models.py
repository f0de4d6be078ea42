"""Declarative backend descriptors.

A descriptor says how to invoke one external agent CLI and how to read what it
prints. Adding a backend means writing one of these, not new parsing code.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Mapping

SESSION_ID_PLACEHOLDER = "{sessionId}"


@dataclass(frozen=True)
class ContentMapping:
    """Field paths that pick one kind of entry out of a raw event."""

    event_types: tuple[str, ...] = ()
    content_path: str | None = None
    type_field: str = "type"
    match_type: str | None = None
    id_field: str | None = None
    name_field: str | None = None
    input_field: str | None = None
    output_field: str | None = None
    is_error_field: str | None = None
    text_field: str | None = None

    # Incremental text (text kind only)
    delta_event_types: tuple[str, ...] = ()
    delta_path: str | None = None
    delta_match_type: str | None = None
    delta_text_field: str = "text"
    stop_event_types: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ContentMapping":
        return cls(**_coerce_fields(cls, data))


@dataclass(frozen=True)
class StreamingFormat:
    text: ContentMapping | None = None
    tool_use: ContentMapping | None = None
    tool_result: ContentMapping | None = None
    result_event_types: tuple[str, ...] = ("result",)
    result_text_field: str | None = "result"
    result_error_field: str | None = None
    error_event_types: tuple[str, ...] = ("error",)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "StreamingFormat":
        values = dict(data)
        for kind in ("text", "tool_use", "tool_result"):
            if isinstance(values.get(kind), Mapping):
                values[kind] = ContentMapping.from_mapping(values[kind])
        return cls(**_coerce_fields(cls, values))


@dataclass(frozen=True)
class BackendDescriptor:
    """How to invoke and interpret one external agent CLI."""

    id: str
    command: str
    args: tuple[str, ...] = ()
    resume_args: tuple[str, ...] = ()
    input: str = "arg"  # arg | stdin
    max_prompt_arg_chars: int | None = None
    output: str = "text"  # text | json | jsonl
    resume_output: str | None = None
    model_arg: str | None = None
    model_aliases: Mapping[str, str] = field(default_factory=dict)
    session_mode: str = "existing"  # always | existing | none
    session_arg: str | None = None
    session_args: tuple[str, ...] = ()
    session_id_fields: tuple[str, ...] = ("session_id",)
    system_prompt_arg: str | None = None
    system_prompt_when: str = "first"  # always | first | never
    image_arg: str | None = None
    image_mode: str = "repeat"  # repeat | list
    env: Mapping[str, str] = field(default_factory=dict)
    clear_env: tuple[str, ...] = ()
    serialize: bool = False
    usage_fields: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    streaming: bool = False
    streaming_event_types: tuple[str, ...] = ()
    streaming_format: StreamingFormat = field(default_factory=StreamingFormat)
    pty: bool = False

    def output_mode(self, resuming: bool) -> str:
        if resuming and self.resume_output:
            return self.resume_output
        return self.output


@dataclass(frozen=True)
class BackendOverride:
    """User-supplied overrides; None means "inherit from the built-in"."""

    command: str | None = None
    args: tuple[str, ...] | None = None
    resume_args: tuple[str, ...] | None = None
    input: str | None = None
    max_prompt_arg_chars: int | None = None
    output: str | None = None
    resume_output: str | None = None
    model_arg: str | None = None
    model_aliases: Mapping[str, str] | None = None
    session_mode: str | None = None
    session_arg: str | None = None
    session_args: tuple[str, ...] | None = None
    session_id_fields: tuple[str, ...] | None = None
    system_prompt_arg: str | None = None
    system_prompt_when: str | None = None
    image_arg: str | None = None
    image_mode: str | None = None
    env: Mapping[str, str] | None = None
    clear_env: tuple[str, ...] | None = None
    serialize: bool | None = None
    usage_fields: Mapping[str, tuple[str, ...]] | None = None
    streaming: bool | None = None
    streaming_event_types: tuple[str, ...] | None = None
    streaming_format: Mapping[str, Mapping[str, Any]] | None = None
    pty: bool | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BackendOverride":
        """Build an override from a parsed config dict.

        Unknown keys raise TypeError so typos in config don't silently vanish.
        """
        values = _coerce_fields(cls, data)
        if isinstance(values.get("usage_fields"), Mapping):
            values["usage_fields"] = {
                key: _as_tuple(paths) for key, paths in values["usage_fields"].items()
            }
        return cls(**values)

    def with_extra_args(self, extra: tuple[str, ...], base: BackendDescriptor) -> "BackendOverride":
        """Append flags to both argument lists (inheriting from base when unset)."""
        args = (self.args if self.args is not None else base.args) + extra
        resume = self.resume_args if self.resume_args is not None else base.resume_args
        return replace(self, args=args, resume_args=resume + extra if resume else resume)


def _as_tuple(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _coerce_fields(cls: type, data: Mapping[str, Any]) -> dict[str, Any]:
    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise TypeError(f"{cls.__name__} does not accept: {unknown}")
    values: dict[str, Any] = {}
    for name, value in data.items():
        if isinstance(value, list):
            value = tuple(value)
        values[name] = value
    return values
