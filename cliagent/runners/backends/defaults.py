"""Built-in backend descriptors."""

from __future__ import annotations

from cliagent.runners.backends.models import BackendDescriptor, ContentMapping, StreamingFormat

CLAUDE_MODEL_ALIASES = {
    "opus": "opus",
    "opus-4.6": "opus",
    "opus-4.5": "opus",
    "opus-4": "opus",
    "claude-opus-4-6": "opus",
    "claude-opus-4-5": "opus",
    "claude-opus-4": "opus",
    "sonnet": "sonnet",
    "sonnet-4.5": "sonnet",
    "sonnet-4.1": "sonnet",
    "sonnet-4.0": "sonnet",
    "claude-sonnet-4-5": "sonnet",
    "claude-sonnet-4-1": "sonnet",
    "claude-sonnet-4-0": "sonnet",
    "haiku": "haiku",
    "haiku-3.5": "haiku",
    "claude-haiku-3-5": "haiku",
}

_CLAUDE_BASE_ARGS = (
    "-p",
    "--output-format", "stream-json",
    "--dangerously-skip-permissions",
    "--verbose",
)

CLAUDE_CLI = BackendDescriptor(
    id="claude-cli",
    command="claude",
    args=_CLAUDE_BASE_ARGS,
    resume_args=_CLAUDE_BASE_ARGS + ("--resume", "{sessionId}"),
    input="arg",
    output="jsonl",
    model_arg="--model",
    model_aliases=CLAUDE_MODEL_ALIASES,
    session_mode="always",
    session_arg="--session-id",
    session_id_fields=("session_id", "sessionId", "conversation_id", "conversationId"),
    system_prompt_arg="--append-system-prompt",
    system_prompt_when="always",
    clear_env=("ANTHROPIC_API_KEY", "ANTHROPIC_API_KEY_OLD"),
    serialize=True,
    usage_fields={
        "input": ("input_tokens", "inputTokens"),
        "output": ("output_tokens", "outputTokens"),
        "cache_read": ("cache_read_input_tokens", "cached_input_tokens", "cacheRead"),
        "cache_write": ("cache_creation_input_tokens", "cache_write_input_tokens", "cacheWrite"),
        "total": ("total_tokens", "total"),
    },
    streaming=True,
    streaming_event_types=(
        "system",
        "assistant",
        "user",
        "content_block_delta",
        "content_block_stop",
        "result",
        "error",
    ),
    streaming_format=StreamingFormat(
        text=ContentMapping(
            event_types=("assistant",),
            content_path="message.content",
            match_type="text",
            text_field="text",
            delta_event_types=("content_block_delta",),
            delta_path="delta",
            delta_match_type="text_delta",
            stop_event_types=("content_block_stop",),
        ),
        tool_use=ContentMapping(
            event_types=("assistant",),
            content_path="message.content",
            match_type="tool_use",
            id_field="id",
            name_field="name",
            input_field="input",
        ),
        tool_result=ContentMapping(
            event_types=("user",),
            content_path="message.content",
            match_type="tool_result",
            id_field="tool_use_id",
            output_field="content",
            is_error_field="is_error",
        ),
        result_event_types=("result",),
        result_text_field="result",
        result_error_field="is_error",
        error_event_types=("error",),
    ),
)

CODEX_CLI = BackendDescriptor(
    id="codex-cli",
    command="codex",
    args=("exec", "--json", "--color", "never", "--sandbox", "read-only", "--skip-git-repo-check"),
    resume_args=(
        "exec", "resume", "{sessionId}",
        "--color", "never",
        "--sandbox", "read-only",
        "--skip-git-repo-check",
    ),
    input="arg",
    output="jsonl",
    resume_output="text",
    model_arg="--model",
    session_mode="existing",
    session_id_fields=("thread_id",),
    image_arg="--image",
    image_mode="repeat",
    serialize=True,
    usage_fields={
        "input": ("prompt_tokens", "input_tokens"),
        "output": ("completion_tokens", "output_tokens"),
        "cache_read": ("cached_input_tokens",),
        "total": ("total_tokens",),
    },
    streaming=True,
    streaming_event_types=(
        "thread.started",
        "item.created",
        "item.started",
        "item.completed",
        "turn.completed",
        "turn.failed",
        "error",
    ),
    streaming_format=StreamingFormat(
        text=ContentMapping(
            event_types=("item.completed",),
            content_path="item",
            match_type="message",
            text_field="text",
        ),
        tool_use=ContentMapping(
            event_types=("item.created", "item.started"),
            content_path="item",
            match_type="function_call",
            id_field="id",
            name_field="name",
            input_field="arguments",
        ),
        tool_result=ContentMapping(
            event_types=("item.completed",),
            content_path="item",
            match_type="function_call_output",
            id_field="call_id",
            output_field="output",
        ),
        result_event_types=("turn.completed",),
        result_text_field=None,
        error_event_types=("error", "turn.failed"),
    ),
)

BUILTIN_BACKENDS: dict[str, BackendDescriptor] = {
    CLAUDE_CLI.id: CLAUDE_CLI,
    CODEX_CLI.id: CODEX_CLI,
}

DEFAULT_BACKEND_ID = CLAUDE_CLI.id
