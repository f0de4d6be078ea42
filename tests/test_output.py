"""Tests for non-streaming output parsing."""

import json

from cliagent.runners.backends import CLAUDE_CLI, CODEX_CLI
from cliagent.runners.output import collect_text, parse_output


class TestParseOutput:
    """Test text, JSON and JSON-lines output modes."""

    def test_text_mode(self) -> None:
        assert parse_output("  plain answer \n", CLAUDE_CLI, "text").text == "plain answer"

    def test_json_mode(self) -> None:
        raw = json.dumps(
            {
                "message": {"content": [{"type": "text", "text": "Hi "}, {"type": "text", "text": "there"}]},
                "session_id": "s-1",
                "usage": {"input_tokens": 4, "output_tokens": 2},
            }
        )

        parsed = parse_output(raw, CLAUDE_CLI, "json")

        assert parsed.text == "Hi there"
        assert parsed.session_id == "s-1"
        assert parsed.usage.input == 4
        assert parsed.usage.output == 2

    def test_json_mode_falls_back_to_raw(self) -> None:
        parsed = parse_output("{broken", CLAUDE_CLI, "json")

        assert parsed.text == "{broken"
        assert parsed.session_id is None

    def test_jsonl_mode(self) -> None:
        lines = [
            {"type": "thread.started", "thread_id": "t-1"},
            {"type": "item.completed", "item": {"type": "reasoning", "text": "thinking..."}},
            {"type": "item.completed", "item": {"type": "agent_message", "text": "First"}},
            "not json",
            {"type": "item.completed", "item": {"type": "message", "text": "Second"}},
            {"type": "turn.completed", "usage": {"input_tokens": 9, "cached_input_tokens": 3}},
        ]
        raw = "\n".join(line if isinstance(line, str) else json.dumps(line) for line in lines)

        parsed = parse_output(raw, CODEX_CLI, "jsonl")

        assert parsed.text == "First\nSecond"
        assert parsed.session_id == "t-1"
        assert parsed.usage.input == 9
        assert parsed.usage.cache_read == 3

    def test_jsonl_result_lines(self) -> None:
        raw = json.dumps({"type": "result", "result": "final", "session_id": "s-3"})

        parsed = parse_output(raw, CLAUDE_CLI, "jsonl")

        assert parsed.text == "final"
        assert parsed.session_id == "s-3"

    def test_jsonl_without_text_falls_back(self) -> None:
        assert parse_output("just words", CODEX_CLI, "jsonl").text == "just words"


def test_collect_text() -> None:
    assert collect_text({"content": "direct"}) == "direct"
    assert collect_text({"message": {"text": "nested"}}) == "nested"
    assert collect_text(42) == ""
