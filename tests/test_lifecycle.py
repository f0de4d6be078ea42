"""Tests for the session map and transcript writer."""

import asyncio
import json

import pytest

from cliagent.lifecycle import SessionMap, TranscriptWriter
from cliagent.lifecycle.transcripts import transcript_filename
from cliagent.runners.models import Usage


class TestSessionMap:
    def test_missing_file_reads_empty(self, tmp_path) -> None:
        assert SessionMap(tmp_path / "map.json").get("main") is None

    def test_set_and_get(self, tmp_path) -> None:
        path = tmp_path / "nested" / "map.json"
        sessions = SessionMap(path)

        sessions.set("main", "abc")
        sessions.set("other", "def")

        assert SessionMap(path).get("main") == "abc"
        assert json.loads(path.read_text()) == {"main": "abc", "other": "def"}

    def test_directory_path(self, tmp_path) -> None:
        sessions = SessionMap(tmp_path)
        sessions.set("main", "abc")
        assert (tmp_path / "cli-session-map.json").exists()

    def test_corrupt_file_reads_empty(self, tmp_path) -> None:
        path = tmp_path / "map.json"
        path.write_text("{not json")

        sessions = SessionMap(path)
        assert sessions.get("main") is None
        sessions.set("main", "abc")
        assert sessions.get("main") == "abc"

    def test_remove(self, tmp_path) -> None:
        sessions = SessionMap(tmp_path / "map.json")
        sessions.set("main", "abc")

        assert sessions.remove("main") is True
        assert sessions.remove("main") is False
        assert sessions.get("main") is None


class TestTranscriptWriter:
    """Test JSON-lines transcript appends."""

    @pytest.mark.asyncio
    async def test_first_append_writes_header(self, tmp_path) -> None:
        writer = TranscriptWriter(tmp_path)

        result = await writer.append(
            "main", role="assistant", text="Hello", provider="claude-cli", model="opus", usage=Usage(input=3, output=2)
        )

        assert result.ok is True
        header, entry = [json.loads(line) for line in writer.path_for("main").read_text().splitlines()]
        assert header["type"] == "session"
        assert header["id"] == "main"
        assert entry["id"] == result.message_id
        message = entry["message"]
        assert message["content"] == [{"type": "text", "text": "Hello"}]
        assert message["provider"] == "claude-cli"
        assert message["model"] == "opus"
        assert message["usage"] == {"input": 3, "output": 2, "total": 5}

    @pytest.mark.asyncio
    async def test_empty_text_is_recorded(self, tmp_path) -> None:
        writer = TranscriptWriter(tmp_path)

        result = await writer.append("main", role="assistant", text="")

        assert result.ok is True
        entry = json.loads(writer.path_for("main").read_text().splitlines()[-1])
        assert entry["message"]["content"][0]["text"] == ""

    @pytest.mark.asyncio
    async def test_concurrent_appends_do_not_interleave(self, tmp_path) -> None:
        writer = TranscriptWriter(tmp_path)

        await asyncio.gather(*(writer.append("main", role="user", text=f"m{i}") for i in range(20)))

        lines = writer.path_for("main").read_text().splitlines()
        assert len(lines) == 21
        texts = [json.loads(line)["message"]["content"][0]["text"] for line in lines[1:]]
        assert sorted(texts) == sorted(f"m{i}" for i in range(20))

    @pytest.mark.asyncio
    async def test_missing_file_without_create(self, tmp_path) -> None:
        writer = TranscriptWriter(tmp_path, create_if_missing=False)

        result = await writer.append("main", role="assistant", text="hi")

        assert result.ok is False
        assert result.error == "transcript file not found"

    def test_filename_is_sanitized(self) -> None:
        assert transcript_filename("main") == "main.jsonl"
        assert transcript_filename("agent:main/../x").startswith("agent_main_.._x-")
        assert transcript_filename("///").startswith("session-")

    def test_sanitized_keys_do_not_collide(self) -> None:
        assert transcript_filename("a_b") == "a_b.jsonl"
        assert transcript_filename("a/b") != transcript_filename("a_b")
        assert transcript_filename("a/b") != transcript_filename("a:b")

    @pytest.mark.asyncio
    async def test_idle_session_locks_are_dropped(self, tmp_path) -> None:
        writer = TranscriptWriter(tmp_path)

        await asyncio.gather(writer.append("a", role="user", text="x"), writer.append("b", role="user", text="y"))

        assert writer._locks == {}
