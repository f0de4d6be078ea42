"""Session transcripts as JSON lines.

One file per session key under a directory. The first line is a session
header, every later line one message. Writes for the same session are
serialized so concurrent runs cannot interleave their entries.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import re
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from cliagent.runners.models import Usage

_log = logging.getLogger("lifecycle.transcripts")

TRANSCRIPT_VERSION = 1
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class AppendResult:
    ok: bool
    message_id: str | None = None
    error: str | None = None


def transcript_filename(session_key: str) -> str:
    safe = _UNSAFE_CHARS.sub("_", session_key).strip("._") or "session"
    if safe != session_key:
        # Sanitizing is lossy; the digest keeps distinct keys in distinct files.
        safe = f"{safe}-{hashlib.sha1(session_key.encode()).hexdigest()[:8]}"
    return f"{safe}.jsonl"


def _usage_entry(usage: Usage | None) -> dict:
    usage = usage or Usage()
    entry = {k: v for k, v in asdict(usage).items() if v is not None}
    entry.setdefault("input", 0)
    entry.setdefault("output", 0)
    if "total" not in entry:
        entry["total"] = (
            entry["input"] + entry["output"] + entry.get("cache_read", 0) + entry.get("cache_write", 0)
        )
    return entry


class TranscriptWriter:
    """Append-only ``TranscriptSink`` writing ``<dir>/<session>.jsonl``."""

    def __init__(self, directory: str | Path, *, create_if_missing: bool = True):
        self.directory = Path(directory)
        self.create_if_missing = create_if_missing
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    def path_for(self, session_key: str) -> Path:
        return self.directory / transcript_filename(session_key)

    async def append(
        self,
        session_key: str,
        *,
        role: str,
        text: str,
        provider: str | None = None,
        model: str | None = None,
        usage: Usage | None = None,
    ) -> AppendResult:
        """Append one message. Failures come back in the result, never raised."""
        lock = self._locks.setdefault(session_key, asyncio.Lock())
        self._lock_users[session_key] = self._lock_users.get(session_key, 0) + 1
        try:
            async with lock:
                return await asyncio.to_thread(
                    self._append_sync, session_key, role, text or "", provider, model, usage
                )
        finally:
            self._lock_users[session_key] -= 1
            if not self._lock_users[session_key]:
                del self._lock_users[session_key]
                del self._locks[session_key]

    def _append_sync(
        self,
        session_key: str,
        role: str,
        text: str,
        provider: str | None,
        model: str | None,
        usage: Usage | None,
    ) -> AppendResult:
        path = self.path_for(session_key)
        if not path.exists():
            if not self.create_if_missing:
                return AppendResult(ok=False, error="transcript file not found")
            ensured = self._ensure_file(path, session_key)
            if ensured is not None:
                return AppendResult(ok=False, error=ensured)

        now = datetime.now(timezone.utc)
        message_id = uuid.uuid4().hex[:8]
        message: dict = {
            "role": role,
            "content": [{"type": "text", "text": text}],
            "timestamp": int(now.timestamp() * 1000),
        }
        if role == "assistant":
            message["stopReason"] = "cli_backend"
            message["usage"] = _usage_entry(usage)
            if provider:
                message["provider"] = provider
            if model:
                message["model"] = model
        entry = {"type": "message", "id": message_id, "timestamp": now.isoformat(), "message": message}

        try:
            with path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            _log.error(f"Transcript write failed for {session_key}: {e}")
            return AppendResult(ok=False, error=str(e))
        return AppendResult(ok=True, message_id=message_id)

    def _ensure_file(self, path: Path, session_key: str) -> str | None:
        header = {
            "type": "session",
            "version": TRANSCRIPT_VERSION,
            "id": session_key,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "cwd": os.getcwd(),
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # "x" fails if another writer created the file first; that is fine.
            with path.open("x", encoding="utf-8") as f:
                f.write(json.dumps(header) + "\n")
        except FileExistsError:
            return None
        except OSError as e:
            return str(e)
        return None
