"""Session id bridge.

Keeps the mapping from our session keys to a backend's native session ids in
one JSON file, so a later run can resume the same CLI conversation.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

_log = logging.getLogger("lifecycle.sessions")

SESSION_MAP_FILENAME = "cli-session-map.json"


class SessionMap:
    """JSON-file backed ``SessionBridge``.

    A missing or unreadable file reads as an empty map. Writes go through a
    temp file and ``os.replace`` so a crash never leaves half a file behind.
    """

    def __init__(self, path: str | Path):
        path = Path(path)
        self.path = path / SESSION_MAP_FILENAME if path.is_dir() else path

    def _load(self) -> dict[str, str]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            _log.warning(f"Ignoring unreadable session map {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def get(self, session_key: str) -> str | None:
        return self._load().get(session_key)

    def set(self, session_key: str, native_session_id: str) -> None:
        data = self._load()
        if data.get(session_key) == native_session_id:
            return
        data[session_key] = native_session_id
        self._write(data)
        _log.debug(f"Stored native session {native_session_id} for {session_key}")

    def remove(self, session_key: str) -> bool:
        data = self._load()
        if data.pop(session_key, None) is None:
            return False
        self._write(data)
        return True

    def _write(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".session-map-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
