"""Incremental line splitting for child-process output."""

from __future__ import annotations

import codecs


class LineSplitter:
    """Turn arbitrary byte chunks into complete text lines.

    Handles both ``\\n`` and ``\\r\\n`` endings and multi-byte characters split
    across chunks. Whatever is left unterminated comes back from ``flush()``.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        if "\n" not in self._buffer:
            return []
        *complete, self._buffer = self._buffer.split("\n")
        return [line[:-1] if line.endswith("\r") else line for line in complete]

    def flush(self) -> str | None:
        """Return the unterminated tail (if any) and reset."""
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        if tail.endswith("\r"):
            tail = tail[:-1]
        return tail or None
