"""Session id bridge and transcript persistence for CLI runs."""

from cliagent.lifecycle.sessions import SessionMap
from cliagent.lifecycle.transcripts import AppendResult, TranscriptWriter

__all__ = ["AppendResult", "SessionMap", "TranscriptWriter"]
