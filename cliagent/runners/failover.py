"""Failure classification for CLI runs.

A classified failure lets the caller abandon this provider and retry with
another. Matching is best-effort text matching; anything unmatched still
raises, under reason ``unknown``.
"""

from __future__ import annotations

import re

QUOTA = "quota"
RATE_LIMIT = "rate_limit"
AUTH = "auth"
TIMEOUT = "timeout"
CRASH = "crash"
UNKNOWN = "unknown"

# Checked in order; the first reason with a matching pattern wins.
_REASON_PATTERNS: tuple[tuple[str, tuple[re.Pattern[str], ...]], ...] = (
    (
        QUOTA,
        (
            re.compile(r"spending cap reached", re.IGNORECASE),
            re.compile(r"quota", re.IGNORECASE),
            re.compile(r"insufficient (?:credits?|balance|funds)", re.IGNORECASE),
            re.compile(r"credit balance is too low", re.IGNORECASE),
            re.compile(r"billing", re.IGNORECASE),
            re.compile(r"usage limit", re.IGNORECASE),
            re.compile(r"\b402\b"),
        ),
    ),
    (
        RATE_LIMIT,
        (
            re.compile(r"rate.?limit", re.IGNORECASE),
            re.compile(r"too many requests", re.IGNORECASE),
            re.compile(r"overloaded", re.IGNORECASE),
            re.compile(r"\b429\b"),
        ),
    ),
    (
        AUTH,
        (
            re.compile(r"invalid (?:api|x-api|access)[ -]?key", re.IGNORECASE),
            re.compile(r"unauthori[sz]ed", re.IGNORECASE),
            re.compile(r"authentication", re.IGNORECASE),
            re.compile(r"not (?:logged|signed) in", re.IGNORECASE),
            re.compile(r"please (?:run )?/?login", re.IGNORECASE),
            re.compile(r"(?:oauth )?token (?:has )?expired", re.IGNORECASE),
            re.compile(r"permission denied.*api", re.IGNORECASE),
            re.compile(r"\b40[13]\b"),
        ),
    ),
    (
        TIMEOUT,
        (
            re.compile(r"timed out", re.IGNORECASE),
            re.compile(r"timeout", re.IGNORECASE),
            re.compile(r"etimedout|econnreset|eai_again", re.IGNORECASE),
        ),
    ),
    (
        CRASH,
        (
            re.compile(r"segmentation fault", re.IGNORECASE),
            re.compile(r"core dumped", re.IGNORECASE),
            re.compile(r"panicked at", re.IGNORECASE),
            re.compile(r"traceback \(most recent call last\)", re.IGNORECASE),
            re.compile(r"uncaught (?:exception|error)", re.IGNORECASE),
            re.compile(r"fatal error", re.IGNORECASE),
            re.compile(r"killed by signal", re.IGNORECASE),
        ),
    ),
)

_STATUS_BY_REASON = {
    QUOTA: 402,
    RATE_LIMIT: 429,
    AUTH: 401,
    TIMEOUT: 408,
    CRASH: 500,
}


def classify_failover_reason(text: str | None) -> str | None:
    if not text:
        return None
    for reason, patterns in _REASON_PATTERNS:
        if any(pattern.search(text) for pattern in patterns):
            return reason
    return None


def is_failover_error_message(text: str | None) -> bool:
    return classify_failover_reason(text) is not None


def resolve_failover_status(reason: str) -> int | None:
    return _STATUS_BY_REASON.get(reason)


class FailoverError(RuntimeError):
    """A run failed in a way the caller may route around with another provider."""

    def __init__(
        self,
        message: str,
        *,
        reason: str,
        provider: str,
        model: str,
        status: int | None = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.provider = provider
        self.model = model
        self.status = status

    @classmethod
    def from_message(cls, message: str, *, provider: str, model: str) -> "FailoverError":
        reason = classify_failover_reason(message) or UNKNOWN
        return cls(
            message,
            reason=reason,
            provider=provider,
            model=model,
            status=resolve_failover_status(reason),
        )

    def __repr__(self) -> str:
        return (
            f"FailoverError(reason={self.reason!r}, provider={self.provider!r}, "
            f"model={self.model!r}, status={self.status!r}, message={str(self)!r})"
        )
