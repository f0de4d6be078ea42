"""Tests for failure classification."""

import pytest

from cliagent.runners.failover import (
    AUTH,
    CRASH,
    QUOTA,
    RATE_LIMIT,
    TIMEOUT,
    UNKNOWN,
    FailoverError,
    classify_failover_reason,
    is_failover_error_message,
    resolve_failover_status,
)


@pytest.mark.parametrize(
    ("text", "reason"),
    [
        ("Claude AI usage limit reached", QUOTA),
        ("Your credit balance is too low to access the API", QUOTA),
        ("API Error: 429 Too Many Requests", RATE_LIMIT),
        ("Overloaded, try again later", RATE_LIMIT),
        ("Invalid API key · Please run /login", AUTH),
        ("Error: not logged in", AUTH),
        ("request timed out after 30s", TIMEOUT),
        ("Segmentation fault (core dumped)", CRASH),
        ("thread 'main' panicked at src/main.rs:3", CRASH),
    ],
)
def test_classify(text, reason) -> None:
    assert classify_failover_reason(text) == reason
    assert is_failover_error_message(text) is True


def test_unmatched_text() -> None:
    assert classify_failover_reason("something odd happened") is None
    assert classify_failover_reason("") is None
    assert classify_failover_reason(None) is None


def test_status_by_reason() -> None:
    assert [resolve_failover_status(r) for r in (QUOTA, RATE_LIMIT, AUTH, TIMEOUT, CRASH, UNKNOWN)] == [
        402,
        429,
        401,
        408,
        500,
        None,
    ]


class TestFailoverError:
    def test_from_message(self) -> None:
        error = FailoverError.from_message("401 Unauthorized", provider="claude-cli", model="opus")

        assert error.reason == AUTH
        assert error.status == 401
        assert str(error) == "401 Unauthorized"
        assert "claude-cli" in repr(error)
        assert isinstance(error, RuntimeError)

    def test_unknown_reason(self) -> None:
        error = FailoverError.from_message("CLI exited with code 1", provider="codex-cli", model="default")

        assert error.reason == UNKNOWN
        assert error.status is None
