"""Tests for retry_with_backoff."""
from __future__ import annotations

import pytest

from ec2_terraform_manager.retry import retry_with_backoff


class Flaky:
    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def test_fail_fast_by_default() -> None:
    func = Flaky(1, RuntimeError("boom"))
    with pytest.raises(RuntimeError, match="boom"):
        retry_with_backoff(func, description="call", sleep=lambda _: None)
    assert func.calls == 1


def test_retries_with_exponential_delays() -> None:
    delays: list[float] = []
    func = Flaky(2, RuntimeError("busy"))

    assert retry_with_backoff(func, description="call", max_attempts=3, base_delay=2.0, sleep=delays.append) == "ok"

    assert func.calls == 3
    assert delays == [2.0, 4.0]


def test_gives_up_after_max_attempts() -> None:
    delays: list[float] = []
    func = Flaky(5, RuntimeError("busy"))
    with pytest.raises(RuntimeError):
        retry_with_backoff(func, description="call", max_attempts=3, base_delay=1.0, sleep=delays.append)
    assert func.calls == 3
    assert delays == [1.0, 2.0]


def test_non_retryable_errors_propagate_immediately() -> None:
    func = Flaky(1, ValueError("bad input"))
    with pytest.raises(ValueError):
        retry_with_backoff(
            func,
            description="call",
            max_attempts=5,
            retry_on=(RuntimeError,),
            sleep=lambda _: None,
        )
    assert func.calls == 1


def test_retry_if_filters_errors() -> None:
    func = Flaky(1, RuntimeError("permanent"))
    with pytest.raises(RuntimeError):
        retry_with_backoff(
            func,
            description="call",
            max_attempts=5,
            retry_if=lambda e: "transient" in str(e),
            sleep=lambda _: None,
        )
    assert func.calls == 1
