"""Tests for the retry coordinator."""

import pytest

from nodeflow.errors import (
    ExecutionFailed,
    ProviderError,
    SandboxPolicyViolation,
    SchemaValidationError,
)
from nodeflow.runtime.retry import RetryCoordinator


class Flaky:
    def __init__(self, failures, error=ProviderError("backend down")):
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


@pytest.mark.asyncio
async def test_first_attempt_succeeds(fast_sleep):
    outcome = await RetryCoordinator().run(Flaky(0))
    assert outcome.value == "ok"
    assert outcome.attempts == 1
    assert outcome.timeline == ["Attempt 1 succeeded"]
    assert fast_sleep == []


@pytest.mark.asyncio
async def test_recovers_after_backoff(fast_sleep):
    outcome = await RetryCoordinator().run(Flaky(2))
    assert outcome.attempts == 3
    assert fast_sleep == [1.0, 2.0]
    assert outcome.timeline == [
        "Attempt 1 failed: backend down",
        "Retry backoff 1000ms before attempt 2",
        "Attempt 2 failed: backend down",
        "Retry backoff 2000ms before attempt 3",
        "Attempt 3 succeeded",
    ]


@pytest.mark.asyncio
async def test_always_failing_uses_every_attempt(fast_sleep):
    step = Flaky(10)
    with pytest.raises(ExecutionFailed) as exc_info:
        await RetryCoordinator(max_attempts=3).run(step)

    error = exc_info.value
    assert step.calls == 3
    assert error.attempts == 3
    assert "after 3 attempts" in str(error)
    assert isinstance(error.cause, ProviderError)
    assert [e["attempt"] for e in error.errors] == [1, 2, 3]
    assert error.__cause__ is error.cause
    assert error.timeline[-1] == "Attempt 3 failed: backend down"


@pytest.mark.asyncio
async def test_single_attempt_message(fast_sleep):
    with pytest.raises(ExecutionFailed, match="after 1 attempt: backend down"):
        await RetryCoordinator(max_attempts=1).run(Flaky(1))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error", [SchemaValidationError("bad shape"), SandboxPolicyViolation("import os")]
)
async def test_structural_errors_fail_fast(fast_sleep, error):
    step = Flaky(10, error=error)
    with pytest.raises(ExecutionFailed) as exc_info:
        await RetryCoordinator().run(step)
    assert step.calls == 1
    assert exc_info.value.attempts == 1
    assert fast_sleep == []


@pytest.mark.asyncio
async def test_structural_errors_retried_when_enabled(fast_sleep):
    step = Flaky(10, error=SchemaValidationError("bad shape"))
    with pytest.raises(ExecutionFailed):
        await RetryCoordinator(retry_structural_errors=True).run(step)
    assert step.calls == 3


@pytest.mark.asyncio
async def test_short_backoff_schedule_repeats_last_delay(fast_sleep):
    await RetryCoordinator(max_attempts=4, backoff_ms=(0, 500)).run(Flaky(3))
    assert fast_sleep == [0.5, 0.5, 0.5]


def test_invalid_max_attempts():
    with pytest.raises(ValueError):
        RetryCoordinator(max_attempts=0)
