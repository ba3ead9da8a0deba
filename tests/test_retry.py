"""Retry policy and the bounded retry loop."""

from __future__ import annotations

import asyncio

import pytest

from switchyard.cancellation import CancellationToken
from switchyard.errors import BackendError, RateLimitError, ValidationError
from switchyard.retry import (
    NO_RETRY,
    RetryPolicy,
    retry_async,
    should_retry_backend_error,
)

pytestmark = pytest.mark.unit

FAST = RetryPolicy(max_attempts=3, initial_delay_s=0, jitter=False)


class _Flaky:
    """Fails with the queued errors, then returns ``"ok"``."""

    def __init__(self, *errors: BaseException) -> None:
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


@pytest.mark.asyncio
async def test_retryable_backend_error_is_retried_until_success() -> None:
    factory = _Flaky(BackendError("blip", retryable=True))

    result = await retry_async(factory, policy=FAST)

    assert result == "ok"
    assert factory.calls == 2


@pytest.mark.asyncio
async def test_status_code_marks_error_retryable() -> None:
    factory = _Flaky(RateLimitError("slow down", status_code=429))

    assert await retry_async(factory, policy=FAST) == "ok"
    assert factory.calls == 2


@pytest.mark.asyncio
async def test_non_retryable_error_raises_immediately() -> None:
    factory = _Flaky(BackendError("bad request", retryable=False, status_code=400))

    with pytest.raises(BackendError, match="bad request"):
        await retry_async(factory, policy=FAST)

    assert factory.calls == 1


@pytest.mark.asyncio
async def test_non_backend_errors_are_never_retried() -> None:
    factory = _Flaky(ValidationError("nope"))

    with pytest.raises(ValidationError):
        await retry_async(factory, policy=FAST)

    assert factory.calls == 1


@pytest.mark.asyncio
async def test_max_attempts_bounds_the_loop() -> None:
    factory = _Flaky(*(BackendError(f"fail {i}", retryable=True) for i in range(5)))

    with pytest.raises(BackendError, match="fail 2"):
        await retry_async(factory, policy=FAST)

    assert factory.calls == 3


@pytest.mark.asyncio
async def test_no_retry_policy_makes_a_single_attempt() -> None:
    factory = _Flaky(BackendError("once", retryable=True))

    with pytest.raises(BackendError):
        await retry_async(factory, policy=NO_RETRY)

    assert factory.calls == 1


@pytest.mark.asyncio
async def test_cancelled_token_stops_before_first_attempt() -> None:
    token = CancellationToken()
    token.cancel("user abort")
    factory = _Flaky()

    with pytest.raises(asyncio.CancelledError):
        await retry_async(factory, policy=FAST, cancel=token)

    assert factory.calls == 0


@pytest.mark.asyncio
async def test_cancellation_between_attempts_is_not_retried() -> None:
    token = CancellationToken()

    async def factory() -> str:
        token.cancel()
        raise BackendError("transient", retryable=True)

    with pytest.raises(asyncio.CancelledError):
        await retry_async(factory, policy=FAST, cancel=token)


def test_should_retry_only_accepts_backend_errors() -> None:
    assert should_retry_backend_error(BackendError("x", retryable=True))
    assert should_retry_backend_error(BackendError("x", status_code=503))
    assert not should_retry_backend_error(BackendError("x", status_code=401))
    assert not should_retry_backend_error(
        BackendError("x", retryable=False, status_code=500)
    )
    assert not should_retry_backend_error(RuntimeError("x"))


def test_delay_grows_exponentially_and_is_capped() -> None:
    policy = RetryPolicy(
        initial_delay_s=1.0, backoff_multiplier=2.0, max_delay_s=3.0, jitter=False
    )

    assert [policy.delay_for(i) for i in (1, 2, 3, 4)] == [1.0, 2.0, 3.0, 3.0]


def test_jittered_delay_stays_within_base() -> None:
    policy = RetryPolicy(initial_delay_s=1.0, jitter=True)

    for _ in range(20):
        assert 0.0 <= policy.delay_for(1) <= 1.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_attempts": 0},
        {"initial_delay_s": -1},
        {"backoff_multiplier": 0},
        {"max_delay_s": -0.5},
        {"max_elapsed_s": -1},
    ],
)
def test_policy_rejects_invalid_values(kwargs: dict) -> None:
    with pytest.raises(ValueError, match="RetryPolicy"):
        RetryPolicy(**kwargs)
