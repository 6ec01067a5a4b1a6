import pytest

from advisor_core.domain.exceptions import (
    ApiError,
    QuotaExceededError,
    RateLimitError,
    TransientGatewayError,
    ValidationError,
)
from advisor_core.providers.retry import RetryPolicy, calculate_backoff_delay


def _transient():
    return TransientGatewayError(code="GATEWAY_UNAVAILABLE", message="503", http_status=503)


def test_backoff_linear_and_exponential():
    assert [calculate_backoff_delay(n, 1.0, 30.0, "linear") for n in (1, 2, 3)] == [1.0, 2.0, 3.0]
    assert [calculate_backoff_delay(n, 1.0, 30.0, "exponential") for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]
    assert calculate_backoff_delay(10, 1.0, 5.0, "exponential") == 5.0
    assert calculate_backoff_delay(0, 1.0, 5.0) == 0.0


def test_backoff_is_monotonic():
    delays = [calculate_backoff_delay(n, 0.7, 4.0, "exponential") for n in range(1, 12)]
    assert delays == sorted(delays)


@pytest.mark.asyncio
async def test_retry_recovers_from_transient_errors(recorded_sleep):
    calls = []

    async def attempt():
        calls.append(1)
        if len(calls) < 3:
            raise _transient()
        return "ok"

    policy = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0, strategy="linear", sleep=recorded_sleep)
    assert await policy.execute(attempt) == "ok"
    assert len(calls) == 3
    assert recorded_sleep.calls == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_reraises_last_error_when_exhausted(recorded_sleep):
    errors = [_transient(), _transient()]

    async def attempt():
        raise errors.pop(0)

    policy = RetryPolicy(max_attempts=2, base_delay=0.5, max_delay=30.0, strategy="exponential", sleep=recorded_sleep)
    with pytest.raises(TransientGatewayError):
        await policy.execute(attempt)
    assert errors == []
    assert recorded_sleep.calls == [0.5]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        RateLimitError(code="RATE_LIMIT", message="429", http_status=429),
        QuotaExceededError(code="QUOTA_EXCEEDED", message="402", http_status=402),
        ApiError(code="API_ERROR", message="bad request", http_status=400),
    ],
)
async def test_retry_does_not_retry_terminal_errors(recorded_sleep, error):
    calls = []

    async def attempt():
        calls.append(1)
        raise error

    policy = RetryPolicy(max_attempts=5, base_delay=1.0, sleep=recorded_sleep)
    with pytest.raises(type(error)):
        await policy.execute(attempt)
    assert len(calls) == 1
    assert recorded_sleep.calls == []


@pytest.mark.asyncio
async def test_retry_per_call_overrides(recorded_sleep):
    async def attempt():
        raise _transient()

    policy = RetryPolicy(max_attempts=5, base_delay=1.0, sleep=recorded_sleep, strategy="linear")
    with pytest.raises(TransientGatewayError):
        await policy.execute(attempt, max_attempts=2, base_delay=0.25)
    assert recorded_sleep.calls == [0.25]


def test_retry_policy_rejects_zero_attempts():
    with pytest.raises(ValidationError):
        RetryPolicy(max_attempts=0)
