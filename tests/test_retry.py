import asyncio
import random
import time

import pytest
from conftest import rate_limited

from reelworks.config import Settings
from reelworks.services import retry
from reelworks.services.cancellation import CancellationToken
from reelworks.services.errors import GenerationError, OperationCancelled
from reelworks.services.retry import RetryPolicy, backoff_delay


class Flaky:
    """Fails with the given exceptions, then returns 'ok'."""

    def __init__(self, *failures):
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


def _run(coro):
    return asyncio.run(coro)


@pytest.mark.parametrize("failures", range(0, 7))
def test_recovers_from_fewer_rate_limits_than_budget(failures, fast_policy):
    action = Flaky(*[rate_limited() for _ in range(failures)])
    assert _run(retry.execute(action, fast_policy)) == "ok"
    assert action.calls == failures + 1


def test_two_rate_limits_then_success_sleeps_twice(fast_policy):
    action = Flaky(rate_limited(), rate_limited())
    delays = []
    result = _run(retry.execute(action, fast_policy, on_retry=lambda s, d: delays.append(s.attempt)))
    assert result == "ok"
    assert action.calls == 3
    assert delays == [0, 1]


def test_exhausted_budget_reraises_last_failure_unchanged():
    policy = RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)
    errors = [rate_limited(f"quota #{i}") for i in range(5)]
    action = Flaky(*errors)

    with pytest.raises(GenerationError) as info:
        _run(retry.execute(action, policy))

    assert info.value is errors[2]
    assert action.calls == 3


def test_non_retryable_failure_propagates_immediately(fast_policy):
    fatal = GenerationError("Internal error", status_code=500)
    action = Flaky(fatal)
    with pytest.raises(GenerationError) as info:
        _run(retry.execute(action, fast_policy))
    assert info.value is fatal
    assert action.calls == 1


def test_daily_quota_sentinel_is_not_retried(fast_policy):
    action = Flaky(GenerationError("DAILY_QUOTA_EXHAUSTED"))
    with pytest.raises(GenerationError):
        _run(retry.execute(action, fast_policy))
    assert action.calls == 1


def test_auth_failure_is_not_retried(fast_policy):
    action = Flaky(RuntimeError("Requested entity was not found."))
    with pytest.raises(RuntimeError):
        _run(retry.execute(action, fast_policy))
    assert action.calls == 1


def test_aborted_token_prevents_any_attempt(fast_policy):
    token = CancellationToken()
    token.abort()
    action = Flaky()
    with pytest.raises(OperationCancelled):
        _run(retry.execute(action, fast_policy, token))
    assert action.calls == 0


def test_abort_during_backoff_sleep_cancels_promptly():
    policy = RetryPolicy(max_attempts=7, base_delay=30.0, max_delay=60.0, jitter=0.0)
    action = Flaky(rate_limited(), rate_limited())

    async def scenario():
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.abort)
        started = time.monotonic()
        with pytest.raises(OperationCancelled):
            await retry.execute(action, policy, token)
        return time.monotonic() - started

    assert _run(scenario()) < 1.0
    assert action.calls == 1


def test_backoff_delay_bounded_by_cap_plus_jitter():
    policy = RetryPolicy(max_attempts=7, base_delay=5.0, max_delay=60.0, jitter=3.0)
    rng = random.Random(7)
    for attempt in range(12):
        for _ in range(50):
            delay = backoff_delay(attempt, policy, rng)
            assert 0 <= delay <= policy.max_delay + policy.jitter


def test_backoff_delay_grows_exponentially_until_cap():
    policy = RetryPolicy(max_attempts=7, base_delay=5.0, max_delay=60.0, jitter=0.0)
    delays = [backoff_delay(i, policy) for i in range(6)]
    assert delays == [5.0, 10.0, 20.0, 40.0, 60.0, 60.0]
    assert delays == sorted(delays)


def test_policy_from_settings():
    settings = Settings(RETRY_MAX_ATTEMPTS=4, RETRY_BASE_DELAY=1.5, RETRY_MAX_DELAY=9.0,
                        RETRY_JITTER=0.5, _env_file=None)
    policy = RetryPolicy.from_settings(settings)
    assert policy == RetryPolicy(max_attempts=4, base_delay=1.5, max_delay=9.0, jitter=0.5)
