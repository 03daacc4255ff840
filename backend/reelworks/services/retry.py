"""Bounded exponential-backoff retry for rate-limited generation calls.

Only failures classified as ``RATE_LIMITED`` are retried. Everything else,
including an exhausted budget, re-raises the original exception so callers
can classify it themselves.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from reelworks.config import Settings, get_settings
from reelworks.services.cancellation import CancellationToken
from reelworks.services.errors import FailureKind, OperationCancelled, classify

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape (seconds)."""
    max_attempts: int = 7
    base_delay: float = 5.0
    max_delay: float = 60.0
    jitter: float = 3.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RetryPolicy:
        settings = settings or get_settings()
        return cls(
            max_attempts=max(settings.RETRY_MAX_ATTEMPTS, 1),
            base_delay=settings.RETRY_BASE_DELAY,
            max_delay=settings.RETRY_MAX_DELAY,
            jitter=settings.RETRY_JITTER,
        )


@dataclass
class RetryState:
    """Per-call retry bookkeeping."""
    attempt: int = 0
    last_error: Exception | None = None


RetryHook = Callable[[RetryState, float], None]


def backoff_delay(
    attempt: int,
    policy: RetryPolicy,
    rng: random.Random | None = None,
) -> float:
    """Delay before retry number *attempt* (0-based), bounded by cap + jitter."""
    rng = rng or random
    base = min(policy.max_delay, (2 ** attempt) * policy.base_delay)
    return base + rng.uniform(0, policy.jitter)


async def execute(
    action: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    token: CancellationToken | None = None,
    *,
    caller: str = "generation",
    on_retry: RetryHook | None = None,
    rng: random.Random | None = None,
) -> T:
    """Run *action* until it succeeds, fails for good, or the budget runs out.

    Args:
        action: Zero-argument coroutine factory; called once per attempt.
        policy: Retry budget and delays. Defaults to the configured policy.
        token: Checked before each attempt and during each backoff sleep.
        caller: Label for log lines.
        on_retry: Called with the state and chosen delay before each sleep.
        rng: Random source for jitter.

    Raises:
        OperationCancelled: If the token aborts before an attempt or mid-sleep.
        Exception: The last failure, unchanged, for any non-retryable
            failure or an exhausted budget.
    """
    policy = policy or RetryPolicy.from_settings()
    state = RetryState()

    while True:
        if token is not None:
            token.raise_if_aborted()
        try:
            return await action()
        except OperationCancelled:
            raise
        except Exception as exc:
            state.last_error = exc
            kind = classify(exc, token)
            if kind is FailureKind.CANCELLED:
                raise OperationCancelled() from exc
            if kind is not FailureKind.RATE_LIMITED:
                raise
            if state.attempt >= policy.max_attempts - 1:
                logger.warning(
                    "[%s] rate limited, retry budget of %d attempts exhausted",
                    caller, policy.max_attempts,
                )
                raise

            delay = backoff_delay(state.attempt, policy, rng)
            logger.warning(
                "[%s] rate limited on attempt %d/%d, backing off %.1fs: %s",
                caller, state.attempt + 1, policy.max_attempts, delay, exc,
            )
            if on_retry is not None:
                on_retry(state, delay)

            if token is not None:
                if await token.wait(delay):
                    raise OperationCancelled() from exc
            else:
                await asyncio.sleep(delay)
            state.attempt += 1
