"""Drive a submitted Veo operation to a terminal state.

State machine::

    SUBMITTED -> POLLING -> DONE | FAILED | CANCELLED

Each refresh goes through the retry executor, so rate limits while polling
are absorbed; any other failure ends the poll as FAILED.
"""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from reelworks.services import retry
from reelworks.services.cancellation import CancellationToken
from reelworks.services.errors import FailureInfo, FailureKind, describe
from reelworks.services.operations import Operation

logger = logging.getLogger(__name__)

FetchOperation = Callable[[Operation, CancellationToken], Awaitable[Operation]]


class PollState(str, enum.Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (PollState.DONE, PollState.FAILED, PollState.CANCELLED)


@dataclass
class PollOutcome:
    state: PollState
    operation: Operation
    failure: FailureInfo | None = None
    polls: int = 0


class OperationPoller:
    """Poll one operation on a fixed interval until it finishes.

    Args:
        fetch: Coroutine returning a refreshed operation for a handle.
        token: Cancellation token of the owning orchestration.
        interval: Seconds between polls.
        policy: Retry policy applied to each fetch.
        timeout: Give up as FAILED after this many seconds (0 = never).
    """

    def __init__(
        self,
        fetch: FetchOperation,
        token: CancellationToken,
        *,
        interval: float = 10.0,
        policy: retry.RetryPolicy | None = None,
        timeout: float = 0.0,
    ):
        self._fetch = fetch
        self._token = token
        self.interval = interval
        self.policy = policy
        self.timeout = timeout
        self.state = PollState.SUBMITTED
        self.polls = 0

    def _finish(self, state: PollState, operation: Operation,
                failure: FailureInfo | None = None) -> PollOutcome:
        self.state = state
        logger.info("Operation %s finished polling: %s after %d poll(s)",
                    operation.name or "?", state.value, self.polls)
        return PollOutcome(state, operation, failure, self.polls)

    async def run(self, operation: Operation) -> PollOutcome:
        if self.state.terminal:
            raise RuntimeError("OperationPoller instances are single-use")

        self.state = PollState.POLLING
        started = time.monotonic()
        current = operation

        while not current.done:
            if self._token.aborted:
                return self._finish(PollState.CANCELLED, current)

            if self.timeout and time.monotonic() - started >= self.timeout:
                return self._finish(
                    PollState.FAILED,
                    current,
                    FailureInfo(FailureKind.FATAL, f"Operation timed out after {self.timeout:.0f}s"),
                )

            if await self._token.wait(self.interval):
                return self._finish(PollState.CANCELLED, current)

            snapshot = current
            try:
                current = await retry.execute(
                    lambda: self._fetch(snapshot, self._token),
                    self.policy,
                    self._token,
                    caller="poll",
                )
            except Exception as exc:
                info = describe(exc, self._token)
                if info.kind is FailureKind.CANCELLED:
                    return self._finish(PollState.CANCELLED, current)
                return self._finish(PollState.FAILED, current, info)

            self.polls += 1
            logger.debug("Operation %s poll #%d: done=%s", current.name, self.polls, current.done)

        if current.failed:
            return self._finish(PollState.FAILED, current, describe(current.error))
        return self._finish(PollState.DONE, current)


async def poll_operation(
    operation: Operation,
    fetch: FetchOperation,
    token: CancellationToken,
    **kwargs,
) -> PollOutcome:
    """Convenience wrapper: run a fresh :class:`OperationPoller`."""
    return await OperationPoller(fetch, token, **kwargs).run(operation)
