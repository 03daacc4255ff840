"""Synthetic progress for outstanding generations.

The Veo API reports no completion percentage, so the studio shows an
estimate that grows quickly to 90, crawls to 98 and waits there. Only a
confirmed successful result moves it to 100. The value carries no
information about the remote job.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

PHASE_SUBMITTED = "submitted"
PHASE_SYNTHESIZING = "synthesizing"
PHASE_FINALIZING = "finalizing"

FAST_CEILING = 90.0
SLOW_CEILING = 98.0
FINALIZING_VALUE = 99.0


@dataclass(frozen=True)
class ProgressEstimate:
    value: float
    phase: str


ProgressListener = Callable[[ProgressEstimate], None]


class ProgressEstimator:
    """Owns one periodic tick task; must be stopped on every terminal path."""

    def __init__(
        self,
        tick: float = 1.0,
        *,
        fast_step: float = 1.5,
        slow_step: float = 0.1,
        rng: random.Random | None = None,
    ):
        self.tick = tick
        self.fast_step = fast_step
        self.slow_step = slow_step
        self._rng = rng or random.Random()
        self._value = 0.0
        self._phase = PHASE_SUBMITTED
        self._task: asyncio.Task | None = None
        self._listeners: list[ProgressListener] = []

    @property
    def value(self) -> float:
        return self._value

    @property
    def phase(self) -> str:
        return self._phase

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> ProgressEstimate:
        return ProgressEstimate(round(self._value, 2), self._phase)

    def subscribe(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def _emit(self) -> None:
        estimate = self.snapshot()
        for listener in self._listeners:
            try:
                listener(estimate)
            except Exception:
                logger.exception("Progress listener failed")

    def advance(self) -> float:
        """Apply one tick of growth and return the new value."""
        if self._value < FAST_CEILING:
            self._value += self._rng.uniform(0, self.fast_step)
        elif self._value < SLOW_CEILING:
            self._value += self._rng.uniform(0, self.slow_step)
        self._value = min(self._value, SLOW_CEILING)
        return self._value

    def start(self) -> None:
        """Reset to 0 and begin ticking on the running event loop."""
        self.stop()
        self._value = 0.0
        self._phase = PHASE_SUBMITTED
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._emit()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.tick)
            self.advance()
            self._emit()

    def set_phase(self, phase: str) -> None:
        self._phase = phase
        if phase == PHASE_FINALIZING:
            self.stop()
            self._value = max(self._value, FINALIZING_VALUE)
        self._emit()

    def stop(self) -> None:
        """Cancel the tick task. Idempotent."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def complete(self) -> None:
        """Stop ticking and report 100; call only after confirmed success."""
        self.stop()
        self._value = 100.0
        self._phase = PHASE_FINALIZING
        self._emit()

    def reset(self) -> None:
        self.stop()
        self._value = 0.0
        self._phase = PHASE_SUBMITTED
        self._emit()

    async def __aenter__(self) -> ProgressEstimator:
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.stop()
