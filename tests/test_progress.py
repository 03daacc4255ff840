import asyncio
import random

from reelworks.services.progress import (
    PHASE_FINALIZING,
    PHASE_SUBMITTED,
    PHASE_SYNTHESIZING,
    ProgressEstimator,
)


def test_advance_is_monotonic_and_capped_below_99():
    estimator = ProgressEstimator(rng=random.Random(3))
    values = [estimator.advance() for _ in range(5000)]
    assert values == sorted(values)
    assert max(values) <= 98.0
    assert values[-1] > 90.0


def test_slow_phase_after_ninety():
    estimator = ProgressEstimator(fast_step=1.5, slow_step=0.1, rng=random.Random(1))
    while estimator.value < 90.0:
        estimator.advance()
    for _ in range(20):
        before = estimator.value
        estimator.advance()
        assert 0 <= estimator.value - before <= 0.1 + 1e-9
    assert estimator.value <= 98.0


def test_ticks_while_running_and_stops():
    async def scenario():
        estimator = ProgressEstimator(tick=0.001)
        seen = []
        estimator.subscribe(lambda e: seen.append(e.value))
        estimator.start()
        assert estimator.running
        await asyncio.sleep(0.05)
        estimator.stop()
        await asyncio.sleep(0)
        frozen = estimator.value
        await asyncio.sleep(0.02)
        return estimator, seen, frozen

    estimator, seen, frozen = asyncio.run(scenario())
    assert not estimator.running
    assert estimator.value == frozen
    assert len(seen) > 1
    assert all(v < 99 for v in seen)


def test_stop_is_idempotent():
    async def scenario():
        estimator = ProgressEstimator(tick=0.001)
        estimator.start()
        estimator.stop()
        estimator.stop()
        return estimator

    assert not asyncio.run(scenario()).running


def test_finalizing_and_complete():
    async def scenario():
        estimator = ProgressEstimator(tick=0.001)
        estimator.start()
        assert estimator.phase == PHASE_SUBMITTED
        estimator.set_phase(PHASE_SYNTHESIZING)
        await asyncio.sleep(0.01)
        assert estimator.value < 99
        estimator.set_phase(PHASE_FINALIZING)
        finalizing = estimator.snapshot()
        estimator.complete()
        return estimator, finalizing

    estimator, finalizing = asyncio.run(scenario())
    assert finalizing.value == 99.0
    assert not estimator.running
    assert estimator.snapshot().value == 100.0


def test_restart_resets_to_zero():
    async def scenario():
        estimator = ProgressEstimator(tick=10.0)
        estimator.start()
        estimator.complete()
        estimator.start()
        value = estimator.value
        estimator.stop()
        return value

    assert asyncio.run(scenario()) == 0.0


def test_context_manager_always_stops():
    async def scenario():
        estimator = ProgressEstimator(tick=0.001)
        try:
            async with estimator:
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        return estimator

    assert not asyncio.run(scenario()).running
