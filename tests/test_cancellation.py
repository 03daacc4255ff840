import asyncio
import time

import pytest

from reelworks.services.cancellation import CancellationToken
from reelworks.services.errors import OperationCancelled


def test_new_token_is_not_aborted():
    token = CancellationToken()
    assert token.aborted is False
    assert token.is_aborted() is False


def test_abort_fires_listeners_once_in_order():
    token = CancellationToken()
    calls = []
    token.on_abort(lambda: calls.append("first"))
    token.on_abort(lambda: calls.append("second"))

    token.abort()
    token.abort()

    assert token.aborted
    assert calls == ["first", "second"]


def test_listener_registered_after_abort_fires_immediately():
    token = CancellationToken()
    token.abort()
    calls = []
    token.on_abort(lambda: calls.append("late"))
    assert calls == ["late"]


def test_removed_listener_is_not_called():
    token = CancellationToken()
    calls = []
    remove = token.on_abort(lambda: calls.append("x"))
    remove()
    token.abort()
    assert calls == []


def test_failing_listener_does_not_block_others():
    token = CancellationToken()
    calls = []

    def boom():
        raise RuntimeError("listener bug")

    token.on_abort(boom)
    token.on_abort(lambda: calls.append("ok"))
    token.abort()
    assert calls == ["ok"]


def test_raise_if_aborted():
    token = CancellationToken()
    token.raise_if_aborted()
    token.abort()
    with pytest.raises(OperationCancelled):
        token.raise_if_aborted()


def test_wait_returns_early_on_abort():
    async def scenario():
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.abort)
        started = time.monotonic()
        aborted = await token.wait(5.0)
        return aborted, time.monotonic() - started

    aborted, elapsed = asyncio.run(scenario())
    assert aborted is True
    assert elapsed < 1.0


def test_wait_times_out_without_abort():
    async def scenario():
        token = CancellationToken()
        return await token.wait(0.01), token._listeners

    aborted, listeners = asyncio.run(scenario())
    assert aborted is False
    assert listeners == []


def test_guard_cancels_inflight_call():
    async def slow():
        await asyncio.sleep(10)
        return "never"

    async def scenario():
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.02, token.abort)
        started = time.monotonic()
        with pytest.raises(OperationCancelled):
            await token.guard(slow())
        return time.monotonic() - started

    assert asyncio.run(scenario()) < 1.0


def test_guard_passes_result_through():
    async def quick():
        return 42

    async def scenario():
        return await CancellationToken().guard(quick())

    assert asyncio.run(scenario()) == 42


def test_guard_on_aborted_token_never_starts_call():
    started = []

    async def call():
        started.append(True)

    async def scenario():
        token = CancellationToken()
        token.abort()
        with pytest.raises(OperationCancelled):
            await token.guard(call())

    asyncio.run(scenario())
    assert started == []
