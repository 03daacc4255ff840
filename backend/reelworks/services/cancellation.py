"""Cooperative cancellation for generation orchestrations.

A :class:`CancellationToken` is created per orchestration and passed
explicitly to every submission, poll, sleep and download. Aborting it never
interrupts code by force: work stops at the next check point, and network
calls wrapped with :meth:`CancellationToken.guard` are cancelled in-flight.

Examples:
    >>> token = CancellationToken()
    >>> _ = token.on_abort(lambda: print("stopping"))
    >>> token.abort()
    stopping
    >>> token.aborted
    True
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from reelworks.services.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[], None]


class CancellationToken:
    """One-shot abort flag with ordered listeners.

    Once aborted a token stays aborted; each listener fires at most once.
    """

    def __init__(self) -> None:
        self._aborted = False
        self._listeners: list[Listener] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    def is_aborted(self) -> bool:
        return self._aborted

    def abort(self) -> None:
        """Flip to aborted and notify listeners in registration order."""
        if self._aborted:
            return
        self._aborted = True
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Cancellation listener failed")

    def on_abort(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; fires immediately if already aborted.

        Returns a callable that removes the listener again.
        """
        if self._aborted:
            listener()
            return lambda: None
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def raise_if_aborted(self) -> None:
        if self._aborted:
            raise OperationCancelled()

    async def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds, waking early on abort.

        Returns True when the token was aborted.
        """
        if self._aborted:
            return True
        if timeout <= 0:
            await asyncio.sleep(0)
            return self._aborted

        loop = asyncio.get_running_loop()
        woken = loop.create_future()

        def wake() -> None:
            if not woken.done():
                woken.set_result(None)

        remove = self.on_abort(wake)
        try:
            await asyncio.wait({woken}, timeout=timeout)
        finally:
            remove()
            if not woken.done():
                woken.cancel()
        return self._aborted

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """Run one network call, cancelling it if the token aborts mid-flight."""
        if self._aborted:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise OperationCancelled()
        task = asyncio.ensure_future(awaitable)
        remove = self.on_abort(task.cancel)
        try:
            return await task
        except asyncio.CancelledError:
            if self._aborted:
                raise OperationCancelled() from None
            raise
        finally:
            remove()
