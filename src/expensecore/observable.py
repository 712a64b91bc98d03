"""Replay-latest value holder.

A subscriber registered at any time is called immediately with the value
that is current *now*, then with every later change. No subscriber ever
sees a state that contradicts what ``value`` returns at the same instant.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReplayLatest(Generic[T]):
    """Holds one value and broadcasts changes to callbacks.

    Usage::

        org_ids = ReplayLatest[str | None](None)
        unsubscribe = org_ids.subscribe(print)   # prints None right away
        org_ids.publish("org-1")                 # prints org-1
        unsubscribe()
    """

    def __init__(self, initial: T) -> None:
        self._value = initial
        self._subscribers: list[Callable[[T], None]] = []

    @property
    def value(self) -> T:
        return self._value

    def publish(self, value: T, *, dedupe: bool = True) -> bool:
        """Replace the value and notify subscribers.

        With ``dedupe`` an equal value is stored but not re-broadcast.

        Returns:
            True if subscribers were notified.
        """
        changed = value != self._value
        self._value = value
        if dedupe and not changed:
            return False
        for callback in list(self._subscribers):
            self._deliver(callback, value)
        return True

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register ``callback`` and replay the current value to it.

        Returns:
            A function removing the subscription (idempotent).
        """
        self._subscribers.append(callback)
        self._deliver(callback, self._value)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def wait_for(self, predicate: Callable[[T], bool], timeout: Optional[float] = None) -> T:
        """Wait until the value satisfies ``predicate`` (checked immediately first).

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()

        def _on_value(value: T) -> None:
            if not future.done() and predicate(value):
                future.set_result(value)

        unsubscribe = self.subscribe(_on_value)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            unsubscribe()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _deliver(self, callback: Callable[[T], None], value: T) -> None:
        try:
            callback(value)
        except Exception:
            # One broken subscriber must not block the others or the writer
            logger.exception("Subscriber %r failed", callback)


__all__ = ["ReplayLatest"]
