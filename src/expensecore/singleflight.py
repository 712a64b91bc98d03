"""Single-flight memoization for expensive async status checks.

One in-flight check per caller identity; every concurrent caller awaits
the same task. Used for the privileged-operator lookup, which is slow to
compute and rarely changes within a session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

S = TypeVar("S")


class SingleFlightStatusCache(Generic[S]):
    """Race-safe async memoization keyed by caller identity.

    ``check`` and ``wait_for`` look up and register the in-flight task
    without any ``await`` in between. On a single event loop that makes
    "is one running?" and "register mine" one atomic step, so two callers
    can never both start a check for the same identity.

    Failure policy: a loader exception resolves every waiter to
    ``on_failure(caller_id)`` (``default`` when not given) and is not
    cached. A wait longer than ``timeout_s`` cancels the stuck task, logs
    an operational error and resolves all its waiters the same way, so the
    next call starts a fresh check.

    Args:
        loader: Coroutine function computing the status for a caller id.
        default: Factory for the safe default status.
        on_failure: Factory for the status reported when the check failed
            or timed out.
        timeout_s: Upper bound for a single wait (None = unbounded).
        name: Label used in log messages.

    Usage::

        cache = SingleFlightStatusCache(load_status, default=PrivilegedOperatorStatus.denied)
        status = await cache.wait_for(caller_id)
        cache.invalidate()  # on logout / identity change
    """

    def __init__(
        self,
        loader: Callable[[str], Awaitable[S]],
        *,
        default: Callable[[Optional[str]], S],
        on_failure: Optional[Callable[[Optional[str]], S]] = None,
        timeout_s: Optional[float] = None,
        name: str = "status",
    ) -> None:
        self._loader = loader
        self._default = default
        self._on_failure = on_failure or default
        self._timeout_s = timeout_s
        self._name = name
        self._inflight: dict[str, asyncio.Task[S]] = {}
        self._results: dict[str, S] = {}
        self._generation = 0

    @property
    def generation(self) -> int:
        """Incremented by every ``invalidate()``."""
        return self._generation

    def in_flight(self, caller_id: str) -> bool:
        task = self._inflight.get(caller_id)
        return task is not None and not task.done()

    def peek(self, caller_id: Optional[str]) -> Optional[S]:
        """Last resolved status for ``caller_id`` without starting a check."""
        if caller_id is None:
            return None
        return self._results.get(caller_id)

    async def check(self, caller_id: Optional[str]) -> S:
        """Run (or join) a check for ``caller_id`` and return its status.

        Joins a check already in flight for the same identity; otherwise
        starts a new one even if an older result is cached.
        """
        if caller_id is None:
            return self._default(None)
        return await self._await(caller_id, self._start(caller_id))

    async def wait_for(self, caller_id: Optional[str]) -> S:
        """Return the resolved status, never an assumed one.

        Uses the cached result or the check in flight; if no check was ever
        started for this identity, starts one. Unauthenticated callers get
        the default without a lookup.
        """
        if caller_id is None:
            return self._default(None)
        if caller_id in self._results and not self.in_flight(caller_id):
            return self._results[caller_id]
        return await self._await(caller_id, self._start(caller_id))

    def prefetch(self, caller_id: Optional[str]) -> None:
        """Start a check for ``caller_id`` in the background (no-op for None)."""
        if caller_id is not None:
            self._start(caller_id)

    def invalidate(self) -> None:
        """Drop every cached and in-flight result (logout / identity change).

        Tasks still running finish on their own, but their results are no
        longer recorded.
        """
        self._generation += 1
        self._inflight.clear()
        self._results.clear()
        logger.debug("%s cache invalidated (generation=%d)", self._name, self._generation)

    # ── Internals ───────────────────────────────────────

    def _start(self, caller_id: str) -> asyncio.Task[S]:
        # No await in this method: lookup + registration are atomic on the loop.
        task = self._inflight.get(caller_id)
        if task is not None and not task.done():
            return task
        task = asyncio.ensure_future(self._run(caller_id))
        self._inflight[caller_id] = task
        return task

    async def _run(self, caller_id: str) -> S:
        task = asyncio.current_task()
        try:
            status = await self._loader(caller_id)
        except Exception as e:
            logger.error("%s check failed for %s, using safe default: %s", self._name, caller_id, e)
            if self._inflight.get(caller_id) is task:
                del self._inflight[caller_id]
            return self._on_failure(caller_id)

        if self._inflight.get(caller_id) is task:
            self._results[caller_id] = status
            del self._inflight[caller_id]
        return status

    async def _await(self, caller_id: str, task: asyncio.Task[S]) -> S:
        # asyncio.wait never cancels ``task`` when this waiter is cancelled
        done, _ = await asyncio.wait({task}, timeout=self._timeout_s)
        if task in done:
            if task.cancelled():
                return self._on_failure(caller_id)
            return task.result()

        if self._inflight.get(caller_id) is task:
            del self._inflight[caller_id]
        task.cancel()
        logger.error(
            "%s check for %s timed out after %.1fs, resolving to safe default",
            self._name,
            caller_id,
            self._timeout_s,
        )
        return self._on_failure(caller_id)


__all__ = ["SingleFlightStatusCache"]
