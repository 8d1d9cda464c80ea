"""
Cancellation tokens and a repeating scheduled task for the client event loop.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class CancelToken:
    """One-way flag owned by a single unit of work (a call, a poll loop)."""

    __slots__ = ('_cancelled',)

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        """Invalidate the token. Returns False if it was already invalid."""
        if self._cancelled:
            return False
        self._cancelled = True
        return True


class IntervalTask:
    """Run an async action every ``interval`` seconds until stopped.

    A tick is started when the interval elapses, not when the previous tick
    finishes, so ticks may overlap when the action is slow. Actions that
    need to ignore late results check ``token``. Exceptions raised by an
    action are logged and never escape the tick.
    """

    def __init__(self, interval: float, action: Callable[[], Awaitable[None]], name: str = 'interval'):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.name = name
        self.token = CancelToken()
        self._action = action
        self._runner: Optional[asyncio.Task] = None
        self._ticks: Set[asyncio.Task] = set()
        self.fired = 0

    @property
    def running(self) -> bool:
        return self._runner is not None and not self.token.cancelled

    def start(self):
        if self._runner is not None:
            raise RuntimeError(f"{self.name} already started")
        if self.token.cancelled:
            raise RuntimeError(f"{self.name} was stopped and cannot be restarted")
        self._runner = asyncio.ensure_future(self._run())
        return self

    def stop(self) -> bool:
        """Stop scheduling ticks. Safe to call any number of times.

        Ticks already in flight are left to finish; they observe the
        cancelled token and must not act on their results.
        """
        if not self.token.cancel():
            return False
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
        logger.debug(f"{self.name} stopped after {self.fired} ticks")
        return True

    async def _run(self):
        while not self.token.cancelled:
            await asyncio.sleep(self.interval)
            if self.token.cancelled:
                break
            self.fired += 1
            tick = asyncio.ensure_future(self._fire())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)

    async def _fire(self):
        try:
            await self._action()
        except Exception as e:
            logger.error(f"{self.name} tick failed: {e}", exc_info=True)
