"""
Subscriber export sessions.

Each browser session gets its own JobPoller, so two admins exporting at the
same time never share a poll loop. Every method here must run on the
dashboard's client loop.

A session's poller is dropped once its finished job has been reported, when
the session has been idle for ``session_ttl`` seconds, or when the registry
is full and the session is the least recently used one.
"""

import logging
import time
from collections import OrderedDict

from mailbadger_dashboard.core.logging_service import LoggingService
from mailbadger_dashboard.core.poller import JobPoller

logger = logging.getLogger(__name__)


class ExportRegistry:
    def __init__(self, client, interval=1.0, budget=50, max_sessions=100, session_ttl=3600.0, clock=time.monotonic):
        self._client = client
        self.interval = interval
        self.budget = budget
        self.max_sessions = max_sessions
        self.session_ttl = session_ttl
        self._clock = clock
        # scope -> (poller, last used), least recently used first
        self._pollers = OrderedDict()

    def _poller_for(self, scope):
        self._evict_idle()
        entry = self._pollers.get(scope)
        if entry is None:
            while len(self._pollers) >= self.max_sessions:
                oldest = next(iter(self._pollers))
                self._drop(oldest, 'evicted, registry full')
            poller = JobPoller(
                self._client,
                interval=self.interval,
                budget=self.budget,
                name=f"export[{scope[:8]}]",
            )
        else:
            poller = entry[0]
        self._pollers[scope] = (poller, self._clock())
        self._pollers.move_to_end(scope)
        return poller

    async def start(self, scope):
        """Trigger a new export for ``scope``; any running export is stopped.

        Returns the job snapshot, or None if a newer request replaced it.
        Raises JobStartError when the server refused to start the export.
        """
        poller = self._poller_for(scope)
        job = await poller.trigger()
        if job is None:
            return None
        LoggingService.info('export', 'Subscriber export requested', {'file_name': job.handle})
        return job.snapshot()

    def status(self, scope):
        """Snapshot of the session's job; a finished job is reported once."""
        entry = self._pollers.get(scope)
        if entry is None or entry[0].job is None:
            return None
        job = entry[0].job
        snapshot = job.snapshot()
        if job.terminal:
            self._drop(scope, f"finished ({job.phase.value})")
        else:
            self._pollers[scope] = (entry[0], self._clock())
            self._pollers.move_to_end(scope)
        return snapshot

    def cancel(self, scope):
        """Tear down the session's poller. Safe to call when none exists."""
        return self._drop(scope, 'torn down')

    def close(self):
        for scope in list(self._pollers):
            self.cancel(scope)

    def _evict_idle(self):
        cutoff = self._clock() - self.session_ttl
        for scope, (_, last_used) in list(self._pollers.items()):
            if last_used < cutoff:
                self._drop(scope, 'expired')

    def _drop(self, scope, reason):
        entry = self._pollers.pop(scope, None)
        if entry is None:
            return False
        entry[0].teardown()
        logger.info(f"Export session {scope[:8]} {reason}")
        return True

    def __contains__(self, scope):
        return scope in self._pollers

    def __len__(self):
        return len(self._pollers)
