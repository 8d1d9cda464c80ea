"""
Job poller for long-running server-side jobs (subscriber exports).

trigger() asks the server to start a job and receives a handle. An
IntervalTask then checks the job's status once per interval through a
Fetcher until the job is ready, the server reports failure, or the retry
budget runs out. The outcome is delivered once through ``PollJob.outcome``.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from .errors import (
    InvalidTransition,
    JobExhausted,
    JobFailed,
    JobStartError,
    StaleResponseDiscarded,
)
from .fetch import Fetcher, FetchState
from .scheduler import CancelToken, IntervalTask
from .transport import FetchDescriptor

logger = logging.getLogger(__name__)

DEFAULT_RETRY_BUDGET = 50
DEFAULT_POLL_INTERVAL = 1.0


class JobPhase(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    POLLING = "polling"
    READY = "ready"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


JOB_TRANSITIONS = {
    JobPhase.IDLE: {JobPhase.REQUESTED},
    JobPhase.REQUESTED: {JobPhase.POLLING},
    JobPhase.POLLING: {JobPhase.READY, JobPhase.FAILED, JobPhase.EXHAUSTED},
    JobPhase.READY: set(),
    JobPhase.FAILED: set(),
    JobPhase.EXHAUSTED: set(),
}

TERMINAL_PHASES = frozenset({JobPhase.READY, JobPhase.FAILED, JobPhase.EXHAUSTED})


def _new_outcome() -> asyncio.Future:
    return asyncio.get_running_loop().create_future()


@dataclass(eq=False)
class PollJob:
    """One job lifecycle. Terminal jobs are never reused."""

    budget: int = DEFAULT_RETRY_BUDGET
    handle: Optional[str] = None
    phase: JobPhase = JobPhase.IDLE
    retries_remaining: int = 0
    attempts: int = 0
    url: Optional[str] = None
    message: Optional[str] = None
    outcome: asyncio.Future = field(default_factory=_new_outcome, repr=False)

    def __post_init__(self):
        if self.budget < 1:
            raise ValueError("retry budget must be at least 1")
        self.retries_remaining = self.budget

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def consumed(self) -> int:
        return self.budget - self.retries_remaining

    def move_to(self, phase: JobPhase):
        if phase not in JOB_TRANSITIONS[self.phase]:
            raise InvalidTransition(self.phase, phase)
        self.phase = phase

    async def wait(self) -> str:
        """Wait for the job to finish and return its download URL.

        Raises JobFailed or JobExhausted, or CancelledError if the poller
        was torn down first.
        """
        return await asyncio.shield(self.outcome)

    def snapshot(self) -> dict:
        return {
            'handle': self.handle,
            'phase': self.phase.value,
            'budget': self.budget,
            'retries_remaining': self.retries_remaining,
            'attempts': self.attempts,
            'url': self.url,
            'message': self.message,
        }


def export_start_descriptor() -> FetchDescriptor:
    return FetchDescriptor('/api/subscribers/export', method='POST')


def export_status_descriptor(handle: str) -> FetchDescriptor:
    return FetchDescriptor('/api/subscribers/export/download', params={'filename': handle})


class JobPoller:
    def __init__(
        self,
        client,
        start: Callable[[], FetchDescriptor] = export_start_descriptor,
        status: Callable[[str], FetchDescriptor] = export_status_descriptor,
        interval: float = DEFAULT_POLL_INTERVAL,
        budget: int = DEFAULT_RETRY_BUDGET,
        name: str = 'export',
    ):
        """Create a poller bound to an API client.

        Args:
            client: API client shared with the fetchers this poller owns
            start: builds the "start job" descriptor
            status: builds the "check job status" descriptor for a handle
            interval: seconds between status checks
            budget: maximum number of status checks per job
        """
        self._start = start
        self._status = status
        self.interval = interval
        self.budget = budget
        self.name = name
        self._starter = Fetcher(client, name=f"{name}-start")
        self._checker = Fetcher(client, name=f"{name}-status")
        self._job: Optional[PollJob] = None
        self._job_token: Optional[CancelToken] = None
        self._timer: Optional[IntervalTask] = None
        self._closed = False

    @property
    def job(self) -> Optional[PollJob]:
        return self._job

    @property
    def polling(self) -> bool:
        return self._timer is not None and self._timer.running

    async def trigger(self) -> Optional[PollJob]:
        """Start a new job and begin polling it.

        Any job still being polled is stopped first. Returns None if a newer
        trigger or teardown superseded this one before the server answered.
        """
        if self._closed:
            raise RuntimeError(f"{self.name} poller has been torn down")

        self._stop_polling()

        job = PollJob(budget=self.budget)
        token = CancelToken()
        self._job, self._job_token = job, token
        job.move_to(JobPhase.REQUESTED)

        try:
            state = await self._starter.issue(self._start())
        except StaleResponseDiscarded:
            return None
        if token.cancelled:
            return None

        handle = state.data.get('file_name') if isinstance(state.data, dict) else None
        if state.is_error or not handle:
            self._abandon(job, token)
            if state.is_error:
                logger.warning(f"{self.name}: unable to start job: {state.error}")
                raise JobStartError(
                    state.error.server_message or "Unable to generate report", cause=state.error
                )
            raise JobStartError("Server did not return a job handle")

        job.handle = handle
        job.move_to(JobPhase.POLLING)
        self._timer = IntervalTask(self.interval, lambda: self._tick(job, token), name=f"{self.name}-poll")
        self._timer.start()
        logger.info(f"{self.name}: polling job {handle} every {self.interval}s (budget {job.budget})")
        return job

    def stop(self) -> bool:
        """Stop polling the current job without finishing it. Idempotent."""
        return self._stop_polling()

    def teardown(self):
        """Stop everything this poller owns; it cannot be triggered again."""
        if self._closed:
            return
        self._closed = True
        self._stop_polling()
        self._starter.teardown()
        self._checker.teardown()

    def _abandon(self, job: PollJob, token: CancelToken):
        # A job that never got a handle is forgotten, not kept as a failure
        token.cancel()
        job.outcome.cancel()
        if self._job is job:
            self._job, self._job_token = None, None

    def _stop_polling(self) -> bool:
        stopped = False
        if self._job_token is not None and self._job_token.cancel():
            stopped = True
        if self._timer is not None:
            self._timer.stop()
        if self._job is not None and not self._job.outcome.done():
            self._job.outcome.cancel()
        return stopped

    async def _tick(self, job: PollJob, token: CancelToken):
        if token.cancelled or job.attempts >= job.budget:
            return

        job.attempts += 1
        try:
            state: Optional[FetchState] = await self._checker.issue(self._status(job.handle))
        except StaleResponseDiscarded:
            # Replaced by a newer tick; the attempt still counts.
            state = None

        # No suspension point from here on: the check and the decrement run
        # atomically with respect to teardown.
        if token.cancelled:
            return

        job.retries_remaining -= 1

        if state is not None:
            payload = state.error_payload if state.is_error else state.data
            if isinstance(payload, dict) and payload.get('status') == 'failed':
                self._finish(job, token, JobPhase.FAILED, message=payload.get('message') or 'Export failed')
                return
            if state.is_success and isinstance(payload, dict) and payload.get('url'):
                self._finish(job, token, JobPhase.READY, url=payload['url'])
                return

        if job.retries_remaining <= 0:
            self._finish(job, token, JobPhase.EXHAUSTED)

    def _finish(self, job: PollJob, token: CancelToken, phase: JobPhase, url=None, message=None):
        job.move_to(phase)
        token.cancel()
        if self._timer is not None:
            self._timer.stop()

        if phase is JobPhase.READY:
            job.url = url
            job.outcome.set_result(url)
            logger.info(f"{self.name}: job {job.handle} ready after {job.attempts} attempts")
            return

        if phase is JobPhase.FAILED:
            job.message = message
            error = JobFailed(message)
            logger.warning(f"{self.name}: job {job.handle} failed: {message}")
        else:
            error = JobExhausted(job.attempts)
            job.message = str(error)
            logger.warning(f"{self.name}: job {job.handle} gave up after {job.attempts} attempts")

        job.outcome.set_exception(error)
        # Callers are not obliged to await the outcome
        job.outcome.exception()
