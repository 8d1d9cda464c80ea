"""
Mailbadger Dashboard Core
=========================

Client primitives shared by the dashboard modules: the API transport,
the race-safe fetcher, the job poller and the event loop they run on.
"""

from .config import Config
from .database import Database
from .errors import (
    DashboardError,
    InvalidTransition,
    JobExhausted,
    JobFailed,
    JobStartError,
    StaleResponseDiscarded,
    TransportError,
    UploadError,
)
from .event_loop import BackgroundLoop
from .fetch import FetchCall, Fetcher, FetchState, FetchStatus
from .logging_service import LoggingService, logger
from .poller import JobPhase, JobPoller, PollJob
from .scheduler import CancelToken, IntervalTask
from .transport import ApiClient, ApiResponse, FetchDescriptor

__all__ = [
    'Config', 'Database', 'LoggingService', 'logger',
    'ApiClient', 'ApiResponse', 'FetchDescriptor',
    'Fetcher', 'FetchCall', 'FetchState', 'FetchStatus',
    'JobPoller', 'PollJob', 'JobPhase',
    'CancelToken', 'IntervalTask', 'BackgroundLoop',
    'DashboardError', 'TransportError', 'StaleResponseDiscarded', 'JobStartError',
    'JobFailed', 'JobExhausted', 'InvalidTransition', 'UploadError',
]
