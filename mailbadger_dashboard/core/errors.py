"""
Dashboard error types.

All errors inherit from DashboardError for easy catching.
Transport errors are turned into fetch state; job errors are delivered
through a job's outcome future.
"""


class DashboardError(Exception):
    """Base exception for all dashboard client failures."""
    pass


class TransportError(DashboardError):
    """Raised when a single API call fails at the network or HTTP level.

    ``status_code`` is None when no response was received at all.
    ``payload`` holds the decoded error body when the server sent one.
    """

    def __init__(self, message, status_code=None, payload=None):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)

    @property
    def server_message(self):
        if isinstance(self.payload, dict):
            return self.payload.get('message')
        return None


class StaleResponseDiscarded(DashboardError):
    """Raised to the awaiter of a call that was superseded or torn down."""

    def __init__(self, descriptor):
        self.descriptor = descriptor
        super().__init__(f"Discarded stale response for {descriptor.method} {descriptor.target}")


class JobStartError(DashboardError):
    """Raised when a job could not be started on the server."""

    def __init__(self, message, cause=None):
        self.cause = cause
        super().__init__(message)


class JobFailed(DashboardError):
    """The server reported that the job failed."""

    def __init__(self, message):
        self.message = message
        super().__init__(message)


class JobExhausted(DashboardError):
    """The retry budget ran out before the job finished."""

    def __init__(self, attempts):
        self.attempts = attempts
        super().__init__("The job did not finish in time. Please try again.")


class InvalidTransition(DashboardError):
    """Raised when a job is moved to a phase its current phase cannot reach."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move job from {current.value} to {target.value}")


class UploadError(DashboardError):
    """Raised when a subscriber import could not be uploaded or started."""
    pass
