"""
Race-safe fetch primitive.

A Fetcher owns one FetchState and performs one network call per ``issue``.
Only the most recently issued descriptor may change the state: every call
carries a CancelToken that is invalidated when a newer descriptor is issued
or the fetcher is torn down, and results for invalid tokens are dropped.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from .errors import StaleResponseDiscarded, TransportError
from .scheduler import CancelToken
from .transport import FetchDescriptor

logger = logging.getLogger(__name__)


class FetchStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


# Any state may be re-issued; settling is only legal from LOADING.
FETCH_TRANSITIONS = {
    FetchStatus.IDLE: {FetchStatus.LOADING},
    FetchStatus.LOADING: {FetchStatus.LOADING, FetchStatus.SUCCESS, FetchStatus.ERROR},
    FetchStatus.SUCCESS: {FetchStatus.LOADING},
    FetchStatus.ERROR: {FetchStatus.LOADING},
}


@dataclass(frozen=True)
class FetchState:
    status: FetchStatus
    data: Any = None
    error: Optional[TransportError] = None

    @property
    def is_loading(self) -> bool:
        return self.status is FetchStatus.LOADING

    @property
    def is_error(self) -> bool:
        return self.status is FetchStatus.ERROR

    @property
    def is_success(self) -> bool:
        return self.status is FetchStatus.SUCCESS

    @property
    def error_payload(self):
        """Decoded body of a failed response, if the server sent one."""
        return self.error.payload if self.error is not None else None


class FetchCall:
    """Handle for one issued descriptor.

    Awaiting it returns the settled FetchState, or raises
    StaleResponseDiscarded when a newer descriptor (or teardown) replaced it.
    """

    def __init__(self, descriptor: FetchDescriptor, token: CancelToken, task: asyncio.Task):
        self.descriptor = descriptor
        self.token = token
        self._task = task

    @property
    def superseded(self) -> bool:
        return self.token.cancelled

    def done(self) -> bool:
        return self._task.done()

    def __await__(self):
        state = yield from self._task.__await__()
        if state is None:
            raise StaleResponseDiscarded(self.descriptor)
        return state


Listener = Callable[[FetchState], None]


class Fetcher:
    def __init__(self, client, fallback: Any = None, name: str = 'fetch'):
        """Bind a fetcher to an API client.

        Args:
            client: object with ``async send(descriptor) -> ApiResponse``
            fallback: data exposed while idle and after any failed call
            name: label used in log messages
        """
        self._client = client
        self._fallback = fallback
        self.name = name
        self._state = FetchState(FetchStatus.IDLE, data=fallback)
        self._token: Optional[CancelToken] = None
        self._descriptor: Optional[FetchDescriptor] = None
        self._listeners: List[Listener] = []
        self._closed = False

    @property
    def state(self) -> FetchState:
        return self._state

    @property
    def descriptor(self) -> Optional[FetchDescriptor]:
        """The currently active descriptor, if any."""
        return self._descriptor

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def issue(self, descriptor: FetchDescriptor) -> FetchCall:
        """Replace the active descriptor and start exactly one network call."""
        if self._closed:
            raise RuntimeError(f"{self.name} fetcher has been torn down")

        if self._token is not None:
            self._token.cancel()
        token = CancelToken()
        self._token = token
        self._descriptor = descriptor

        self._transition(FetchState(FetchStatus.LOADING, data=self._state.data))
        task = asyncio.ensure_future(self._resolve(descriptor, token))
        return FetchCall(descriptor, token, task)

    def teardown(self):
        """Invalidate the in-flight call and drop listeners. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._token is not None:
            self._token.cancel()
        self._listeners.clear()

    async def _resolve(self, descriptor: FetchDescriptor, token: CancelToken) -> Optional[FetchState]:
        try:
            response = await self._client.send(descriptor)
            response.raise_for_status()
        except TransportError as e:
            outcome = FetchState(FetchStatus.ERROR, data=self._fallback, error=e)
        except Exception as e:
            logger.error(f"{self.name}: {descriptor.method} {descriptor.target} failed: {e}", exc_info=True)
            outcome = FetchState(FetchStatus.ERROR, data=self._fallback, error=TransportError(f"Request failed: {e}"))
        else:
            outcome = FetchState(FetchStatus.SUCCESS, data=response.payload)

        if token.cancelled:
            logger.debug(f"{self.name}: dropped stale result for {descriptor.method} {descriptor.target}")
            return None

        self._transition(outcome)
        return outcome

    def _transition(self, new_state: FetchState):
        allowed = FETCH_TRANSITIONS[self._state.status]
        if new_state.status not in allowed:
            raise RuntimeError(
                f"{self.name}: illegal fetch transition {self._state.status.value} -> {new_state.status.value}"
            )
        self._state = new_state
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception as e:
                logger.error(f"{self.name}: state listener failed: {e}", exc_info=True)
