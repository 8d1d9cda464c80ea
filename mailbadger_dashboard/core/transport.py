"""
HTTP transport for the Mailbadger API.

The ApiClient is created once by the dashboard extension and passed
explicitly to every fetcher, poller and flow that needs it. Requests are
made with a shared requests.Session; the async ``send`` runs the blocking
call in a worker thread so the event loop itself never blocks.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urljoin

import requests

from .errors import TransportError
from .logging_service import LoggingService

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class FetchDescriptor:
    """One network call: target, method and opaque body.

    Descriptors compare by identity. Re-issuing the same request means
    building a new descriptor.
    """

    target: str
    method: str = 'GET'
    params: Optional[Mapping[str, Any]] = None
    body: Any = None

    def __post_init__(self):
        if not self.target or not isinstance(self.target, str):
            raise ValueError(f"Invalid resource target: {self.target!r}")
        object.__setattr__(self, 'method', self.method.upper())


@dataclass
class ApiResponse:
    status_code: int
    payload: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def raise_for_status(self):
        """Raise TransportError for a non-2xx response, keeping the decoded body."""
        if not self.ok:
            message = f"HTTP {self.status_code}"
            if isinstance(self.payload, dict) and self.payload.get('message'):
                message = f"{message}: {self.payload['message']}"
            raise TransportError(message, status_code=self.status_code, payload=self.payload)
        return self


def _decode(response: requests.Response):
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class ApiClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        session: requests.Session = None,
        headers: Dict[str, str] = None,
        log_calls: bool = True
    ):
        """Initialize the API client.

        Args:
            base_url: Root of the Mailbadger API, e.g. https://app.example.com
            timeout: Per-request timeout in seconds
            session: Optional pre-built session (tests inject fakes here)
            headers: Extra headers sent with every API request
            log_calls: Persist one log row per API call
        """
        self.base_url = base_url.rstrip('/') + '/'
        self.timeout = timeout
        self.log_calls = log_calls
        self._session = session or requests.Session()
        self._session.headers.update({'Accept': 'application/json'})
        if headers:
            self._session.headers.update(headers)

    def url_for(self, target: str) -> str:
        """Resolve an API path (or pass an absolute URL through)."""
        if target.startswith(('http://', 'https://')):
            return target
        return urljoin(self.base_url, target.lstrip('/'))

    def request(self, descriptor: FetchDescriptor) -> ApiResponse:
        """Perform one blocking call. Network failures raise TransportError."""
        url = self.url_for(descriptor.target)
        kwargs = {'params': descriptor.params, 'timeout': self.timeout}
        if descriptor.body is not None:
            kwargs['data'] = descriptor.body

        return self._perform(descriptor.method, url, descriptor.target, **kwargs)

    async def send(self, descriptor: FetchDescriptor) -> ApiResponse:
        """Perform one call without blocking the event loop."""
        return await asyncio.to_thread(self.request, descriptor)

    def upload(self, method: str, url: str, data=None, files=None, headers=None) -> ApiResponse:
        """Send a file straight to object storage using a pre-signed target.

        The API session headers are not sent; storage only sees the signed
        request.
        """
        start_time = time.time()
        try:
            response = requests.request(
                method.upper(), url, data=data, files=files,
                headers=headers or {}, timeout=self.timeout
            )
        except requests.RequestException as e:
            logger.warning(f"Upload to storage failed: {e}")
            raise TransportError(f"Upload failed: {e}") from e

        return ApiResponse(
            status_code=response.status_code,
            payload=_decode(response),
            headers=dict(response.headers),
            elapsed=time.time() - start_time,
        )

    async def send_upload(self, method: str, url: str, data=None, files=None, headers=None) -> ApiResponse:
        return await asyncio.to_thread(self.upload, method, url, data, files, headers)

    def close(self):
        self._session.close()

    def _perform(self, method, url, target, **kwargs) -> ApiResponse:
        start_time = time.time()
        try:
            response = self._session.request(method, url, **kwargs)
        except requests.Timeout as e:
            self._log_call(target, method, 0, {'error': 'timeout'})
            raise TransportError(f"Timeout after {self.timeout}s: {e}") from e
        except requests.ConnectionError as e:
            self._log_call(target, method, 0, {'error': 'connection'})
            raise TransportError(f"Connection error: {e}") from e
        except requests.RequestException as e:
            self._log_call(target, method, 0, {'error': str(e)})
            raise TransportError(f"Unexpected error: {e}") from e

        result = ApiResponse(
            status_code=response.status_code,
            payload=_decode(response),
            headers=dict(response.headers),
            elapsed=time.time() - start_time,
        )
        self._log_call(target, method, result.status_code, {'elapsed': round(result.elapsed, 3)})
        return result

    def _log_call(self, target, method, status_code, details=None):
        if self.log_calls:
            LoggingService.log_api_call('transport', target, method, status_code, details)
