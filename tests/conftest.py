"""
Shared fixtures: a scripted API client and an isolated log database.
"""

import asyncio
import inspect
import os
import shutil
import tempfile

import pytest

from mailbadger_dashboard.core.database import Database
from mailbadger_dashboard.core.errors import TransportError
from mailbadger_dashboard.core.logging_service import LoggingService
from mailbadger_dashboard.core.transport import ApiResponse


def ok(payload=None):
    return ApiResponse(status_code=200, payload=payload)


def status(code, payload=None):
    return ApiResponse(status_code=code, payload=payload)


def pending():
    return status(404, {'status': 'pending'})


class FakeClient:
    """Answers API calls from per-target scripts.

    A script is either a list (one entry consumed per call, the last entry
    repeats) or a callable taking the descriptor. Entries may be an
    ApiResponse, an exception to raise, or an awaitable resolving to either.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []
        self.uploads = []
        self.upload_response = ok()

    def calls_to(self, target):
        return [d for d in self.calls if d.target == target]

    async def send(self, descriptor):
        self.calls.append(descriptor)
        script = self.routes.get(descriptor.target)
        if script is None:
            result = status(404, {'message': 'not found'})
        elif callable(script):
            result = script(descriptor)
        elif len(script) > 1:
            result = script.pop(0)
        else:
            result = script[0]

        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, Exception):
            raise result
        return result

    async def send_upload(self, method, url, data=None, files=None, headers=None):
        self.uploads.append({'method': method, 'url': url, 'data': data, 'files': files, 'headers': headers})
        if isinstance(self.upload_response, Exception):
            raise self.upload_response
        return self.upload_response


async def gated(event, response):
    """Resolve to ``response`` once ``event`` is set"""
    await event.wait()
    return response


async def wait_for(predicate, timeout=2.0, step=0.005):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(step)


@pytest.fixture
def tmp_db_dir():
    """Create a temporary directory for the log database, cleaned up after."""
    d = tempfile.mkdtemp(prefix="mailbadger-test-")
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(autouse=True)
def isolated_log_db(tmp_db_dir):
    """Point the logging service at a throwaway database for every test."""
    previous = LoggingService.db_path
    LoggingService.db_path = os.path.join(tmp_db_dir, "log.db")
    yield LoggingService.db_path
    LoggingService.db_path = previous
    Database.reset()


@pytest.fixture
def transport_error():
    return TransportError("Connection error: refused")
