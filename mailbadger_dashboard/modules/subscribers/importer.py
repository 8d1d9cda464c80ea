"""
Subscriber CSV import.

The file is never sent through the Mailbadger API itself: the API signs an
upload target, the file goes straight to object storage, and the API is
then told which file to import.
"""

import logging

from mailbadger_dashboard.core.errors import TransportError, UploadError
from mailbadger_dashboard.core.fetch import Fetcher
from mailbadger_dashboard.core.transport import FetchDescriptor

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = ('text/csv', 'application/vnd.ms-excel')
UPLOAD_FAILED = "Unable to upload file. Please try again."
IMPORT_FAILED = "Unable to import subscribers. Please try again."


def is_csv(filename, content_type):
    if content_type and content_type.split(';')[0].strip() in ALLOWED_CONTENT_TYPES:
        return True
    return bool(filename) and filename.lower().endswith('.csv')


class ImportFlow:
    def __init__(self, client):
        self._client = client
        self._fetcher = Fetcher(client, name='import')

    async def run(self, filename, content, content_type='text/csv', segments=()):
        """Upload ``content`` and ask the API to import it into ``segments``.

        Returns the server's confirmation message. Raises UploadError with a
        user-facing message on any failure.
        """
        if not filename:
            raise UploadError("A file is required")
        if not is_csv(filename, content_type):
            raise UploadError("Only CSV files can be imported")

        try:
            target = await self._sign(filename, content_type)
            await self._upload(target, filename, content, content_type)
            return await self._start_import(filename, segments)
        finally:
            self._fetcher.teardown()

    async def _call(self, descriptor, default_message):
        state = await self._fetcher.issue(descriptor)
        if state.is_error:
            logger.warning(f"{descriptor.method} {descriptor.target} failed: {state.error}")
            raise UploadError(state.error.server_message or default_message)
        return state.data if isinstance(state.data, dict) else {}

    async def _sign(self, filename, content_type):
        target = await self._call(
            FetchDescriptor('/api/s3/sign', method='POST', body={
                'filename': filename,
                'contentType': content_type,
                'action': 'import',
            }),
            UPLOAD_FAILED,
        )
        if not target.get('url'):
            raise UploadError(UPLOAD_FAILED)
        return target

    async def _upload(self, target, filename, content, content_type):
        method = (target.get('method') or 'PUT').upper()
        headers = target.get('headers') or {}
        try:
            if method == 'POST':
                response = await self._client.send_upload(
                    'POST', target['url'],
                    data=target.get('fields') or {},
                    files={'file': (filename, content, content_type)},
                    headers=headers,
                )
            else:
                headers = {'Content-Type': content_type, **headers}
                response = await self._client.send_upload(method, target['url'], data=content, headers=headers)
        except TransportError as e:
            logger.warning(f"Storage upload of {filename} failed: {e}")
            raise UploadError(UPLOAD_FAILED) from e

        if not response.ok:
            logger.warning(f"Storage rejected {filename} with HTTP {response.status_code}")
            raise UploadError(UPLOAD_FAILED)

    async def _start_import(self, filename, segments):
        result = await self._call(
            FetchDescriptor('/api/subscribers/import', method='POST', body={
                'filename': filename,
                'segments[]': [str(s) for s in segments],
            }),
            IMPORT_FAILED,
        )
        return result.get('message') or "Subscribers import started."
