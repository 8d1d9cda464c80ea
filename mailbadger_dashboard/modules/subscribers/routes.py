"""
Subscribers Routes
==================

Provides:
- GET /             -- one page of subscribers (per_page, or a link from a previous page)
- POST /            -- create a subscriber
- GET /<id>         -- one subscriber
- PUT /<id>         -- update a subscriber
- DELETE /<id>      -- delete a subscriber
- GET /segments     -- every segment, following pagination
- POST /export      -- start an export for this session
- GET /export       -- current export status for this session
- DELETE /export    -- stop this session's export
- POST /import      -- upload a CSV and start an import
"""

import logging
import posixpath
import uuid
from urllib.parse import urlsplit, urlunsplit

from flask import current_app, jsonify, request, session

from mailbadger_dashboard.core.errors import JobStartError, TransportError, UploadError
from mailbadger_dashboard.core.fetch import Fetcher
from mailbadger_dashboard.core.logging_service import LoggingService
from mailbadger_dashboard.core.pagination import collection_descriptor, fetch_all, fetch_page
from mailbadger_dashboard.core.transport import FetchDescriptor
from . import subscribers_admin_bp
from .importer import ImportFlow

logger = logging.getLogger(__name__)

SUBSCRIBERS_COLLECTION = '/api/subscribers'
SEGMENTS_COLLECTION = '/api/segments'
MAX_PER_PAGE = 100


def _dashboard():
    return current_app.extensions['mailbadger_dashboard']


def _session_scope():
    """Stable per-session key for export state"""
    scope = session.get('export_scope')
    if not scope:
        scope = uuid.uuid4().hex
        session['export_scope'] = scope
    return scope


def _per_page(default_key):
    per_page = request.args.get('per_page', type=int) or current_app.config[default_key]
    return max(1, min(per_page, MAX_PER_PAGE))


def _page_link(link):
    """Normalise a pagination link; None unless it stays under the subscribers collection"""
    parts = urlsplit(link)
    if parts.scheme or parts.netloc or not parts.path.startswith('/'):
        return None
    path = posixpath.normpath(parts.path)
    if path != SUBSCRIBERS_COLLECTION and not path.startswith(SUBSCRIBERS_COLLECTION + '/'):
        return None
    return urlunsplit(('', '', path, parts.query, ''))


async def _settle(client, descriptor, name):
    fetcher = Fetcher(client, name=name)
    try:
        return await fetcher.issue(descriptor)
    finally:
        fetcher.teardown()


def _call_api(descriptor, name):
    dashboard = _dashboard()
    return dashboard.loop.run(_settle(dashboard.client, descriptor, name))


def _api_error(error, fallback):
    """Client errors keep the API's status and message; anything else is a 502"""
    if error.status_code is not None and 400 <= error.status_code < 500:
        body = {'error': error.server_message or fallback}
        if isinstance(error.payload, dict) and error.payload.get('errors'):
            body['errors'] = error.payload['errors']
        return jsonify(body), error.status_code

    LoggingService.error('subscribers', f"{request.method} {request.path} failed: {error}", {
        'status_code': error.status_code,
    })
    return jsonify({'error': fallback}), 502


def _subscriber_form():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = request.form.to_dict()
        data['segments'] = request.form.getlist('segments') or request.form.getlist('segments[]')

    email = (data.get('email') or '').strip()
    if not email:
        return None
    return {
        'email': email,
        'name': (data.get('name') or '').strip(),
        'segments[]': [str(s) for s in data.get('segments') or []],
    }


# ===================
# LIST VIEWS
# ===================

@subscribers_admin_bp.route('', methods=['GET'])
def list_subscribers():
    """One page of subscribers; pass ?link=<links.next|previous> to move between pages"""
    dashboard = _dashboard()
    link = request.args.get('link')

    if link:
        target = _page_link(link)
        if target is None:
            return jsonify({'error': 'Invalid page link'}), 400
        descriptor = FetchDescriptor(target)
    else:
        descriptor = collection_descriptor(SUBSCRIBERS_COLLECTION, _per_page('SUBSCRIBERS_PER_PAGE'))

    try:
        page = dashboard.loop.run(fetch_page(Fetcher(dashboard.client, name='subscribers'), descriptor))
        return jsonify(page.to_dict()), 200
    except TransportError as e:
        LoggingService.log_error_with_traceback('subscribers', e, {'target': descriptor.target})
        return jsonify({'error': 'Unable to load subscribers'}), 502


@subscribers_admin_bp.route('/segments', methods=['GET'])
def list_segments():
    """All segments, for the import screen's segment picker"""
    dashboard = _dashboard()
    descriptor = collection_descriptor(SEGMENTS_COLLECTION, current_app.config['SEGMENTS_PER_PAGE'])

    try:
        segments = dashboard.loop.run(fetch_all(Fetcher(dashboard.client, name='segments'), descriptor))
        return jsonify({'collection': segments, 'total_count': len(segments)}), 200
    except TransportError as e:
        LoggingService.log_error_with_traceback('segments', e, {'target': descriptor.target})
        return jsonify({'error': 'Unable to load segments'}), 502


# ===================
# SUBSCRIBER CRUD
# ===================

@subscribers_admin_bp.route('', methods=['POST'])
def create_subscriber():
    """Create a subscriber from JSON or form fields: email, name, segments"""
    form = _subscriber_form()
    if form is None:
        return jsonify({'error': 'Email is required'}), 400

    state = _call_api(FetchDescriptor(SUBSCRIBERS_COLLECTION, method='POST', body=form), 'subscriber-create')
    if state.is_error:
        return _api_error(state.error, 'Unable to create subscriber')

    LoggingService.info('subscribers', 'Subscriber created', {'email': form['email']})
    return jsonify(state.data or {}), 201


@subscribers_admin_bp.route('/<int:subscriber_id>', methods=['GET'])
def get_subscriber(subscriber_id):
    """One subscriber, for the edit form"""
    state = _call_api(FetchDescriptor(f"{SUBSCRIBERS_COLLECTION}/{subscriber_id}"), 'subscriber')
    if state.is_error:
        return _api_error(state.error, 'Unable to load subscriber')
    return jsonify(state.data or {}), 200


@subscribers_admin_bp.route('/<int:subscriber_id>', methods=['PUT'])
def update_subscriber(subscriber_id):
    """Update a subscriber's email, name and segments"""
    form = _subscriber_form()
    if form is None:
        return jsonify({'error': 'Email is required'}), 400

    descriptor = FetchDescriptor(f"{SUBSCRIBERS_COLLECTION}/{subscriber_id}", method='PUT', body=form)
    state = _call_api(descriptor, 'subscriber-update')
    if state.is_error:
        return _api_error(state.error, 'Unable to update subscriber')

    LoggingService.info('subscribers', 'Subscriber updated', {'id': subscriber_id})
    return jsonify(state.data or {}), 200


@subscribers_admin_bp.route('/<int:subscriber_id>', methods=['DELETE'])
def delete_subscriber(subscriber_id):
    """Delete a subscriber"""
    descriptor = FetchDescriptor(f"{SUBSCRIBERS_COLLECTION}/{subscriber_id}", method='DELETE')
    state = _call_api(descriptor, 'subscriber-delete')
    if state.is_error:
        return _api_error(state.error, 'Unable to delete subscriber')

    LoggingService.info('subscribers', 'Subscriber deleted', {'id': subscriber_id})
    return '', 204


# ===================
# EXPORT
# ===================

@subscribers_admin_bp.route('/export', methods=['POST'])
def start_export():
    """Start a new export; a running export for this session is replaced"""
    dashboard = _dashboard()
    scope = _session_scope()

    try:
        snapshot = dashboard.loop.run(dashboard.exports.start(scope))
    except JobStartError as e:
        LoggingService.warning('export', 'Unable to start subscriber export', {'error': str(e)})
        return jsonify({'error': str(e)}), 502

    if snapshot is None:
        return jsonify({'error': 'Export was replaced by a newer request'}), 409
    return jsonify(snapshot), 202


@subscribers_admin_bp.route('/export', methods=['GET'])
def export_status():
    """Current export state for this session. A finished export is reported once."""
    dashboard = _dashboard()
    snapshot = dashboard.loop.call(dashboard.exports.status, _session_scope())
    if snapshot is None:
        return jsonify({'error': 'No export in progress'}), 404
    return jsonify(snapshot), 200


@subscribers_admin_bp.route('/export', methods=['DELETE'])
def cancel_export():
    """Stop polling this session's export (leaving the page)"""
    dashboard = _dashboard()
    dashboard.loop.call(dashboard.exports.cancel, _session_scope())
    return '', 204


# ===================
# IMPORT
# ===================

@subscribers_admin_bp.route('/import', methods=['POST'])
def import_subscribers():
    """Upload a CSV file to storage and start importing it"""
    dashboard = _dashboard()
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        return jsonify({'error': 'A CSV file is required'}), 400

    segments = request.form.getlist('segments') or request.form.getlist('segments[]')
    content = upload.read()

    try:
        message = dashboard.loop.run(
            ImportFlow(dashboard.client).run(upload.filename, content, upload.mimetype or 'text/csv', segments)
        )
    except UploadError as e:
        LoggingService.warning('import', 'Subscriber import failed', {
            'filename': upload.filename,
            'error': str(e),
        })
        return jsonify({'error': str(e)}), 400

    LoggingService.info('import', 'Subscriber import started', {
        'filename': upload.filename,
        'segments': segments,
        'size': len(content),
    })
    return jsonify({'message': message}), 200
