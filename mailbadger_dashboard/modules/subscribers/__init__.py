"""
Subscribers Module
==================

Provides:
- Subscriber list view over the Mailbadger API (cursor pagination)
- Segment listing for the import screen
- Export: start, poll status, cancel
- CSV import through a pre-signed storage upload
"""

from flask import Blueprint

subscribers_admin_bp = Blueprint(
    'subscribers_admin',
    __name__,
    url_prefix='/admin/subscribers'
)

from . import routes
