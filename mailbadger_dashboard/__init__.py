"""
Mailbadger Dashboard - Flask admin for the Mailbadger newsletter API
===================================================================

Admin screens for subscribers, backed by a remote Mailbadger API:
- Subscriber and segment list views
- Subscriber export with status polling
- CSV import through pre-signed storage uploads

Usage:
    from mailbadger_dashboard import MailbadgerDashboard

    dashboard = MailbadgerDashboard(app)
"""

import atexit
import logging

from .core.config import Config
from .core.event_loop import BackgroundLoop
from .core.logging_service import LoggingService
from .core.transport import ApiClient

__version__ = '0.1.0'

logger = logging.getLogger(__name__)


class MailbadgerDashboard:
    """Flask extension wiring the API client, client loop and blueprints."""

    def __init__(self, app=None, client=None):
        self.client = client
        self._owns_client = False
        self.loop = BackgroundLoop()
        self.exports = None
        self._modules = []
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        from .modules.subscribers import subscribers_admin_bp
        from .modules.subscribers.export import ExportRegistry

        for key in Config.APP_CONFIG_KEYS:
            app.config.setdefault(key, getattr(Config, key))
        if not app.config.get('SECRET_KEY') and Config.SECRET_KEY:
            app.config['SECRET_KEY'] = Config.SECRET_KEY

        LoggingService.db_path = app.config['LOG_DB']

        if self.client is None:
            self.client = ApiClient(
                app.config['MAILBADGER_API_URL'],
                timeout=app.config['MAILBADGER_API_TIMEOUT'],
                log_calls=app.config['LOG_API_CALLS'],
            )
            self._owns_client = True

        self.exports = ExportRegistry(
            self.client,
            interval=app.config['EXPORT_POLL_INTERVAL'],
            budget=app.config['EXPORT_RETRY_BUDGET'],
            max_sessions=app.config['EXPORT_MAX_SESSIONS'],
            session_ttl=app.config['EXPORT_SESSION_TTL'],
        )

        app.register_blueprint(subscribers_admin_bp)
        self._modules.append('subscribers')

        app.extensions['mailbadger_dashboard'] = self
        self.loop.start()
        atexit.register(self.close)
        logger.info(f"Mailbadger dashboard using API at {app.config['MAILBADGER_API_URL']}")
        return self

    def get_registered_modules(self):
        return list(self._modules)

    def close(self):
        """Tear down export pollers, stop the client loop, and close a client
        this extension created. Idempotent.
        """
        if self.loop.running and self.exports is not None:
            self.loop.call(self.exports.close, timeout=5)
        self.loop.stop()
        if self._owns_client:
            self._owns_client = False
            self.client.close()


__all__ = ['MailbadgerDashboard', 'Config']
