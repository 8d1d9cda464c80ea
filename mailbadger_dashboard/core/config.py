import os
from dotenv import load_dotenv

load_dotenv(override=True)

class Config:
    """
    Base configuration for the Mailbadger dashboard.
    Deployments should provide the API location via environment variables.
    """
    # Flask settings
    SECRET_KEY = os.getenv('FLASK_SECRET_KEY')

    # Get DB_DIR from environment, or use a default if not set
    DB_DIR = os.getenv('DB_DIR', os.path.join(os.getcwd(), 'databases'))

    # Request log database
    LOG_DB = os.getenv('LOG_DB', os.path.join(DB_DIR, "dashboard_log.db"))
    LOG_API_CALLS = os.getenv('LOG_API_CALLS', 'true').lower() == 'true'

    # Mailbadger API
    MAILBADGER_API_URL = os.getenv('MAILBADGER_API_URL', 'http://localhost:8080')
    MAILBADGER_API_TIMEOUT = float(os.getenv('MAILBADGER_API_TIMEOUT', '10'))

    # Export polling - one status check per interval, at most budget checks
    EXPORT_POLL_INTERVAL = float(os.getenv('EXPORT_POLL_INTERVAL', '1.0'))
    EXPORT_RETRY_BUDGET = int(os.getenv('EXPORT_RETRY_BUDGET', '50'))

    # Export sessions - idle sessions expire, the oldest is dropped when full
    EXPORT_MAX_SESSIONS = int(os.getenv('EXPORT_MAX_SESSIONS', '100'))
    EXPORT_SESSION_TTL = float(os.getenv('EXPORT_SESSION_TTL', '3600'))

    # List views
    SUBSCRIBERS_PER_PAGE = int(os.getenv('SUBSCRIBERS_PER_PAGE', '10'))
    SEGMENTS_PER_PAGE = int(os.getenv('SEGMENTS_PER_PAGE', '40'))

    # Keys copied into app.config by MailbadgerDashboard.init_app
    APP_CONFIG_KEYS = (
        'LOG_DB',
        'LOG_API_CALLS',
        'MAILBADGER_API_URL',
        'MAILBADGER_API_TIMEOUT',
        'EXPORT_POLL_INTERVAL',
        'EXPORT_RETRY_BUDGET',
        'EXPORT_MAX_SESSIONS',
        'EXPORT_SESSION_TTL',
        'SUBSCRIBERS_PER_PAGE',
        'SEGMENTS_PER_PAGE',
    )
