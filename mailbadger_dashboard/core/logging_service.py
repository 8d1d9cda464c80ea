"""
Centralized logging service for the Mailbadger dashboard.
Persists API calls and errors to the log database, with a stdout logger fallback.
"""

import json
import logging
import traceback
from datetime import datetime, timedelta
from flask import request, has_request_context
from .database import Database
from .config import Config

_fallback = logging.getLogger(__name__)

LOGS_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS app_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        level TEXT NOT NULL,
        source TEXT NOT NULL,
        message TEXT NOT NULL,
        details TEXT,
        ip_address TEXT,
        user_agent TEXT,
        request_path TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_logs_timestamp
    ON app_logs(timestamp DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_logs_level
    ON app_logs(level)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_logs_source
    ON app_logs(source)
    """,
)


class LoggingService:
    """Centralized logging service for dashboard-wide logging"""

    # Overridden by MailbadgerDashboard.init_app from app.config['LOG_DB']
    db_path = None

    @classmethod
    def _path(cls):
        return cls.db_path or Config.LOG_DB

    @staticmethod
    def _get_request_context():
        """Extract request context information"""
        if not has_request_context():
            return None, None, None

        try:
            ip_address = request.headers.get('X-Forwarded-For', request.remote_addr)
            if ip_address and ',' in ip_address:
                ip_address = ip_address.split(',')[0].strip()

            user_agent = request.headers.get('User-Agent', '')
            request_path = request.path

            return ip_address, user_agent, request_path
        except Exception:
            return None, None, None

    @classmethod
    def log(cls, level, source, message, details=None):
        """
        Log a message to the database

        Args:
            level (str): Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            source (str): Source component (transport, export, import, etc.)
            message (str): Main log message
            details (str/dict): Additional details (will be JSON-encoded if dict)
        """
        try:
            path = cls._path()
            Database.ensure_schema(path, LOGS_SCHEMA)

            ip_address, user_agent, request_path = cls._get_request_context()

            if isinstance(details, dict):
                details = json.dumps(details, indent=2, default=str)

            timestamp = datetime.now().isoformat()

            with Database.connect(path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    INSERT INTO app_logs
                    (timestamp, level, source, message, details, ip_address, user_agent, request_path)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    timestamp, level.upper(), source, message, details,
                    ip_address, user_agent, request_path
                ))
                conn.commit()

        except Exception as e:
            # Fall back to the process logger if the database fails
            _fallback.log(
                getattr(logging, level.upper(), logging.INFO),
                "[%s] %s%s", source, message, f" | {details}" if details else ""
            )
            _fallback.debug("Logging service error: %s", e)

    @classmethod
    def info(cls, source, message, details=None):
        """Log info message"""
        cls.log('INFO', source, message, details)

    @classmethod
    def warning(cls, source, message, details=None):
        """Log warning message"""
        cls.log('WARNING', source, message, details)

    @classmethod
    def error(cls, source, message, details=None):
        """Log error message"""
        cls.log('ERROR', source, message, details)

    @classmethod
    def log_api_call(cls, source, endpoint, method='GET', status_code=200, details=None):
        """Log API calls. A status of 0 means no response was received."""
        message = f"API {method} {endpoint} - Status: {status_code}"
        if status_code == 0 or status_code >= 500:
            level = 'ERROR'
        elif status_code >= 400:
            level = 'WARNING'
        else:
            level = 'INFO'
        cls.log(level, source, message, details)

    @classmethod
    def log_error_with_traceback(cls, source, error, details=None):
        """Log error with full traceback. Call from inside an except block."""
        error_details = {
            'error_type': type(error).__name__,
            'error_message': str(error),
            'traceback': traceback.format_exc()
        }
        if details:
            error_details['additional_details'] = details

        cls.error(source, f"Exception occurred: {type(error).__name__}", error_details)

    @classmethod
    def recent(cls, limit=50, source=None):
        """Return the most recent log rows as dicts, newest first"""
        path = cls._path()
        Database.ensure_schema(path, LOGS_SCHEMA)
        query = "SELECT timestamp, level, source, message, details FROM app_logs"
        params = []
        if source:
            query += " WHERE source = ?"
            params.append(source)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        with Database.connect(path) as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [
                {
                    'timestamp': row[0],
                    'level': row[1],
                    'source': row[2],
                    'message': row[3],
                    'details': row[4],
                }
                for row in cursor.fetchall()
            ]

    @classmethod
    def cleanup_old_logs(cls, days_to_keep=30):
        """Clean up old log entries"""
        try:
            cutoff_iso = (datetime.now() - timedelta(days=days_to_keep)).isoformat()
            path = cls._path()
            Database.ensure_schema(path, LOGS_SCHEMA)

            with Database.connect(path) as conn:
                cursor = conn.cursor()
                cursor.execute("""
                    DELETE FROM app_logs
                    WHERE timestamp < ?
                """, (cutoff_iso,))

                deleted_count = cursor.rowcount
                conn.commit()

            cls.info('system', f"Cleaned up {deleted_count} old log entries")
            return deleted_count

        except Exception as e:
            cls.error('system', f"Failed to cleanup old logs: {e}")
            return 0


# Convenience instance for easy importing
logger = LoggingService()
