import os
import sqlite3
import threading


class Database:
    # Serialises schema creation across Flask threads and the client loop
    _lock = threading.Lock()
    _initialised = set()

    @staticmethod
    def connect(path):
        return sqlite3.connect(path)

    @classmethod
    def ensure_schema(cls, path, statements):
        """
        Run CREATE statements once per database path.
        Creates the parent directory when it does not exist yet.
        """
        with cls._lock:
            if path in cls._initialised:
                return
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with cls.connect(path) as conn:
                cursor = conn.cursor()
                for statement in statements:
                    cursor.execute(statement)
                conn.commit()
            cls._initialised.add(path)

    @classmethod
    def reset(cls):
        """Forget which databases were initialised (used when paths change)."""
        with cls._lock:
            cls._initialised.clear()
