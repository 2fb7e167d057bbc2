import time
import sqlite3
import logging
from pathlib import Path
from collections import namedtuple
from typing import Any, Dict, List, Optional

from serverwrap.local.database.base import BaseDBManager

LogEntry = namedtuple('LogEntry', ['timestamp', 'level', 'module', 'source', 'message'])
log = logging.getLogger(__name__)


class LogDBManager(BaseDBManager):
    """
    Manages all interactions with the application's logging SQLite database.
    """

    def __init__(self, db_path: Path):
        """
        Initializes the LogDBManager.

        :param db_path: The path to the logging SQLite database file.
        """
        super().__init__(db_path, lock=None, enable_wal=False)

    def initialize_database(self) -> None:
        """
        Ensures the log table and its index exist in the database.
        """
        try:
            # Server output comes in bursts, so several rows can share a timestamp.
            self.execute('''
                CREATE TABLE IF NOT EXISTS logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp REAL,
                    level TEXT,
                    module TEXT,
                    funcName TEXT,
                    lineno INTEGER,
                    message TEXT
                )
            ''')
            self.execute("CREATE INDEX IF NOT EXISTS idx_logs_timestamp ON logs (timestamp)")
            log.debug("Log database tables created/verified.")
        except sqlite3.Error as e:
            log.critical(f"Could not create log database tables: {e}", exc_info=True)
            raise

    def insert_log_batch(self, log_entries: List[Dict[str, Any]]) -> None:
        """
        Inserts multiple log entries in a single transaction for better performance.

        :param log_entries: List of dictionaries containing log entry data.
                           Each dict should have keys: timestamp, level, module, funcName, lineno, message
        """
        if not log_entries:
            return

        try:
            params = [(
                entry['timestamp'],
                entry['level'],
                entry['module'],
                entry['funcName'],
                entry['lineno'],
                entry['message']
            ) for entry in log_entries]

            self.execute_many(
                '''INSERT INTO logs (timestamp, level, module, funcName, lineno, message)
                   VALUES (?, ?, ?, ?, ?, ?)''',
                params
            )
        except sqlite3.Error as e:
            log.error(f"Failed to insert log batch of {len(log_entries)} entries: {e}", exc_info=True)
            raise

    def fetch_last_entries(self, limit: int, module: Optional[str] = None) -> List[LogEntry]:
        """
        Fetches the most recent N log entries from the database.

        :param limit: The maximum number of log entries to retrieve.
        :param module: Only return rows of this module (for server output: the server name).
        :return list: A list of LogEntry namedtuples, oldest first.
        """
        sql = "SELECT timestamp, level, module, funcName, message FROM logs"
        params: tuple = ()
        if module is not None:
            sql += " WHERE module = ?"
            params = (module,)
        sql += " ORDER BY id DESC LIMIT ?"

        entries = []
        try:
            rows = self.fetch_all(sql, params + (limit,))
            # Reverse the results to show oldest first.
            for row in reversed(rows):
                dt = time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(row['timestamp']))
                entries.append(LogEntry(
                    timestamp=row['timestamp'], level=row['level'], module=row['module'],
                    source=row['funcName'],
                    message=f"{dt} - {row['level']:<8} - [{row['module']}] - {row['message']}"
                ))
        except sqlite3.Error as e:
            log.error(f"Failed to fetch log entries from database: {e}")
        return entries
