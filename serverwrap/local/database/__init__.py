"""
This module initializes the local database management system.
It exposes the manager for the log database.
"""

from .log import LogDBManager, LogEntry

__all__ = ["LogDBManager", "LogEntry"]
