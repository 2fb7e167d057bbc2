"""
Logging module for the application.
This module provides functionality to set up logging and the message sinks
that route the server's console output into it.
"""

from .setup import setup_logging, set_console_level
from .sink import HistorySink, LoggingSink, MultiSink

__all__ = ["setup_logging", "set_console_level", "LoggingSink", "HistorySink", "MultiSink"]
