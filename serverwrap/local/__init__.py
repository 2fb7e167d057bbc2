"""
Local package for serverwrap.

This package holds the runtime configuration, the supervisor that runs the
server process, the operator console and the log database.
"""

from .config import effective_settings

__all__ = ["effective_settings"]
