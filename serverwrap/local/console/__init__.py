"""
This module initializes the console package, exposing command execution,
verbose logging toggling and help output for the interactive console.
"""

from .process import execute_command
from .handler import toggle_verbose_logging, print_help, start_server
from .session import supervisor, command_queue, output_history

__all__ = [
    "execute_command", "toggle_verbose_logging", "print_help", "start_server",
    "supervisor", "command_queue", "output_history",
]
