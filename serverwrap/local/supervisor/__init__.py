"""
The Supervisor package.
Runs a single server process and manages its lifecycle.

This package contains the central ProcessSupervisor class and its workers,
which together relay the server's console output, feed it commands, detect
when it has finished loading, and stop it cleanly.
"""
from .commands import CommandQueue, CommandRequest
from .errors import LaunchError, MarkerError, StartupFailed, SupervisorError, UnexpectedExit
from .models import Message, MessageSource, ReadinessState, SupervisorState
from .supervisor import ProcessSupervisor, StartupResult

__all__ = [
    'ProcessSupervisor', 'StartupResult',
    'CommandQueue', 'CommandRequest',
    'Message', 'MessageSource', 'ReadinessState', 'SupervisorState',
    'SupervisorError', 'LaunchError', 'MarkerError', 'StartupFailed', 'UnexpectedExit',
]
