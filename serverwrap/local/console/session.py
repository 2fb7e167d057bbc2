"""
The objects shared by every console command: the supervisor, the queue that
forwards typed lines to the server and the in-memory output history.
"""

from serverwrap.local.config import effective_settings as config
from serverwrap.local.supervisor import CommandQueue, CommandRequest, ProcessSupervisor
from serverwrap.log.sink import HistorySink, LoggingSink, MultiSink

command_queue = CommandQueue()
output_history = HistorySink(config.OUTPUT_HISTORY_LINES)
supervisor = ProcessSupervisor(
    sink=MultiSink([LoggingSink(config.SERVER_NAME), output_history]),
    command_source=command_queue,
)


def apply_settings() -> None:
    """
    Copies the settings that may have changed at runtime onto the supervisor.

    :raises MarkerError: If a configured marker is not a valid pattern.
    """
    supervisor.set_markers(config.SERVER_READY_PATTERN, config.SERVER_FAILURE_PATTERN)
    supervisor.stop_timeout = config.GRACEFUL_SHUTDOWN_TIMEOUT
    supervisor.stop_command = CommandRequest.parse(config.SERVER_STOP_COMMAND)
