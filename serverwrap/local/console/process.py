import logging

from serverwrap.local.supervisor import LaunchError
from serverwrap.local.console.session import supervisor
from serverwrap.local.console.handler import (
    display_output, display_status, forward_to_server, handle_config_command, handle_logs_command,
    print_help, restart_server, start_server, stop_server, toggle_verbose_logging,
)

log = logging.getLogger(__name__)


def _start(args) -> None:
    try:
        start_server(args)
    except LaunchError as e:
        log.error(f"Could not start the server: {e}")

def execute_command(line: str) -> bool:
    """
    Executes a single line typed by the operator. Console commands are handled
    here; every other line is forwarded to the server.

    :param line: The raw console line.
    :return bool: True if the console should exit, False otherwise.
    """
    parts = line.strip().split()
    if not parts:
        return False
    command, args = parts[0].lower(), parts[1:]
    log.debug(f"Executing command: {command}, args: {args}")

    command_map = {
        "start": lambda: _start(args),
        "stop": stop_server,
        "restart": lambda: restart_server(args),
        "status": display_status,
        "output": lambda: display_output(args),
        "logs": lambda: handle_logs_command(args),
        "config": lambda: handle_config_command(args),
        "send": lambda: forward_to_server(line.strip()[len(parts[0]):]),
        "verbose": toggle_verbose_logging,
        "help": print_help,
    }

    if command == "exit":
        supervisor.stop()
        return True

    if command not in command_map:
        forward_to_server(line)
        return False

    command_map[command]()
    return False
