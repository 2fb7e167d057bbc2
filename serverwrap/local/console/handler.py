import time
import logging
from typing import List, Optional

from serverwrap.local.config import effective_settings as config
from serverwrap.local.database import LogDBManager
from serverwrap.local.supervisor import LaunchError, MarkerError, SupervisorError, SupervisorState
from serverwrap.local.supervisor.process_utils import describe_process
from serverwrap.local.supervisor.readiness import compile_marker
from serverwrap.local.console.session import apply_settings, command_queue, output_history, supervisor
from serverwrap.log.setup import set_console_level

log = logging.getLogger(__name__)

MARKER_SETTINGS = ("SERVER_READY_PATTERN", "SERVER_FAILURE_PATTERN")


def _parse_count(args: List[str], default: int) -> Optional[int]:
    """Reads an optional positive line count from the command arguments."""
    if not args:
        return default
    try:
        count = int(args[0])
    except ValueError:
        print(f"Not a number: '{args[0]}'")
        return None
    return max(count, 0)

#* --- Server lifecycle ---
def start_server(args: List[str]) -> None:
    """
    Starts the server with the command line given as arguments, or the configured one.

    :raises LaunchError: If the program cannot be executed.
    """
    command_line = args if args else config.SERVER_COMMAND
    try:
        apply_settings()
    except MarkerError as e:
        print(f"Server not started: {e}. Fix it with 'config set'.")
        return
    try:
        result = supervisor.start(command_line)
    except SupervisorError as e:
        print(f"{e} Use 'stop' or 'restart' first.")
        return

    if result:
        print(f"Server '{supervisor.name}' is running (PID {supervisor.pid}).")
    else:
        print(f"Server '{supervisor.name}' failed to start: {result.error}")

def stop_server() -> None:
    """Stops the server if there is one."""
    if supervisor.state in (SupervisorState.IDLE, SupervisorState.STOPPED):
        print("Server is not running.")
        return
    supervisor.stop()
    print(f"Server '{supervisor.name}' is {supervisor.state.value}.")

def restart_server(args: List[str]) -> None:
    """Stops the server, then starts it again."""
    log.info("Restarting server...")
    supervisor.stop()
    try:
        start_server(args)
    except LaunchError as e:
        log.error(f"Restart failed: {e}")

def forward_to_server(line: str) -> None:
    """
    Queues a raw console line for the server's stdin.

    :param line: The line exactly as the operator typed it.
    """
    if supervisor.state not in (SupervisorState.STARTING, SupervisorState.RUNNING):
        print(f"Server is {supervisor.state.value}; '{line.strip()}' was not sent. Type 'help' for console commands.")
        return
    try:
        command_queue.put_line(line)
    except ValueError as e:
        print(f"Cannot send command: {e}")

#* --- Information ---
def display_status() -> None:
    """Checks and displays the current status of the server, including resource usage."""
    status = supervisor.status()
    print("\n--- Server Status ---")
    print(f"  Name       : {status['name']}")
    print(f"  State      : {status['state'].upper()}")
    print(f"  Readiness  : {status['readiness']}")

    details = describe_process(status['pid']) if status['state'] in ("starting", "running", "stopping") else None
    if details:
        print(
            f"  Process    : {details['name']} | PID {details['pid']} | Status: {str(details['status']).upper()}"
            + (f" | CPU: {details['cpu_percent']:.1f}% | MEM: {details['memory_mb']:.1f} MB" if 'cpu_percent' in details else "")
        )
    elif status['pid'] is not None:
        print(f"  Process    : PID {status['pid']} (not running)")

    if status['uptime_seconds'] is not None:
        print(f"  Uptime     : {time.strftime('%H:%M:%S', time.gmtime(status['uptime_seconds']))}")
    if status['exit_code'] is not None:
        print(f"  Exit code  : {status['exit_code']}")
    if status['last_error']:
        print(f"  Last error : {status['last_error']}")
    print("-" * 21 + "\n")

def display_output(args: List[str]) -> None:
    """Prints the most recent lines the server wrote, from memory."""
    count = _parse_count(args, config.LOG_HISTORY_COUNT)
    if count is None:
        return
    lines = output_history.tail(count)
    if not lines:
        print("No server output yet.")
        return
    print(f"\n--- Last {len(lines)} lines of server output ---")
    for message in lines:
        stamp = time.strftime('%H:%M:%S', time.localtime(message.timestamp))
        print(f"{stamp} [{message.source.value}] {message.text}")
    print()

def handle_logs_command(args: List[str]) -> None:
    """Prints the most recent entries from the log database."""
    count = _parse_count(args, config.LOG_HISTORY_COUNT)
    if count is None:
        return
    if not config.LOG_DB_PATH.exists():
        print(f"No log database at '{config.LOG_DB_PATH}'.")
        return

    for log_handler in logging.getLogger().handlers:
        log_handler.flush()
    log_db = LogDBManager(config.LOG_DB_PATH)
    print(f"\n--- Displaying last {count} log entries ---")
    for log_entry in log_db.fetch_last_entries(count):
        if log_entry.level == "DEBUG" and not config.VERBOSE_LOGGING:
            continue
        print(log_entry.message)
    print()

#* --- Configuration ---
def _config_show() -> None:
    """Displays the current value of every modifiable setting."""
    print("\n--- Current Configuration ---")
    for key, value in config.modifiable_items().items():
        print(f"  {key} = {value}")
    print("---")
    print("Use 'config set <KEY> <VALUE>' to change a setting.")
    print("Changes apply the next time the server is started.")
    print("-----------------------------\n")

def _config_set(args: List[str]) -> None:
    """Changes one modifiable setting and saves it to the overrides file."""
    if len(args) < 2:
        print("Usage: config set <SETTING_NAME> <VALUE>")
        return
    key, value = args[0].upper(), " ".join(args[1:])
    if key in MARKER_SETTINGS:
        try:
            compile_marker(value, literal=not config.SERVER_MARKERS_ARE_REGEX)
        except MarkerError as e:
            print(f"Not saved: {e}")
            return
    _, message = config.update_setting(key, value)
    print(message)

def _config_help() -> None:
    """Displays help for the config command."""
    print("\nConfig Command Help:")
    print("  config show                - Display all modifiable settings.")
    print("  config set KEY VALUE       - Change a setting. Applies on the next start.")
    print("  config help                - Show this help message.")

def handle_config_command(args: List[str]) -> None:
    """
    Handles all sub-commands for the 'config' command-line interface.

    :param args: A list of string arguments following the 'config' command.
    """
    sub_command = args[0].lower() if args else "show"

    if sub_command == "show":
        _config_show()
    elif sub_command == "set":
        _config_set(args[1:])
    elif sub_command == "help":
        _config_help()
    else:
        print(f"Unknown config sub-command: '{sub_command}'. Type 'config help' for available commands.")

#* --- Console ---
def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    config.VERBOSE_LOGGING = not config.VERBOSE_LOGGING
    set_console_level(logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO)
    print(f"Verbose console logging is now {'ON' if config.VERBOSE_LOGGING else 'OFF'}.")
    log.debug("Debug logging test: This message should only appear when verbose is ON.")

def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  start [command line]   - Start the server (default: the configured SERVER_COMMAND).")
    print("  stop                   - Stop the server gracefully.")
    print("  restart [command line] - Stop and then start the server.")
    print("  status                 - Show the state and resource usage of the server.")
    print("  output [n]             - Show the last n lines the server wrote.")
    print("  logs [n]               - Show the last n entries of the log database.")
    print("  config <cmd>           - Manage configuration. Use 'config help' for more details.")
    print("  send <line>            - Send a line to the server, even if it matches a console command.")
    print("  verbose                - Toggle detailed DEBUG log output in the console.")
    print("  help                   - Show this help message.")
    print("  exit                   - Stop the server and exit the console.")
    print("Any other line is sent to the server as a command.")
    print()
