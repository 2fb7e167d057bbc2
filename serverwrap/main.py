import sys
import logging
import threading
from typing import List, Optional

from setproctitle import setproctitle

# Basic console logger for messages BEFORE full setup is complete.
# This logger will be replaced by the full setup later.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

import serverwrap.local.console as console
from serverwrap.local.config import effective_settings as config
from serverwrap.local.supervisor import LaunchError
from serverwrap.log.setup import setup_logging

# --- Global State ---
CONSOLE_LOCK = threading.Lock()


def main(argv: Optional[List[str]] = None) -> None:
    """
    The main entry point: starts the server, then reads console commands until
    the operator exits.

    :param argv: The server's command line. Defaults to the program arguments,
                 falling back to the configured SERVER_COMMAND.
    """
    argv = sys.argv[1:] if argv is None else argv
    setproctitle(config.PROCESS_TITLE)
    setup_logging(logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO)

    try:
        console.start_server(argv)
    except LaunchError as e:
        log.critical(f"Could not launch the server: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        log.warning("Startup interrupted.")
        console.supervisor.stop()
        return

    print("--- Server Console ---")
    print("Type 'help' for a list of console commands. Any other line is sent to the server.")

    try:
        while True:
            try:
                # The input prompt must be outside the lock to not block background threads
                command_line_str = input()
                with CONSOLE_LOCK:
                    if console.execute_command(command_line_str):
                        break

            except EOFError:
                log.info("Console input closed.")
                break
            except KeyboardInterrupt:
                with CONSOLE_LOCK:
                    log.warning("Exiting console due to KeyboardInterrupt.")
                    break
            except Exception as e:
                with CONSOLE_LOCK:
                    log.error(f"An unexpected error occurred in the console: {e}", exc_info=True)
    finally:
        console.supervisor.stop()
        logging.shutdown()

if __name__ == "__main__":
    main()
    print("Exiting console application. See you next time!")
