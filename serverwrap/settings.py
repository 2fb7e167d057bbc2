"""
This module contains the default configuration settings for serverwrap.
It defines paths, the supervised server's launch and marker settings, logging
configuration and the whitelist of settings that may be changed at runtime.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=True)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(os.getenv("SERVERWRAP_HOME", pathlib.Path.cwd())).resolve()
BIN_DIR = BASE_DIR / "bin"
LOGS_DIR = BASE_DIR / "logs"

#* --- Application File Paths ---
LOG_DB_PATH = LOGS_DIR / "serverwrap_logs.db"
OVERRIDES_JSON_PATH = BIN_DIR / "overrides.json"

#* --- Supervised Server ---
# The fully assembled command line. Building it (classpath, memory flags,
# plugins) is the job of whoever configures the wrapper.
SERVER_NAME = os.getenv("SERVER_NAME", "server")
SERVER_COMMAND = os.getenv("SERVER_COMMAND", "java -Xmx1024M -Xms1024M -jar minecraft_server.jar nogui")
SERVER_WORKDIR = os.getenv("SERVER_WORKDIR", "")
SERVER_ENCODING = os.getenv("SERVER_ENCODING", "utf-8")

# Readiness and failure markers, matched against every relayed output line.
SERVER_READY_PATTERN = os.getenv("SERVER_READY_PATTERN", r"Done \(")
SERVER_FAILURE_PATTERN = os.getenv("SERVER_FAILURE_PATTERN", r"FAILED TO BIND TO PORT")
# When False the markers are plain substrings instead of regular expressions.
SERVER_MARKERS_ARE_REGEX = os.getenv("SERVER_MARKERS_ARE_REGEX", "True").lower() in ('true', '1', 't')

SERVER_STOP_COMMAND = os.getenv("SERVER_STOP_COMMAND", "stop")

#* --- Supervisor Settings ---
GRACEFUL_SHUTDOWN_TIMEOUT = float(os.getenv("GRACEFUL_SHUTDOWN_TIMEOUT", "30"))  # seconds before force-killing
FORCED_SHUTDOWN_TIMEOUT = 5     # seconds to wait after SIGTERM before SIGKILL
COMMAND_POLL_INTERVAL = 0.1     # seconds between polls of the console command queue
HANDLE_SIGNALS = os.getenv("HANDLE_SIGNALS", "True").lower() in ('true', '1', 't')

#* --- Grafana Loki (optional) ---
LOKI_ENABLED = os.getenv("LOKI_ENABLED", "False").lower() in ('true', '1', 't')
LOKI_URL = os.getenv("LOKI_URL", "http://localhost:3100")
LOKI_ORG_ID = os.getenv("LOKI_ORG_ID", "fake")

#* --- Application variables ---
VERBOSE_LOGGING = False
PROCESS_TITLE = "ServerWrap - Supervisor"

#* --- MODIFIABLE SETTINGS (Changeable at runtime via 'config' command) ---
MODIFIABLE_SETTINGS = {
    # Supervised server
    "SERVER_COMMAND", "SERVER_READY_PATTERN", "SERVER_FAILURE_PATTERN",
    "SERVER_STOP_COMMAND", "GRACEFUL_SHUTDOWN_TIMEOUT",
    # Logging
    "LOG_BUFFER_SIZE", "LOG_BUFFER_FLUSH_INTERVAL",
    "MAX_LOG_DB_SIZE_MB", "LOG_DB_SIZE_CHECK_INTERVAL_SECONDS", "LOG_HISTORY_COUNT",
    "OUTPUT_HISTORY_LINES",
}

#* --- Default Values for Modifiable Settings ---
LOG_BUFFER_SIZE = 100
LOG_BUFFER_FLUSH_INTERVAL = 10
MAX_LOG_DB_SIZE_MB = 100
LOG_DB_SIZE_CHECK_INTERVAL_SECONDS = 12 * 3600  # 12 hours
LOG_HISTORY_COUNT = 50
OUTPUT_HISTORY_LINES = 500
