import os
import sys
import shlex
import signal
import psutil
import logging
import subprocess
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from serverwrap.local.supervisor.errors import LaunchError

log = logging.getLogger(__name__)

CommandLine = Union[str, Sequence[str]]


#* --- Process Creation ---
def split_command_line(command_line: CommandLine) -> List[str]:
    """Returns the command line as an argument list. Strings are split shell-style."""
    if isinstance(command_line, str):
        args = shlex.split(command_line, posix=sys.platform != "win32")
    else:
        args = [str(arg) for arg in command_line]
    if not args:
        raise ValueError("Command line is empty")
    return args

def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific flags so the server gets its own process group."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}

def spawn(command_line: CommandLine, cwd: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> subprocess.Popen:
    """
    Launches the server with all three standard streams piped.

    :param command_line: The fully assembled command line.
    :param cwd: Working directory for the server. Defaults to the current directory.
    :param env: Extra environment variables, merged over the current environment.
    :return: The running process.
    :raises LaunchError: If the program cannot be executed.
    """
    args = split_command_line(command_line)
    spawn_env = None
    if env:
        spawn_env = os.environ.copy()
        spawn_env.update(env)

    try:
        process = subprocess.Popen(
            args,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd or None,
            env=spawn_env,
            **_get_popen_creation_flags(),
        )
    except (OSError, ValueError) as e:
        log.critical(f"Failed to start server process {args}: {e}")
        raise LaunchError(args, e) from e

    log.info(f"Server process started with PID: {process.pid}")
    return process


#* --- Process Status & Termination ---
def describe_process(pid: Optional[int]) -> Optional[Dict[str, Any]]:
    """
    Collects status, CPU and memory figures for a running process.

    :param pid: The process id.
    :return: A dictionary of figures, or None if the process is gone.
    """
    if pid is None:
        return None
    try:
        proc = psutil.Process(pid)
        with proc.oneshot():
            return {
                "pid": pid,
                "name": proc.name(),
                "status": proc.status(),
                "cpu_percent": proc.cpu_percent(interval=0.1),
                "memory_mb": proc.memory_info().rss / 1024 / 1024,
                "threads": proc.num_threads(),
            }
    except psutil.NoSuchProcess:
        return None
    except psutil.AccessDenied:
        return {"pid": pid, "name": "?", "status": "access denied"}

def _collect_descendants(pid: int) -> List[psutil.Process]:
    """Returns all descendants of a process that are still alive."""
    try:
        return psutil.Process(pid).children(recursive=True)
    except psutil.NoSuchProcess:
        log.warning(f"Process {pid} no longer exists, skipping children retrieval.")
        return []

def _terminate_processes(processes: List[psutil.Process]) -> None:
    """Sends SIGTERM to all given processes."""
    for proc in processes:
        try:
            log.debug(f"Sending SIGTERM to {proc.name()} (PID {proc.pid})")
            proc.terminate()
        except psutil.NoSuchProcess:
            continue

def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not processes:
        return

    log.warning(f"{len(processes)} processes did not terminate gracefully. Forcing shutdown...")
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process {proc.name()} (PID {proc.pid}).")
            proc.kill()
        except psutil.NoSuchProcess:
            continue

def terminate_process_tree(process: subprocess.Popen, timeout: float) -> None:
    """
    Terminates the server and everything it spawned, escalating to a kill for
    any process still alive after `timeout` seconds.

    The server itself is signalled and waited for through its Popen handle so
    that its exit status is still collected by the Popen object.

    :param process: The server process.
    :param timeout: Seconds to wait after SIGTERM.
    """
    descendants = _collect_descendants(process.pid)
    _terminate_processes(descendants)
    try:
        log.debug(f"Sending SIGTERM to server (PID {process.pid})")
        process.terminate()
    except OSError as e:
        log.debug(f"Could not terminate server (PID {process.pid}): {e}")

    try:
        _, alive = psutil.wait_procs(descendants, timeout=timeout)
    except psutil.TimeoutExpired:
        alive = descendants
    _forceful_kill(alive)

    try:
        process.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        log.warning(f"Killing stubborn server process (PID {process.pid}).")
        try:
            process.kill()
        except OSError as e:
            log.debug(f"Could not kill server (PID {process.pid}): {e}")

def kill_process_group(pid: int) -> None:
    """
    Kills whatever is left of the server's process group (POSIX only). The
    server runs in its own session, so its group id equals its pid.

    :param pid: The pid of the server, i.e. the group leader.
    """
    if sys.platform == "win32":
        return
    try:
        os.killpg(pid, signal.SIGKILL)
        log.debug(f"Killed leftover processes in group {pid}.")
    except ProcessLookupError:
        pass
    except PermissionError as e:
        log.warning(f"Could not kill process group {pid}: {e}")

def discard_process(process: subprocess.Popen, timeout: float) -> None:
    """
    Ends a server process that never came under supervision: kills it and
    everything it spawned, reaps it and closes its pipes.

    :param process: The server process.
    :param timeout: Seconds to wait after SIGTERM before killing.
    """
    log.warning(f"Discarding unsupervised server process (PID {process.pid}).")
    terminate_process_tree(process, timeout)
    kill_process_group(process.pid)
    process.wait()
    for pipe in (process.stdin, process.stdout, process.stderr):
        if pipe is None:
            continue
        try:
            pipe.close()
        except OSError as e:
            log.debug(f"Closing a pipe of server process {process.pid} failed: {e}")
