import time
import logging
import threading
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Pattern

from serverwrap.local.config import effective_settings as config
from serverwrap.local.supervisor import process_utils
from serverwrap.local.supervisor.commands import CommandRequest, CommandSource
from serverwrap.local.supervisor.errors import MarkerError, StartupFailed, SupervisorError, UnexpectedExit
from serverwrap.local.supervisor.injector import CommandInjector
from serverwrap.local.supervisor.models import (
    Message, MessageSink, MessageSource, ReadinessState, SupervisorState,
)
from serverwrap.local.supervisor.monitor import ExitMonitor
from serverwrap.local.supervisor.process_utils import CommandLine
from serverwrap.local.supervisor.readiness import Marker, ReadinessGate, compile_marker
from serverwrap.local.supervisor.relay import StreamRelay
from serverwrap.local.supervisor.shutdown import ShutdownCoordinator
from serverwrap.local.supervisor.worker import Worker

log = logging.getLogger(__name__)

ACTIVE_STATES = (SupervisorState.STARTING, SupervisorState.RUNNING)


@dataclass(frozen=True)
class StartupResult:
    """Outcome of `ProcessSupervisor.start()`. Truthy when the server finished loading."""

    readiness: ReadinessState
    error: Optional[StartupFailed] = None

    @property
    def ok(self) -> bool:
        return self.readiness is ReadinessState.LOADED

    def __bool__(self) -> bool:
        return self.ok


class _NullSink:
    def receive(self, message: Message) -> None:
        pass


class ProcessSupervisor:
    """
    Runs one server process at a time and owns everything attached to it: the
    process handle, the workers relaying its output and feeding its input, and
    the hooks that stop it when the wrapper itself is terminated.
    """

    def __init__(
        self,
        ready_pattern: Optional[Marker] = None,
        failure_pattern: Optional[Marker] = None,
        sink: Optional[MessageSink] = None,
        command_source: Optional[CommandSource] = None,
        stop_command: Optional[str] = None,
        name: Optional[str] = None,
        stop_timeout: Optional[float] = None,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        encoding: Optional[str] = None,
        literal_markers: Optional[bool] = None,
        handle_signals: Optional[bool] = None,
        poll_interval: Optional[float] = None,
    ) -> None:
        """
        Unset arguments fall back to the effective settings.

        :param ready_pattern: Output marker meaning the server finished loading.
        :param failure_pattern: Output marker meaning the server failed to start.
        :param sink: Receives every output line and every internal notice.
        :param command_source: Queue of externally submitted commands to forward to the server.
        :param stop_command: The console command that makes the server shut down cleanly.
        :param name: Logical name of the server, used in thread names.
        :param stop_timeout: Seconds to wait for a clean exit before killing the server.
        :param cwd: Working directory of the server.
        :param env: Extra environment variables for the server.
        :param encoding: Text encoding of the server's console.
        :param literal_markers: Treat string markers as plain substrings.
        :param handle_signals: Stop the server on SIGINT/SIGTERM.
        :param poll_interval: Seconds between polls of the command source.
        """
        self.stop_command = CommandRequest.parse(stop_command or config.SERVER_STOP_COMMAND)
        self.name = name or config.SERVER_NAME
        self.stop_timeout = stop_timeout if stop_timeout is not None else config.GRACEFUL_SHUTDOWN_TIMEOUT
        self.cwd = cwd if cwd is not None else (config.SERVER_WORKDIR or None)
        self.env = env
        self.encoding = encoding or config.SERVER_ENCODING
        self.poll_interval = poll_interval if poll_interval is not None else config.COMMAND_POLL_INTERVAL
        if handle_signals is None:
            handle_signals = config.HANDLE_SIGNALS
        if literal_markers is None:
            literal_markers = not config.SERVER_MARKERS_ARE_REGEX
        self.set_markers(
            ready_pattern if ready_pattern is not None else config.SERVER_READY_PATTERN,
            failure_pattern if failure_pattern is not None else config.SERVER_FAILURE_PATTERN,
            literal_markers,
        )

        self._sink: MessageSink = sink or _NullSink()
        self._command_source = command_source
        self._coordinator = ShutdownCoordinator(self, handle_signals=handle_signals)

        self._state = SupervisorState.IDLE
        self._state_lock = threading.Lock()
        self._start_lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._gate: Optional[ReadinessGate] = None
        self._exit_monitor: Optional[ExitMonitor] = None
        self._injector: Optional[CommandInjector] = None
        self._workers: List[Worker] = []
        self._stop_requested = False
        self._stop_done = threading.Event()
        self._launched = threading.Event()
        self._exit_code: Optional[int] = None
        self.start_time: Optional[float] = None
        self.last_error: Optional[Exception] = None

    #* --- Read-only status ---
    @property
    def state(self) -> SupervisorState:
        with self._state_lock:
            return self._state

    @property
    def readiness(self) -> ReadinessState:
        if self._gate is None:
            return ReadinessState.NOT_STARTED
        return self._gate.state

    @property
    def exit_code(self) -> Optional[int]:
        return self._exit_code

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def workers(self) -> List[Worker]:
        return list(self._workers)

    @property
    def stop_requested(self) -> bool:
        """True once stop() has claimed the current server. Read without locking, so signal handlers can use it."""
        return self._stop_requested

    @property
    def ready_pattern(self) -> Marker:
        return self._ready_pattern

    @property
    def failure_pattern(self) -> Optional[Marker]:
        return self._failure_pattern

    @property
    def literal_markers(self) -> bool:
        return self._literal_markers

    def set_markers(self, ready_pattern: Marker, failure_pattern: Optional[Marker] = None,
                    literal: Optional[bool] = None) -> None:
        """
        Validates and replaces the output markers. They apply from the next start().

        :param ready_pattern: Output marker meaning the server finished loading.
        :param failure_pattern: Output marker meaning the server failed to start.
        :param literal: Treat string markers as plain substrings. Unchanged if None.
        :raises MarkerError: If a marker is not a valid pattern or the ready marker is empty.
        """
        if literal is None:
            literal = self._literal_markers
        ready = compile_marker(ready_pattern, literal)
        if ready is None:
            raise MarkerError("A readiness marker is required")
        failure = compile_marker(failure_pattern, literal)

        self._ready_pattern, self._failure_pattern, self._literal_markers = ready_pattern, failure_pattern, literal
        self._ready_marker: Pattern[str] = ready
        self._failure_marker: Optional[Pattern[str]] = failure

    def status(self) -> Dict[str, Any]:
        """Returns a snapshot of the supervisor's state for display."""
        uptime = None
        if self.start_time and self.state in ACTIVE_STATES:
            uptime = round(time.time() - self.start_time, 1)
        return {
            "name": self.name,
            "state": self.state.value,
            "readiness": self.readiness.value,
            "pid": self.pid,
            "exit_code": self.exit_code,
            "uptime_seconds": uptime,
            "last_error": str(self.last_error) if self.last_error else None,
        }

    #* --- Operator API ---
    def start(self, command_line: CommandLine) -> StartupResult:
        """
        Launches the server and blocks until it has finished loading or failed.

        :param command_line: The fully assembled command line.
        :return: A truthy result once the server is RUNNING; a falsy one carrying StartupFailed otherwise.
        :raises LaunchError: If the program cannot be executed at all.
        :raises SupervisorError: If a server is already being supervised.
        """
        with self._start_lock:
            with self._state_lock:
                current = self._state
                cleanup_pending = current is SupervisorState.CRASHED and not self._stop_requested
            if current in ACTIVE_STATES or current is SupervisorState.STOPPING:
                raise SupervisorError(f"Server '{self.name}' is already {current.value}.")
            if cleanup_pending:
                self.stop()

            gate = ReadinessGate(self._ready_marker, self._failure_marker)
            log.info(f"Starting server '{self.name}'...")
            process = process_utils.spawn(command_line, cwd=self.cwd, env=self.env)
            try:
                self._launch(process, gate)
            except BaseException:
                log.error(f"Could not supervise server '{self.name}' (PID {process.pid}).", exc_info=True)
                if self._process is process:
                    self.stop()
                else:
                    process_utils.discard_process(process, config.FORCED_SHUTDOWN_TIMEOUT)
                raise

        readiness = self._gate.wait()
        if readiness is ReadinessState.LOADED:
            with self._state_lock:
                if self._state is SupervisorState.STARTING:
                    self._state = SupervisorState.RUNNING
                    log.info(f"Server '{self.name}' is up (PID {process.pid}) after {time.time() - self.start_time:.2f} seconds.")
                    return StartupResult(readiness)
            reason = f"Server left the starting state ({self.state.value}) right after loading"
        else:
            reason = self._gate.reason or "Server failed to start"

        log.error(f"Startup of '{self.name}' failed: {reason}")
        self._emit(Message.internal(f"Startup failed: {reason}"))
        self.stop()
        return StartupResult(ReadinessState.FAILED, StartupFailed(reason))

    def execute(self, command: str, arguments: str = "") -> bool:
        """
        Sends a console command to the server.

        :param command: The command word.
        :param arguments: The rest of the command line.
        :return: False (and nothing is sent) unless the server is starting or running.
        """
        state = self.state
        if state not in ACTIVE_STATES:
            log.warning(f"Cannot send '{command}': server '{self.name}' is {state.value}.")
            return False
        return self._injector.inject(CommandRequest(command, arguments))

    def stop(self, wait: bool = True) -> bool:
        """
        Stops the server and joins every worker. Safe to call any number of times
        from any number of threads: only the first call does the work and the
        stop command is written at most once per server process.

        :param wait: If another call is already stopping the server, wait for it to finish.
        :return: True if this call performed the shutdown.
        """
        with self._state_lock:
            if self._state is SupervisorState.IDLE:
                return False
            already_stopping = self._stop_requested
            launched = self._launched
            if not already_stopping:
                self._stop_requested = True
                if self._state in ACTIVE_STATES:
                    self._state = SupervisorState.STOPPING

        if already_stopping:
            if wait:
                self._stop_done.wait()
            return False

        # A concurrent start() may still be starting this lifetime's workers.
        launched.wait()
        interrupted = False
        try:
            self._release_process()
            try:
                self._coordinator.shutdown_all(self._workers)
            except KeyboardInterrupt:
                interrupted = True
            with self._state_lock:
                if self._state is SupervisorState.STOPPING:
                    self._state = SupervisorState.STOPPED
            log.info(f"Server '{self.name}' stop sequence completed ({self.state.value}).")
        finally:
            self._coordinator.uninstall()
            self._stop_done.set()

        if interrupted:
            raise KeyboardInterrupt
        return True

    #* --- Internals ---
    def _launch(self, process: subprocess.Popen, gate: ReadinessGate) -> None:
        """Creates this lifetime's workers around the gate, then starts them."""
        consumers = [gate, self._sink]
        monitor = ExitMonitor(process, self._sink, self._handle_exit, name=self.name)
        injector = CommandInjector(
            process.stdin, self._sink, self._command_source,
            encoding=self.encoding, poll_interval=self.poll_interval, name=self.name,
        )
        workers: List[Worker] = [
            monitor,
            StreamRelay(process.stdout, MessageSource.STDOUT, consumers, self.encoding, self.name),
            StreamRelay(process.stderr, MessageSource.STDERR, consumers, self.encoding, self.name),
            injector,
        ]

        with self._state_lock:
            self._process = process
            self._gate = gate
            self._exit_monitor = monitor
            self._injector = injector
            self._workers = workers
            self._stop_requested = False
            self._stop_done = threading.Event()
            self._launched = threading.Event()
            self._exit_code = None
            self.last_error = None
            self.start_time = time.time()
            self._state = SupervisorState.STARTING

        try:
            for worker in workers:
                worker.start()
        finally:
            self._launched.set()

        self._coordinator.install()
        with self._state_lock:
            stopped_meanwhile = self._stop_requested
        if stopped_meanwhile:
            self._coordinator.uninstall()

    def _handle_exit(self, exit_code: int) -> None:
        """Called once by the ExitMonitor when the server process has terminated."""
        with self._state_lock:
            self._exit_code = exit_code
            unexpected = self._state in ACTIVE_STATES and not self._stop_requested
            if unexpected:
                self._state = SupervisorState.CRASHED

        if not unexpected:
            log.debug(f"Server '{self.name}' exited with code {exit_code} as requested.")
            return

        error = UnexpectedExit(exit_code)
        self.last_error = error
        log.error(str(error))
        self._emit(Message.internal(str(error)))
        self._gate.fail(f"Server process exited with code {exit_code} before it finished loading")
        self._injector.stop()

    def _release_process(self) -> None:
        """Makes sure the server process is gone: stop command first, force second."""
        process = self._process
        monitor = self._exit_monitor
        if not monitor.exited:
            log.info(f"Sending '{self.stop_command.to_line()}' to server '{self.name}'...")
            self._injector.inject(self.stop_command)
            if not monitor.wait_for_exit(self.stop_timeout):
                log.warning(
                    f"Server '{self.name}' did not stop within {self.stop_timeout} seconds. Terminating it."
                )
                self._emit(Message.internal("Server did not stop in time and is being terminated"))
                process_utils.terminate_process_tree(process, config.FORCED_SHUTDOWN_TIMEOUT)
                process.wait()
                if monitor.is_alive():
                    monitor.wait_for_exit()

        # Leftover children may still hold the output pipes open.
        process_utils.kill_process_group(process.pid)
        self._gate.fail("Server was stopped before it finished loading")

    def _emit(self, message: Message) -> None:
        try:
            self._sink.receive(message)
        except Exception as e:
            log.error(f"Error in message sink: {e}", exc_info=True)
