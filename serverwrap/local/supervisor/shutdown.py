import atexit
import signal
import logging
import threading
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional, Sequence

from serverwrap.local.supervisor.worker import Worker

if TYPE_CHECKING:
    from .supervisor import ProcessSupervisor

log = logging.getLogger(__name__)

HANDLED_SIGNALS = tuple(
    sig for sig in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)) if sig is not None
)


def _join_uninterrupted(worker: Worker) -> bool:
    """
    Joins a worker, resuming the wait if it is interrupted by Ctrl-C.

    :return: True if at least one interruption was swallowed.
    """
    interrupted = False
    while True:
        try:
            worker.join()
            return interrupted
        except KeyboardInterrupt:
            interrupted = True
            log.warning(f"Interrupted while waiting for '{worker.name}'. Still waiting for it to finish...")


class ShutdownCoordinator:
    """
    Stops and joins the supervisor's workers, and makes sure the server is
    stopped when the hosting program is asked to exit (SIGINT, SIGTERM or a
    normal interpreter exit) even if nobody called `stop()` explicitly.
    """

    def __init__(self, supervisor: "ProcessSupervisor", handle_signals: bool = True) -> None:
        """
        :param supervisor: The supervisor to stop on an external termination request.
        :param handle_signals: Install SIGINT/SIGTERM handlers (only possible from the main thread).
        """
        self.supervisor = supervisor
        self.handle_signals = handle_signals
        self._previous_handlers: Dict[int, Any] = {}
        self._trigger_guard = threading.Lock()
        self._hooks_lock = threading.Lock()
        self._installed = False
        self.stopper: Optional[threading.Thread] = None

    def shutdown_all(self, workers: Sequence[Worker]) -> None:
        """
        Asks every worker to stop, then waits for each one in turn. Always waits
        for all of them; a Ctrl-C received meanwhile is re-raised afterwards.

        :param workers: The workers to stop and join.
        """
        for worker in workers:
            try:
                worker.stop()
            except Exception as e:
                log.error(f"Failed to stop worker '{worker.name}': {e}", exc_info=True)

        interrupted = False
        for worker in workers:
            interrupted = _join_uninterrupted(worker) or interrupted
        log.debug(f"All {len(workers)} workers joined.")

        if interrupted:
            raise KeyboardInterrupt

    def install(self) -> None:
        """Registers the termination hooks for one server lifetime."""
        with self._hooks_lock:
            if self._installed:
                return
            if self._trigger_guard.locked():
                self._trigger_guard.release()
            atexit.register(self._on_interpreter_exit)
            if self.handle_signals:
                self._install_signal_handlers(HANDLED_SIGNALS)
            self._installed = True

    def uninstall(self) -> None:
        """
        Removes the termination hooks. Signal handlers can only be restored from
        the main thread; otherwise they are restored by the next signal.
        """
        with self._hooks_lock:
            if not self._installed:
                return
            atexit.unregister(self._on_interpreter_exit)
            self._installed = False
            if threading.current_thread() is threading.main_thread():
                self._restore_signal_handlers()

    def _install_signal_handlers(self, signals: Iterable[int]) -> None:
        if threading.current_thread() is not threading.main_thread():
            log.debug("Not on the main thread; termination signals will not stop the server.")
            return
        for signum in signals:
            # Still ours if the last lifetime ended off the main thread.
            if signum not in self._previous_handlers:
                self._previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, self._on_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()

    def _trigger(self) -> bool:
        """Marks the external shutdown as started. Returns False if it already was. Never blocks."""
        return self._trigger_guard.acquire(blocking=False)

    def _on_signal(self, signum: int, frame) -> None:
        # Runs on the main thread between two bytecodes, possibly while that
        # thread holds a supervisor or logging lock: take no lock here.
        name = signal.Signals(signum).name
        previous = self._previous_handlers.get(signum, signal.SIG_DFL)
        if not self._installed:
            self._restore_signal_handlers()
            self._chain(previous, signum, frame)
            return

        if not self._trigger():
            return
        if self.supervisor.stop_requested:
            # A stop() already running on this thread must not be interrupted halfway.
            return

        self.stopper = threading.Thread(
            target=self._stop_after_signal, args=(name,), name=f"{self.supervisor.name}-signal-stop",
        )
        self.stopper.start()
        self._chain(previous, signum, frame)

    @staticmethod
    def _chain(previous: Any, signum: int, frame) -> None:
        """Hands the signal on to the handler that was installed before ours."""
        if callable(previous):
            previous(signum, frame)
        elif previous == signal.SIG_DFL:
            raise SystemExit(128 + signum)

    def _on_interpreter_exit(self) -> None:
        if self._trigger():
            log.info("Interpreter is exiting. Stopping the server...")
            self.supervisor.stop(wait=False)

    def _stop_after_signal(self, name: str) -> None:
        log.warning(f"Received {name}. Stopping the server before exiting...")
        self.supervisor.stop(wait=False)
