import logging
import threading
from abc import ABC, abstractmethod
from typing import Optional

log = logging.getLogger(__name__)


class Worker(ABC):
    """
    A background thread taking part in supervising the server process.

    Subclasses implement `run()`. Stopping is cooperative: `stop()` only asks
    the worker to finish, `join()` waits until it has. Exceptions escaping
    `run()` are logged and end the thread; they never reach the supervisor.
    """

    def __init__(self, name: str) -> None:
        """
        :param name: Thread name, shown in logs and thread dumps.
        """
        self.name = name
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run_safely, daemon=True)
        self._thread.name = name

    @abstractmethod
    def run(self) -> None:
        """The worker's loop. Runs in the worker's own thread."""

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        """Requests cooperative termination. Does not wait."""
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def join(self, timeout: Optional[float] = None) -> None:
        """Blocks until the worker has terminated. A worker that was never started counts as terminated."""
        if self._thread.ident is None:
            return
        self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run_safely(self) -> None:
        log.debug(f"Worker '{self.name}' started.")
        try:
            self.run()
        except Exception as e:
            log.error(f"Worker '{self.name}' failed: {e}", exc_info=True)
        finally:
            log.debug(f"Worker '{self.name}' has stopped.")
