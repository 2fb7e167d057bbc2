import logging
import subprocess
import threading
from typing import Callable, Optional

from serverwrap.local.supervisor.models import Message, MessageSink
from serverwrap.local.supervisor.worker import Worker

log = logging.getLogger(__name__)


class ExitMonitor(Worker):
    """
    Waits for the server process to terminate, then reports its exit code once:
    as an internal message to the sink and through the `on_exit` callback.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        sink: MessageSink,
        on_exit: Callable[[int], None],
        name: str = "server",
    ) -> None:
        super().__init__(f"{name}-exit-monitor")
        self._process = process
        self._sink = sink
        self._on_exit = on_exit
        self._exited = threading.Event()
        self.exit_code: Optional[int] = None

    @property
    def exited(self) -> bool:
        return self._exited.is_set()

    def wait_for_exit(self, timeout: Optional[float] = None) -> bool:
        """
        Blocks until the server has exited and its exit code has been recorded.

        :param timeout: Maximum seconds to wait. None waits forever.
        :return: True if the server has exited.
        """
        return self._exited.wait(timeout)

    def stop(self) -> None:
        """No-op. The monitor finishes by itself as soon as the server exits."""

    def run(self) -> None:
        try:
            self.exit_code = self._process.wait()
        finally:
            self._exited.set()

        log.info(f"Server process (PID {self._process.pid}) exited with code {self.exit_code}.")
        try:
            self._sink.receive(Message.internal(f"Server process exited with code {self.exit_code}"))
        except Exception as e:
            log.error(f"Error in message sink: {e}", exc_info=True)
        self._on_exit(self.exit_code)
