import logging
import threading
from typing import BinaryIO, Optional

from serverwrap.local.supervisor.commands import CommandRequest, CommandSource
from serverwrap.local.supervisor.errors import WriteError
from serverwrap.local.supervisor.models import Message, MessageSink
from serverwrap.local.supervisor.worker import Worker

log = logging.getLogger(__name__)


class CommandInjector(Worker):
    """
    Sole writer of the server's standard input.

    Commands come from two places: direct `inject()` calls, written by the
    calling thread, and an external command source that this worker's thread
    polls without blocking. Every write happens under one lock, so two
    commands never interleave within a line.
    """

    def __init__(
        self,
        pipe: BinaryIO,
        sink: MessageSink,
        source: Optional[CommandSource] = None,
        encoding: str = "utf-8",
        poll_interval: float = 0.1,
        name: str = "server",
    ) -> None:
        """
        :param pipe: The binary stdin pipe of the server process.
        :param sink: Receives notices about failed writes.
        :param source: Optional queue of externally submitted commands.
        :param encoding: Text encoding expected by the server.
        :param poll_interval: Seconds to sleep when the command source is empty.
        :param name: Logical name of the server, used for the thread name.
        """
        super().__init__(f"{name}-stdin-injector")
        self._pipe = pipe
        self._sink = sink
        self._source = source
        self._encoding = encoding
        self._poll_interval = poll_interval
        self._write_lock = threading.Lock()
        self._closed = False
        self.lines_written = 0

    @property
    def accepting(self) -> bool:
        return not self._closed

    def inject(self, request: CommandRequest) -> bool:
        """
        Writes a command to the server immediately.

        :param request: The command to write.
        :return: True if the line was written, False if the injector is stopped or the write failed.
        """
        try:
            return self._write(request)
        except WriteError as e:
            self._report_write_failure(e)
            return False

    def stop(self) -> None:
        """Stops accepting commands and closes stdin once any in-flight write is done."""
        super().stop()
        with self._write_lock:
            self._close_locked()

    def run(self) -> None:
        while not self.stop_requested and self.accepting:
            request = self._source.poll() if self._source is not None else None
            if request is None:
                self._stop_event.wait(self._poll_interval)
                continue
            try:
                self._write(request)
            except WriteError as e:
                self._report_write_failure(e)
                break

    def _write(self, request: CommandRequest) -> bool:
        line = request.to_line() + "\n"
        with self._write_lock:
            if self._closed:
                log.debug(f"Dropping command '{request.name}': stdin is closed.")
                return False
            try:
                self._pipe.write(line.encode(self._encoding))
                self._pipe.flush()
            except (OSError, ValueError) as e:
                self._close_locked()
                raise WriteError(f"Writing command '{request.name}' to server failed: {e}") from e
            self.lines_written += 1
        log.debug(f"Sent command to server: {request.to_line()}")
        return True

    def _close_locked(self) -> None:
        """Closes stdin. Assumes the write lock is held."""
        if self._closed:
            return
        self._closed = True
        try:
            self._pipe.close()
        except (OSError, ValueError) as e:
            # Closing flushes; a broken pipe here only means the server is already gone.
            log.debug(f"Closing server stdin failed: {e}")

    def _report_write_failure(self, error: WriteError) -> None:
        log.warning(str(error))
        try:
            self._sink.receive(Message.internal(str(error)))
        except Exception as e:
            log.error(f"Error in message sink: {e}", exc_info=True)
