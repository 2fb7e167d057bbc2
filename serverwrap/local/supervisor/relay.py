import logging
from typing import BinaryIO, Sequence

from serverwrap.local.supervisor.errors import StreamError
from serverwrap.local.supervisor.models import Message, MessageSink, MessageSource
from serverwrap.local.supervisor.worker import Worker

log = logging.getLogger(__name__)


class StreamRelay(Worker):
    """
    Reads one output stream of the server line by line and forwards every line,
    in order, to each consumer as a Message tagged with the stream's source.

    The relay is the only reader of its pipe. It ends at end-of-stream or on a
    read error, and closes the pipe on the way out.
    """

    def __init__(
        self,
        pipe: BinaryIO,
        source: MessageSource,
        consumers: Sequence[MessageSink],
        encoding: str = "utf-8",
        name: str = "server",
    ) -> None:
        """
        :param pipe: The binary output pipe of the server process.
        :param source: Which stream this is (STDOUT or STDERR).
        :param consumers: Receivers of each line, called in the given order.
        :param encoding: Text encoding of the server's output.
        :param name: Logical name of the server, used for the thread name.
        """
        super().__init__(f"{name}-{source.value}-relay")
        self.source = source
        self._pipe = pipe
        self._consumers = list(consumers)
        self._encoding = encoding
        self.lines_relayed = 0

    def stop(self) -> None:
        """
        Marks the relay as stopping. A blocked read cannot be interrupted safely
        on a buffered pipe, so the loop keeps draining until the server side of
        the pipe is closed; the supervisor ends the server before stopping relays.
        """
        super().stop()

    def run(self) -> None:
        try:
            while True:
                line = self._read_line()
                if line is None:
                    break
                self._forward(Message(self.source, line))
                self.lines_relayed += 1
        except StreamError as e:
            log.warning(f"{self.name}: {e}")
            self._forward(Message.internal(str(e)))
        finally:
            try:
                self._pipe.close()
            except OSError as e:
                log.debug(f"Closing {self.source.value} pipe failed: {e}")

    def _read_line(self):
        """Returns the next decoded line without its terminator, or None at end-of-stream."""
        try:
            line_bytes = self._pipe.readline()
        except (OSError, ValueError) as e:
            raise StreamError(f"Reading server {self.source.value} failed: {e}") from e
        if not line_bytes:
            return None
        return line_bytes.decode(self._encoding, errors="replace").rstrip("\r\n")

    def _forward(self, message: Message) -> None:
        for consumer in self._consumers:
            try:
                consumer.receive(message)
            except Exception as e:
                log.error(f"Error in {self.source.value} consumer {consumer!r}: {e}", exc_info=True)
