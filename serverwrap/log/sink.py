import logging
import threading
from collections import deque
from typing import Deque, Iterable, List, Optional

from serverwrap.local.supervisor.models import Message, MessageSink, MessageSource

log = logging.getLogger(__name__)

_LEVELS = {
    MessageSource.STDOUT: logging.INFO,
    MessageSource.STDERR: logging.ERROR,
    MessageSource.INTERNAL: logging.WARNING,
}


class LoggingSink:
    """
    Writes every message from the server into the logging system, on the
    `proc.<name>` logger so the console prints the line untouched.
    """

    def __init__(self, name: str = "server") -> None:
        """
        :param name: The server name, used as the logger suffix.
        """
        self.logger = logging.getLogger(f"proc.{name}")

    def receive(self, message: Message) -> None:
        self.logger.log(_LEVELS[message.source], message.text, extra={"source": message.source.value})


class HistorySink:
    """Keeps the most recent messages in memory for the console `output` command."""

    def __init__(self, max_lines: int = 500) -> None:
        self._lines: Deque[Message] = deque(maxlen=max(1, max_lines))
        self._lock = threading.Lock()

    def receive(self, message: Message) -> None:
        with self._lock:
            self._lines.append(message)

    def tail(self, count: Optional[int] = None) -> List[Message]:
        """
        Returns the last `count` messages, oldest first.

        :param count: Number of messages. None returns everything kept.
        """
        with self._lock:
            lines = list(self._lines)
        if count is None:
            return lines
        return lines[-count:] if count > 0 else []

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)


class MultiSink:
    """Fans every message out to several sinks. A failing sink does not affect the others."""

    def __init__(self, sinks: Iterable[MessageSink]) -> None:
        self.sinks = list(sinks)

    def receive(self, message: Message) -> None:
        for sink in self.sinks:
            try:
                sink.receive(message)
            except Exception as e:
                log.error(f"Message sink {type(sink).__name__} failed: {e}", exc_info=True)
