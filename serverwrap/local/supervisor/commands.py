"""Commands destined for the server's standard input and the queue they arrive on."""

import queue
from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class CommandRequest:
    """
    A console command for the server, written to its stdin as one line.

    :param name: The command word, e.g. 'say' or 'stop'.
    :param arguments: Everything after the command word. May be empty.
    """
    name: str
    arguments: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("Command name cannot be empty")
        for part in (self.name, self.arguments):
            if "\n" in part or "\r" in part:
                raise ValueError(f"Command must fit on a single line: {part!r}")

    @classmethod
    def parse(cls, line: str) -> "CommandRequest":
        """Splits a raw console line into command word and arguments."""
        name, _, arguments = line.strip().partition(" ")
        return cls(name, arguments.strip())

    def to_line(self) -> str:
        if not self.arguments:
            return self.name
        return f"{self.name} {self.arguments}"


class CommandSource(Protocol):
    """A pollable source of commands. `poll()` never blocks and returns None when nothing is pending."""

    def poll(self) -> Optional[CommandRequest]:
        ...


class CommandQueue:
    """
    Thread-safe queue of commands typed by the operator (or sent by any other
    front-end) that are waiting to be forwarded to the server.
    """

    def __init__(self) -> None:
        self._queue: "queue.SimpleQueue[CommandRequest]" = queue.SimpleQueue()

    def put(self, name: str, arguments: str = "") -> None:
        self._queue.put(CommandRequest(name, arguments))

    def put_line(self, line: str) -> None:
        """Queues a raw console line. Blank lines are ignored."""
        if line.strip():
            self._queue.put(CommandRequest.parse(line))

    def poll(self) -> Optional[CommandRequest]:
        try:
            return self._queue.get_nowait()
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self._queue.qsize()
