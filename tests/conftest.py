import sys
import time
import textwrap
import threading
from typing import Callable, List, Optional

import pytest

from serverwrap.local.supervisor import Message, MessageSource, ProcessSupervisor

READY_PATTERN = r"Done \("
FAILURE_PATTERN = "FAILED TO BIND TO PORT"

# A well-behaved server: announces readiness, echoes every command and exits on "stop".
ECHO_SERVER = """
    import sys
    print("Starting server", flush=True)
    print("Done (0.1s)! For help, type help", flush=True)
    for line in sys.stdin:
        line = line.rstrip("\\n")
        print("got: " + line, flush=True)
        if line == "stop":
            print("Stopping server", flush=True)
            sys.exit(0)
        if line == "crash":
            sys.exit(7)
"""


def python_command(script: str) -> List[str]:
    """Command line running `script` in a fresh, unbuffered interpreter."""
    return [sys.executable, "-u", "-c", textwrap.dedent(script)]


def wait_until(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingSink:
    """Collects every message it receives."""

    def __init__(self) -> None:
        self.messages: List[Message] = []
        self._condition = threading.Condition()

    def receive(self, message: Message) -> None:
        with self._condition:
            self.messages.append(message)
            self._condition.notify_all()

    def texts(self, source: Optional[MessageSource] = None) -> List[str]:
        with self._condition:
            return [m.text for m in self.messages if source is None or m.source is source]

    def wait_for_text(self, text: str, timeout: float = 10.0) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: any(text in m.text for m in self.messages), timeout)


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def make_supervisor(sink):
    """Factory for supervisors wired to the recording sink. Every supervisor is stopped afterwards."""
    created: List[ProcessSupervisor] = []

    def factory(**kwargs) -> ProcessSupervisor:
        kwargs.setdefault("ready_pattern", READY_PATTERN)
        kwargs.setdefault("failure_pattern", FAILURE_PATTERN)
        kwargs.setdefault("stop_command", "stop")
        kwargs.setdefault("stop_timeout", 10)
        kwargs.setdefault("name", "test")
        kwargs.setdefault("handle_signals", False)
        kwargs.setdefault("poll_interval", 0.02)
        kwargs.setdefault("sink", sink)
        supervisor = ProcessSupervisor(**kwargs)
        created.append(supervisor)
        return supervisor

    yield factory
    for supervisor in created:
        supervisor.stop()
