"""
Detection of the moment the server has finished loading.

The server announces readiness (and some fatal startup errors) only through its
console output, so the gate watches every relayed line for two configured
markers and lets threads block until one of them, or a crash, settles the
outcome.
"""

import logging
import re
import threading
from typing import Optional, Pattern, Union

from serverwrap.local.supervisor.errors import MarkerError
from serverwrap.local.supervisor.models import Message, ReadinessState

log = logging.getLogger(__name__)

Marker = Union[str, Pattern[str]]


def compile_marker(marker: Optional[Marker], literal: bool = False) -> Optional[Pattern[str]]:
    """
    Turns a marker setting into a compiled regular expression.

    :param marker: A regular expression string, a plain substring (with `literal`), a compiled pattern or None.
    :param literal: Treat a string marker as a plain substring.
    :return: The compiled pattern, or None when no marker is configured.
    :raises MarkerError: If the marker is not a valid regular expression.
    """
    if marker is None or marker == "":
        return None
    if isinstance(marker, re.Pattern):
        return marker
    try:
        return re.compile(re.escape(marker) if literal else marker)
    except re.error as e:
        raise MarkerError(f"Invalid output marker {marker!r}: {e}") from e


class ReadinessGate:
    """
    One-shot readiness latch: NOT_STARTED -> LOADED or NOT_STARTED -> FAILED.

    The first transition wins and is final. Any number of threads may block in
    `wait()`; all of them are released together.
    """

    def __init__(self, ready_marker: Marker, failure_marker: Optional[Marker] = None, literal: bool = False) -> None:
        self._ready = compile_marker(ready_marker, literal)
        if self._ready is None:
            raise MarkerError("A readiness marker is required")
        self._failure = compile_marker(failure_marker, literal)
        self._state = ReadinessState.NOT_STARTED
        self._condition = threading.Condition()
        self.reason: Optional[str] = None

    @property
    def state(self) -> ReadinessState:
        with self._condition:
            return self._state

    @property
    def resolved(self) -> bool:
        return self.state is not ReadinessState.NOT_STARTED

    def observe(self, message: Message) -> None:
        """Checks one output line for the failure marker, then for the readiness marker."""
        if self.resolved:
            return
        if self._failure is not None and self._failure.search(message.text):
            self._resolve(ReadinessState.FAILED, f"Server reported a startup failure: {message.text}")
        elif self._ready.search(message.text):
            self._resolve(ReadinessState.LOADED, message.text)

    # The gate is itself a message sink, so relays can feed it directly.
    receive = observe

    def fail(self, reason: str = "Server failed before it finished loading") -> bool:
        """
        Force-resolves the gate to FAILED, e.g. when the server process died.

        :return: True if this call performed the transition.
        """
        return self._resolve(ReadinessState.FAILED, reason)

    def wait(self, timeout: Optional[float] = None) -> ReadinessState:
        """
        Blocks until the gate is resolved.

        :param timeout: Optional upper bound in seconds; the gate itself never times out.
        :return: The terminal state, or NOT_STARTED if the timeout elapsed first.
        """
        with self._condition:
            self._condition.wait_for(lambda: self._state is not ReadinessState.NOT_STARTED, timeout)
            return self._state

    def _resolve(self, state: ReadinessState, reason: str) -> bool:
        with self._condition:
            if self._state is not ReadinessState.NOT_STARTED:
                return False
            self._state = state
            self.reason = reason
            self._condition.notify_all()
        log.debug(f"Readiness resolved to {state.value}: {reason}")
        return True
