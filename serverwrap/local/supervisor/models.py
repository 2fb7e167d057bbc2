"""Shared types for the server supervisor: states, output messages and the sink protocol."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


class MessageSource(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    INTERNAL = "internal"


class ReadinessState(str, Enum):
    NOT_STARTED = "not_started"
    LOADED = "loaded"
    FAILED = "failed"


class SupervisorState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    CRASHED = "crashed"


@dataclass(frozen=True)
class Message:
    """A single line of server output, or a notice produced by the supervisor itself."""

    source: MessageSource
    text: str
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def internal(cls, text: str) -> "Message":
        return cls(MessageSource.INTERNAL, text)


class MessageSink(Protocol):
    """Anything that accepts messages. Must not block for long: a slow sink stalls the relays."""

    def receive(self, message: Message) -> None:
        ...
