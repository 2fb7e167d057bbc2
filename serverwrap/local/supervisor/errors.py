"""Exception types raised or reported by the server supervisor."""

from typing import Optional


class SupervisorError(Exception):
    """Base class for all supervisor errors."""


class LaunchError(SupervisorError):
    """The server program could not be executed. Fatal for the wrapper."""

    def __init__(self, command_line, cause: Optional[BaseException] = None):
        self.command_line = list(command_line)
        self.cause = cause
        super().__init__(f"Could not start server process {self.command_line!r}: {cause}")


class StreamError(SupervisorError):
    """Reading one of the server's output streams failed."""


class WriteError(SupervisorError):
    """Writing to the server's input stream failed. The server is most likely gone."""


class StartupFailed(SupervisorError):
    """The server never reported that it finished loading."""


class UnexpectedExit(SupervisorError):
    """The server exited without having been asked to stop."""

    def __init__(self, exit_code: Optional[int]):
        self.exit_code = exit_code
        super().__init__(f"Server process exited unexpectedly with code {exit_code}")


class MarkerError(SupervisorError, ValueError):
    """An output marker is missing or is not a valid regular expression."""
