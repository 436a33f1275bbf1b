"""Exception hierarchy for burrow.

Every error raised by the lifecycle engine derives from BurrowError so the CLI
can report it uniformly. Operation context ("clone repository", "save session")
is prefixed with add_context() rather than by re-wrapping, so callers can still
catch the specific type.
"""

from typing import List, Optional


class BurrowError(Exception):
    """Base class for burrow errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.context: List[str] = []

    def add_context(self, operation: str) -> "BurrowError":
        """Prefix an operation name to the message and return self for re-raising."""
        self.context.insert(0, operation)
        return self

    def __str__(self) -> str:
        return ": ".join(self.context + [self.message])


class SessionNotFoundError(BurrowError):
    """Raised when a session ID is unknown to the store."""

    def __init__(self, session_id: str):
        super().__init__(f"session '{session_id}' not found")
        self.session_id = session_id


class NoRecyclableSessionError(BurrowError):
    """Raised by the store when no recycled session exists for a remote."""

    def __init__(self, remote: str):
        super().__init__(f"no recyclable session for {remote}")
        self.remote = remote


class InvalidInputError(BurrowError):
    """Bad names, unusable spawn configuration and similar caller errors."""


class InvalidStateError(BurrowError):
    """Raised when a lifecycle transition is attempted from the wrong state."""


class CorruptedRepositoryError(BurrowError):
    """Raised when a workspace fails the repository integrity check."""

    def __init__(self, path: str, reason: str = ""):
        message = f"{path} is not a valid git repository"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.path = path


class CommandError(BurrowError):
    """A subprocess exited non-zero.

    Carries the command line and whatever output was captured so the caller
    can see what failed without re-running it.
    """

    MAX_OUTPUT = 500

    def __init__(self, command: str, returncode: Optional[int], output: str = ""):
        output = (output or "").strip()
        if len(output) > self.MAX_OUTPUT:
            output = output[:self.MAX_OUTPUT] + "..."
        message = f"command {command!r} failed"
        if returncode is not None:
            message = f"{message} (exit {returncode})"
        if output:
            message = f"{message}: {output}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.output = output


class TemplateError(BurrowError):
    """Template parse or render failure."""


class WorkspaceError(BurrowError):
    """Filesystem failure on a workspace directory."""


class ConfigError(BurrowError):
    """Invalid configuration file."""


class OperationCancelled(BurrowError):
    """The caller's CancelToken fired before the operation finished."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)
