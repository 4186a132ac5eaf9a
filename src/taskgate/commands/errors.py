"""Error taxonomy for the command queue."""


class CommandError(Exception):
    """Base class for command queue errors.

    Attributes:
        kind: Stable machine-readable error kind used in API responses.
        status_code: HTTP status code the route layer maps this error to.
    """

    kind = "command_error"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CommandValidationError(CommandError):
    """Malformed or out-of-bounds input; nothing was mutated."""

    kind = "validation"
    status_code = 400


class CommandNotFoundError(CommandError):
    """Unknown command id."""

    kind = "not_found"
    status_code = 404

    def __init__(self, message: str = "Command not found.") -> None:
        super().__init__(message)


class CommandConflictError(CommandError):
    """The command is not in the status the operation requires."""

    kind = "conflict"
    status_code = 409

    def __init__(self, action: str, current: str, expected: str) -> None:
        super().__init__(
            f"Cannot {action}: current status is '{current}', expected '{expected}'."
        )
        self.action = action
        self.current = current
        self.expected = expected


class ExternalDependencyError(CommandError):
    """A backing service (database) could not be reached or initialized."""

    kind = "external_dependency"
    status_code = 503


class RunnerExecutionError(CommandError):
    """The external execution backend failed, timed out or produced unusable output."""

    kind = "runner_execution"
    status_code = 502

    def __init__(
        self,
        message: str,
        code: str = "unknown",
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out
