"""Exceptions raised by the execution coordination subsystem."""


class ExecutionError(Exception):
    """Base class for execution coordination errors."""


class ConfigurationError(ExecutionError):
    """Raised when CI configuration required for a run is missing or invalid."""


class DispatchError(ExecutionError):
    """Raised when the CI system refuses or fails to accept a run."""


class ChannelError(ExecutionError):
    """Raised or reported when a single result channel fails.

    Only fatal errors from the CI status channel end a request; every other
    channel error is logged and the channel is not relied upon further.
    """

    def __init__(self, message: str, *, channel: str, fatal: bool = False) -> None:
        super().__init__(message)
        self.channel = channel
        self.fatal = fatal


class ReconciliationError(ExecutionError):
    """Raised when results could not be written to the record store."""


class RequestNotFoundError(ExecutionError, LookupError):
    """Raised when a request ID is unknown or has already been purged."""
