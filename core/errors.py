"""
Error taxonomy for host bridge calls.

Every error carries a short ``kind`` so front ends can show a stable
category next to the human-readable message.
"""
from typing import Optional


class ExecError(Exception):
    kind = "error"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class TransportUnavailableError(ExecError):
    """The host bridge is missing. Never retried."""
    kind = "transport_unavailable"


class CommandTimeoutError(ExecError):
    kind = "timeout"


class CommandFailedError(ExecError):
    """Non-zero exit status from the host."""
    kind = "command_failed"

    def __init__(self, message: str, exit_code: Optional[int] = None, stderr: str = "",
                 original_error: Optional[Exception] = None):
        super().__init__(message, original_error)
        self.exit_code = exit_code
        self.stderr = stderr


class TransientCommandError(CommandFailedError):
    pass


class NonTransientCommandError(CommandFailedError):
    """Permission or not-found class failures."""
    pass


class ParseError(ExecError):
    kind = "parse_error"


class ValidationError(ExecError):
    kind = "validation_error"
