"""Error kinds raised by the replication engine."""

from typing import Optional


class ReplicatorError(Exception):
    """Base class for all replication errors."""


class FormatError(ReplicatorError):
    """A connection string could not be parsed."""


class DatabaseConnectionError(ReplicatorError):
    """Every connection strategy failed."""


class ProvisionError(ReplicatorError):
    """The target database could not be looked up or created."""


class ExternalToolError(ReplicatorError):
    """The archive tool is missing, or it ran and exited non-zero."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
        tool_missing: bool = False,
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.tool_missing = tool_missing


class ScriptExecutionError(ReplicatorError):
    """A configuration script failed; ``index`` is 1-based."""

    def __init__(self, message: str, index: int, preview: str):
        super().__init__(message)
        self.index = index
        self.preview = preview


class ValidationError(ReplicatorError):
    """A replication request failed validation."""


class NotFoundError(ReplicatorError):
    """A job, connection, script or configuration does not exist."""


class CryptoError(ReplicatorError):
    """An encrypted token is malformed or has been tampered with."""


class JobCancelled(ReplicatorError):
    """Raised inside a pipeline once its cancellation token has fired."""


# (substrings, hint) pairs; matched case-insensitively against driver messages
_CONNECTION_HINTS = [
    (
        ("getaddrinfo", "enotfound", "server was not found", "name or service not known",
         "no such host", "could not open a connection"),
        "Cannot connect to SQL Server. Check that the server is running and accessible.",
    ),
    (
        ("econnrefused", "connection refused", "actively refused"),
        "Cannot connect to SQL Server. Check that the server is running and accessible.",
    ),
    (
        ("login failed",),
        "Authentication failed. Check credentials and database access.",
    ),
    (
        ("timeout", "timed out"),
        "Connection timeout. Check network connectivity and server availability.",
    ),
]


def enhance_connection_error(message: str) -> str:
    """Prefix well-known network failures with operator guidance."""
    lowered = message.lower()
    for needles, hint in _CONNECTION_HINTS:
        if any(needle in lowered for needle in needles):
            return f"{hint} Original error: {message}"
    return message
