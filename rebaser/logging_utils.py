"""Helpers for keeping secrets out of log records."""

import re

_PASSWORD_PATTERN = re.compile(
    r"\b(password|pwd)(\s*=\s*)(?:\{(?:\}\}|[^}])*(?:\}|$)|[^;]*)",
    re.IGNORECASE,
)


def redact_connection_string(connection_string: str) -> str:
    """
    Mask password values in a connection string.

    Example:
        >>> redact_connection_string("Server=db1;User Id=sa;Password=secret;")
        'Server=db1;User Id=sa;Password=***;'
        >>> redact_connection_string("Server=db1;PWD={se;cr}}et};")
        'Server=db1;PWD=***;'
    """
    if not connection_string:
        return connection_string
    return _PASSWORD_PATTERN.sub(r"\1\2***", connection_string)


def redact_arguments(args):
    """Redact every connection string embedded in a command line."""
    return [redact_connection_string(str(arg)) for arg in args]
