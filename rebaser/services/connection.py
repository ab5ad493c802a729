"""Connection-string parsing and connection establishment."""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Optional, Tuple

from ..cancellation import CancellationToken
from ..errors import DatabaseConnectionError, FormatError, ReplicatorError, enhance_connection_error
from ..logging_utils import redact_connection_string
from ..models.connection import (
    CLOUD_HOST_SUFFIX,
    DEFAULT_PORT,
    ConnectionConfig,
    ConnectionTestResult,
    CredentialMode,
    quote_value,
)

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"true", "yes", "1", "mandatory", "strict", "sspi"}

_HOST_KEYS = {"server", "data source", "address", "addr"}
_DATABASE_KEYS = {"database", "initial catalog"}
_USER_KEYS = {"user id", "uid", "user"}
_PASSWORD_KEYS = {"password", "pwd"}
_INTEGRATED_KEYS = {"trusted_connection", "integrated security"}
_TIMEOUT_KEYS = {"connection timeout", "connect timeout"}

SERVER_INFO_QUERY = """
    SELECT
        CAST(SERVERPROPERTY('ProductName') AS NVARCHAR(128)) AS ProductName,
        CAST(SERVERPROPERTY('ProductVersion') AS NVARCHAR(128)) AS ProductVersion,
        DB_NAME() AS DatabaseName
"""

TABLES_QUERY = """
    SELECT TABLE_NAME
    FROM INFORMATION_SCHEMA.TABLES
    WHERE TABLE_TYPE = 'BASE TABLE'
    ORDER BY TABLE_NAME
"""


def pyodbc_connect(connection_string: str, **kwargs) -> Any:
    """Open a pyodbc connection."""
    try:
        import pyodbc
    except ImportError:
        raise ImportError("pyodbc package (and an ODBC driver) required for SQL Server connections")
    return pyodbc.connect(connection_string, **kwargs)


def _is_true(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


def split_segments(connection_string: str) -> List[str]:
    """
    Split a connection string on ``;``, keeping braced values intact.

    A value that starts with ``{`` runs to the matching ``}``; ``}}`` inside
    it is a literal ``}``.

    Raises:
        FormatError: If a braced value is never closed
    """
    segments = []
    current: List[str] = []
    in_braces = False
    i = 0
    while i < len(connection_string):
        ch = connection_string[i]
        if in_braces:
            if ch == "}":
                if connection_string[i + 1:i + 2] == "}":
                    current.append("}}")
                    i += 2
                    continue
                in_braces = False
        elif ch == ";":
            segments.append("".join(current))
            current = []
            i += 1
            continue
        elif ch == "{":
            _, sep, value = "".join(current).partition("=")
            in_braces = bool(sep) and not value.strip()
        current.append(ch)
        i += 1

    if in_braces:
        raise FormatError("Invalid connection string format: unterminated braced value")
    segments.append("".join(current))
    return [s for s in segments if s.strip()]


def unquote_value(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value.startswith("{") and value.endswith("}"):
        return value[1:-1].replace("}}", "}")
    return value


def tokenize_connection_string(connection_string: str) -> List[Tuple[str, str]]:
    """
    Split a connection string into (lowercased key, value) pairs.

    Braced values are unquoted.

    Raises:
        FormatError: If a segment is not a ``key=value`` pair
    """
    if not connection_string or not connection_string.strip():
        raise FormatError("Invalid connection string format: empty connection string")

    pairs = []
    for segment in split_segments(connection_string):
        key, sep, value = segment.partition("=")
        key = key.strip()
        if not sep or not key:
            raise FormatError(
                f"Invalid connection string format: cannot parse segment '{redact_connection_string(segment.strip())}'"
            )
        pairs.append((key.lower(), unquote_value(value)))
    return pairs


def _split_server(value: str) -> Tuple[str, Optional[str], Optional[int]]:
    """Split ``tcp:host\\instance,port`` into its parts."""
    server = value.strip()
    if server.lower().startswith("tcp:"):
        server = server[4:]

    port = None
    if "," in server:
        server, port_text = server.split(",", 1)
        try:
            port = int(port_text.strip())
        except ValueError:
            raise FormatError(f"Invalid connection string format: bad port '{port_text.strip()}'")

    instance = None
    if "\\" in server:
        server, instance = server.split("\\", 1)
        instance = instance.strip() or None

    return server.strip(), instance, port


def parse_connection_string(connection_string: str) -> ConnectionConfig:
    """
    Parse a SQL Server connection string into a ConnectionConfig.

    Keys are matched case-insensitively and unknown keys are ignored.
    Cloud hosts always end up with encryption on and certificate trust off,
    whatever order the keys appeared in.

    Raises:
        FormatError: If the string cannot be tokenized or has no host
    """
    host = None
    instance = None
    server_port = None
    explicit_port = None
    database = None
    username = None
    password = None
    integrated = False
    encrypt = False
    trust_server_certificate = True
    connect_timeout = 30

    for key, value in tokenize_connection_string(connection_string):
        if key in _HOST_KEYS:
            host, instance, server_port = _split_server(value)
        elif key in _DATABASE_KEYS:
            database = value
        elif key in _USER_KEYS:
            username = value
        elif key in _PASSWORD_KEYS:
            password = value
        elif key in _INTEGRATED_KEYS:
            integrated = _is_true(value)
        elif key == "trustservercertificate":
            trust_server_certificate = _is_true(value)
        elif key == "encrypt":
            encrypt = _is_true(value)
        elif key == "port":
            try:
                explicit_port = int(value)
            except ValueError:
                raise FormatError(f"Invalid connection string format: bad port '{value}'")
        elif key in _TIMEOUT_KEYS:
            try:
                connect_timeout = int(value)
            except ValueError:
                raise FormatError(f"Invalid connection string format: bad timeout '{value}'")

    if not host:
        raise FormatError("Invalid connection string format: no server specified")

    if CLOUD_HOST_SUFFIX in host.lower():
        encrypt = True
        trust_server_certificate = False

    port = explicit_port if explicit_port is not None else server_port
    if port is None and not instance:
        port = DEFAULT_PORT

    if integrated:
        credential_mode = CredentialMode.INTEGRATED
        username = None
        password = None
    else:
        credential_mode = CredentialMode.SQL_LOGIN

    return ConnectionConfig(
        host=host,
        database=database or None,
        instance_name=instance,
        port=port,
        credential_mode=credential_mode,
        username=username,
        password=password,
        encrypt=encrypt,
        trust_server_certificate=trust_server_certificate,
        connect_timeout=connect_timeout,
    )


def extract_database_name(connection_string: str) -> Optional[str]:
    """Return the database named by a connection string, if any."""
    for key, value in tokenize_connection_string(connection_string):
        if key in _DATABASE_KEYS and value:
            return value
    return None


def replace_database(connection_string: str, database: str) -> str:
    """
    Point a connection string at another database.

    The first database/initial catalog segment is rewritten as
    ``Initial Catalog=<database>``; one is appended if none exists.
    All other segments are kept verbatim.
    """
    segments = split_segments(connection_string)
    rewritten = []
    replaced = False
    for segment in segments:
        key = segment.partition("=")[0].strip().lower()
        if key in _DATABASE_KEYS:
            if not replaced:
                rewritten.append(f"Initial Catalog={quote_value(database)}")
                replaced = True
            continue
        rewritten.append(segment)
    if not replaced:
        rewritten.append(f"Initial Catalog={quote_value(database)}")
    return ";".join(rewritten) + ";"


class ConnectionResolver:
    """
    Establishes live connections from connection strings.

    Tries an ordered list of strategies:
    1. The parsed config rendered as an ODBC connection string
    2. The original connection string (some dialects, such as named
       instances and cloud hosts, survive parsing imperfectly)

    Each attempt is bounded by the config's login timeout.
    """

    def __init__(
        self,
        odbc_driver: str = "ODBC Driver 18 for SQL Server",
        connect_timeout: Optional[int] = None,
        connect_func: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize the resolver.

        Args:
            odbc_driver: ODBC driver name used for structured connections
            connect_timeout: Overrides the login timeout of parsed configs
            connect_func: Replacement for ``pyodbc.connect``
        """
        self.odbc_driver = odbc_driver
        self.connect_timeout = connect_timeout
        self._connect = connect_func or pyodbc_connect

    def parse(self, connection_string: str) -> ConnectionConfig:
        return parse_connection_string(connection_string)

    def _raw_odbc(self, original: str) -> str:
        """The original string, with our driver added when it names none."""
        keys = {key for key, _ in tokenize_connection_string(original)}
        if "driver" in keys or "dsn" in keys:
            return original
        return f"DRIVER={{{self.odbc_driver}}};{original}"

    def connect(
        self,
        config: ConnectionConfig,
        original: str,
        autocommit: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        """
        Connect using each strategy in turn.

        Raises:
            DatabaseConnectionError: When every attempt failed
            JobCancelled: If the token fires between attempts
        """
        timeout = self.connect_timeout or config.connect_timeout
        attempts = [
            ("parsed config", config.to_odbc(self.odbc_driver)),
            ("original connection string", self._raw_odbc(original)),
        ]

        last_error: Optional[Exception] = None
        for number, (label, odbc_string) in enumerate(attempts, 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            logger.info(f"Attempting connection with {label}")
            try:
                connection = self._connect(odbc_string, autocommit=autocommit, timeout=timeout)
            except Exception as e:
                last_error = e
                logger.warning(f"Connection attempt {number} failed: {e}")
                continue

            if config.request_timeout:
                connection.timeout = config.request_timeout
            logger.info(f"Connection successful on attempt {number}")
            return connection

        message = str(last_error) if last_error else "All connection attempts failed"
        raise DatabaseConnectionError(enhance_connection_error(message)) from last_error

    @contextmanager
    def open(
        self,
        connection_string: str,
        autocommit: bool = False,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[Any]:
        """Parse, connect, and always close the connection on exit."""
        config = self.parse(connection_string)
        connection = self.connect(config, connection_string, autocommit=autocommit, cancel_token=cancel_token)
        try:
            yield connection
        finally:
            try:
                connection.close()
            except Exception as e:
                logger.warning(f"Error closing connection: {e}")

    def test_connection(self, connection_string: str) -> ConnectionTestResult:
        """
        Connect and report server details and base tables.

        Raises:
            FormatError: If the connection string cannot be parsed
            DatabaseConnectionError: If no connection could be made or
                the introspection queries failed
        """
        redacted = redact_connection_string(connection_string)
        logger.info(f"Testing database connection: {redacted}")

        try:
            with self.open(connection_string) as connection:
                cursor = connection.cursor()
                try:
                    cursor.execute(SERVER_INFO_QUERY)
                    row = cursor.fetchone()
                    cursor.execute(TABLES_QUERY)
                    tables = [r[0] for r in cursor.fetchall()]
                finally:
                    cursor.close()
        except ReplicatorError as e:
            logger.error(f"Connection test failed: {e} ({redacted})")
            raise
        except Exception as e:
            message = enhance_connection_error(str(e))
            logger.error(f"Connection test failed: {message} ({redacted})")
            raise DatabaseConnectionError(f"Connection test failed: {message}") from e

        result = ConnectionTestResult(
            product_name=str(row[0]) if row else "",
            product_version=str(row[1]) if row else "",
            database_name=str(row[2]) if row else "",
            tables=tables,
        )
        logger.info(f"Connection test successful: database={result.database_name}, tables={len(tables)}")
        return result
