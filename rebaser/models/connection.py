"""Connection models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

DEFAULT_PORT = 1433
CLOUD_HOST_SUFFIX = ".database.windows.net"


class CredentialMode(str, Enum):
    """How a connection authenticates."""
    SQL_LOGIN = "sql_login"  # Username/password pair
    INTEGRATED = "integrated"  # Trusted / Windows authentication


def quote_value(value: str) -> str:
    """Brace-quote a connection-string value when it contains special characters."""
    if any(ch in value for ch in ";{}=") or value != value.strip():
        return "{" + value.replace("}", "}}") + "}"
    return value


@dataclass(frozen=True)
class ConnectionConfig:
    """Structured form of a SQL Server connection string."""
    host: str
    database: Optional[str] = None
    instance_name: Optional[str] = None
    port: Optional[int] = None

    credential_mode: CredentialMode = CredentialMode.SQL_LOGIN
    username: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    encrypt: bool = False
    trust_server_certificate: bool = True
    connect_timeout: int = 30
    request_timeout: int = 30

    def __post_init__(self):
        if self.credential_mode == CredentialMode.INTEGRATED and (self.username or self.password):
            raise ValueError("Integrated authentication cannot carry a username or password")

    @property
    def server(self) -> str:
        """Server address including instance name and port."""
        server = self.host
        if self.instance_name:
            server = f"{server}\\{self.instance_name}"
        if self.port:
            server = f"{server},{self.port}"
        return server

    def to_connection_string(self) -> str:
        """Serialize back to the key/value grammar accepted by the parser."""
        parts = [f"Server={self.server}"]
        if self.database:
            parts.append(f"Database={quote_value(self.database)}")

        if self.credential_mode == CredentialMode.INTEGRATED:
            parts.append("Trusted_Connection=True")
        else:
            if self.username is not None:
                parts.append(f"User Id={quote_value(self.username)}")
            if self.password is not None:
                parts.append(f"Password={quote_value(self.password)}")

        parts.append(f"Encrypt={self.encrypt}")
        parts.append(f"TrustServerCertificate={self.trust_server_certificate}")
        parts.append(f"Connection Timeout={self.connect_timeout}")
        return ";".join(parts) + ";"

    def to_odbc(self, driver: str) -> str:
        """Render as an ODBC connection string for pyodbc."""
        parts = [
            f"DRIVER={{{driver}}}",
            f"SERVER={quote_value(self.server)}",
        ]
        if self.database:
            parts.append(f"DATABASE={quote_value(self.database)}")

        if self.credential_mode == CredentialMode.INTEGRATED:
            parts.append("Trusted_Connection=yes")
        else:
            if self.username is not None:
                parts.append(f"UID={quote_value(self.username)}")
            if self.password is not None:
                parts.append(f"PWD={quote_value(self.password)}")

        parts.append(f"Encrypt={'yes' if self.encrypt else 'no'}")
        parts.append(f"TrustServerCertificate={'yes' if self.trust_server_certificate else 'no'}")
        return ";".join(parts) + ";"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (password omitted)."""
        return {
            "host": self.host,
            "database": self.database,
            "instance_name": self.instance_name,
            "port": self.port,
            "credential_mode": self.credential_mode.value,
            "username": self.username,
            "encrypt": self.encrypt,
            "trust_server_certificate": self.trust_server_certificate,
            "connect_timeout": self.connect_timeout,
            "request_timeout": self.request_timeout,
        }


@dataclass
class ConnectionTestResult:
    """Outcome of an introspection connection test."""
    product_name: str
    product_version: str
    database_name: str
    tables: List[str] = field(default_factory=list)
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "server_info": {
                "product_name": self.product_name,
                "product_version": self.product_version,
                "database_name": self.database_name,
            },
            "tables": self.tables,
        }
