"""
Shared fixtures for the replication engine tests.

The database side is simulated by FakeServer: a set of database names,
a set of created tables and a log of every executed statement. Its
``connect`` method stands in for ``pyodbc.connect``.
"""

import re
import sys
import textwrap
import uuid
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from rebaser.errors import NotFoundError
from rebaser.models.replication import ArchiveArtifact
from rebaser.models.storage import StoredConnection, StoredReplicationConfig, StoredScript
from rebaser.services.connection import ConnectionResolver
from rebaser.services.crypto import CredentialCipher
from rebaser.transfer.base import ArchiveTransfer

_CREATE_DATABASE = re.compile(r"^\s*CREATE DATABASE \[(.*)\]\s*$", re.IGNORECASE | re.DOTALL)
_CREATE_TABLE = re.compile(r"^\s*CREATE TABLE (\w+)", re.IGNORECASE)


class FakeDriverError(Exception):
    """Stands in for pyodbc.Error."""


class FakeCursor:
    def __init__(self, server: "FakeServer"):
        self.server = server
        self._rows: List[tuple] = []
        self.closed = False

    def execute(self, sql: str, *params):
        self.server.executed.append((sql, params))
        self._rows = []

        if sql.strip().upper().startswith("INVALID"):
            raise FakeDriverError(f"Incorrect syntax near '{sql.split()[0]}'")
        if self.server.fail_on and self.server.fail_on in sql:
            raise FakeDriverError(self.server.fail_message)

        if "sys.databases" in sql:
            if params and params[0] in self.server.databases:
                self._rows = [(len(self.server.databases) + 4,)]
            return self

        match = _CREATE_DATABASE.match(sql)
        if match:
            name = match.group(1).replace("]]", "]")
            if name in self.server.databases:
                raise FakeDriverError(f"Database '{name}' already exists")
            self.server.databases.add(name)
            return self

        match = _CREATE_TABLE.match(sql)
        if match:
            self.server.tables.add(match.group(1))
            return self

        if "SERVERPROPERTY" in sql:
            self._rows = [("Microsoft SQL Server", "16.0.1000.6", "Sales")]
        elif "INFORMATION_SCHEMA.TABLES" in sql:
            self._rows = [(name,) for name in sorted(self.server.tables)]
        return self

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def nextset(self):
        return False

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, server: "FakeServer", odbc_string: str, autocommit: bool):
        self.server = server
        self.odbc_string = odbc_string
        self.autocommit = autocommit
        self.timeout = 0
        self.closed = False
        self.rolled_back = False

    def cursor(self):
        return FakeCursor(self.server)

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


class FakeServer:
    """An in-memory SQL Server double."""

    def __init__(self, databases=("master",)):
        self.databases = set(databases)
        self.tables = {"Customers", "Orders"}
        self.executed: List[tuple] = []
        self.connections: List[FakeConnection] = []
        self.attempts: List[str] = []

        # Connection attempts whose index is in this set raise
        self.failing_attempts = set()
        self.connect_error = "Login failed for user 'sa'."

        # Any statement containing fail_on raises fail_message
        self.fail_on: Optional[str] = None
        self.fail_message = "Permission denied"

    def connect(self, odbc_string: str, autocommit: bool = False, timeout: int = 0):
        index = len(self.attempts)
        self.attempts.append(odbc_string)
        if index in self.failing_attempts:
            raise FakeDriverError(self.connect_error)
        connection = FakeConnection(self, odbc_string, autocommit)
        self.connections.append(connection)
        return connection

    def statements(self, fragment: str) -> List[str]:
        return [sql for sql, _ in self.executed if fragment in sql]


class InMemoryStorage:
    """Storage double holding plaintext connection strings."""

    def __init__(self):
        self.connections: Dict[str, StoredConnection] = {}
        self.connection_strings: Dict[str, str] = {}
        self.scripts: Dict[str, StoredScript] = {}
        self.configs: Dict[str, StoredReplicationConfig] = {}
        self.last_run_updates: List[str] = []

    def add_connection(self, name: str, connection_string: str, is_target: bool = False) -> str:
        connection_id = str(uuid.uuid4())
        self.connections[connection_id] = StoredConnection(
            id=connection_id,
            name=name,
            server="",
            username="",
            password="",
            database="",
            is_target_database=is_target,
        )
        self.connection_strings[connection_id] = connection_string
        return connection_id

    def add_script(self, name: str, content: str) -> str:
        script_id = str(uuid.uuid4())
        self.scripts[script_id] = StoredScript(id=script_id, name=name, content=content)
        return script_id

    def add_config(self, config: StoredReplicationConfig) -> str:
        self.configs[config.id] = config
        return config.id

    def get_connection_string(self, connection_id: str) -> str:
        if connection_id not in self.connection_strings:
            raise NotFoundError(f"Connection not found: {connection_id}")
        return self.connection_strings[connection_id]

    def get_connection(self, connection_id: str) -> StoredConnection:
        if connection_id not in self.connections:
            raise NotFoundError(f"Connection not found: {connection_id}")
        return self.connections[connection_id]

    def get_script(self, script_id: str) -> StoredScript:
        if script_id not in self.scripts:
            raise NotFoundError(f"Script not found: {script_id}")
        return self.scripts[script_id]

    def get_replication_config(self, config_id: str) -> StoredReplicationConfig:
        if config_id not in self.configs:
            raise NotFoundError(f"Replication config not found: {config_id}")
        return self.configs[config_id]

    def update_replication_config_last_run(self, config_id: str) -> None:
        self.get_replication_config(config_id)
        self.last_run_updates.append(config_id)


class FakeTransfer(ArchiveTransfer):
    """Writes a dummy archive and reports the usual milestones."""

    def __init__(self, directory):
        self.directory = directory
        self.export_hook = None
        self.import_hook = None
        self.imported = []
        self.cleaned = []

    def export(self, connection_string, output_dir=None, on_progress=None, cancel_token=None):
        if self.export_hook:
            self.export_hook(on_progress, cancel_token)
        on_progress(20, "Extracting database schema")
        on_progress(40, "Extracting database data")
        path = self.directory / "Sales.bacpac"
        path.write_text("bacpac")
        return ArchiveArtifact(path=path, database_name="Sales")

    def import_archive(self, artifact, target_connection_string, on_progress=None, cancel_token=None):
        if self.import_hook:
            self.import_hook(on_progress, cancel_token)
        self.imported.append((artifact, target_connection_string))
        on_progress(80, "Importing data to SQL Server")

    def cleanup(self, artifact):
        self.cleaned.append(artifact)
        return super().cleanup(artifact)


SOURCE = "Server=src;Database=Sales;User Id=a;Password=b;"
TARGET = "Server=dst;Database=SalesCopy;User Id=a;Password=b;"


@pytest.fixture
def fake_server():
    return FakeServer()


@pytest.fixture
def resolver(fake_server):
    return ConnectionResolver(odbc_driver="Fake Driver", connect_func=fake_server.connect)


@pytest.fixture(scope="session")
def cipher():
    return CredentialCipher("test-encryption-key")


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def make_tool(tmp_path):
    """
    Write a fake sqlpackage script and return the command that runs it.

    The body runs with ``args`` (the sqlpackage arguments as a dict of
    ``/Name:value``), ``say`` (print to stdout) and ``shout`` (print to
    stderr) in scope.
    """
    def factory(body: str) -> List[str]:
        script = tmp_path / f"fake_sqlpackage_{uuid.uuid4().hex[:8]}.py"
        script.write_text(
            "import sys, time\n"
            "from pathlib import Path\n"
            "args = dict(a[1:].split(':', 1) for a in sys.argv[1:])\n"
            "def say(text):\n"
            "    print(text, flush=True)\n"
            "def shout(text):\n"
            "    print(text, file=sys.stderr, flush=True)\n"
            + textwrap.dedent(body)
        )
        return [sys.executable, str(script)]

    return factory


@pytest.fixture
def archive_dir(tmp_path) -> Path:
    directory = tmp_path / "archives"
    directory.mkdir()
    return directory
