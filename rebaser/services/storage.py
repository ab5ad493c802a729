"""Persistence of saved connections, scripts and replication configurations."""

import json
import logging
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..errors import NotFoundError, ValidationError
from ..models.connection import quote_value
from ..models.replication import ReplicationSettings, utcnow
from ..models.storage import StoredConnection, StoredReplicationConfig, StoredScript
from .crypto import CredentialCipher

logger = logging.getLogger(__name__)

CLOUD_SERVER_TYPE = "azure-sql"


class StorageBackend(Protocol):
    """What the orchestrator needs from persistent storage."""

    def get_connection_string(self, connection_id: str) -> str: ...

    def get_connection(self, connection_id: str) -> StoredConnection: ...

    def get_script(self, script_id: str) -> StoredScript: ...

    def get_replication_config(self, config_id: str) -> StoredReplicationConfig: ...

    def update_replication_config_last_run(self, config_id: str) -> None: ...


def build_connection_string(
    server: str,
    database: str,
    username: str,
    password: str,
    port: Optional[int] = None,
    server_type: str = "sqlserver",
) -> str:
    """Render decrypted connection fields as a SQL Server connection string."""
    host = f"{server},{port}" if port else server
    parts = [
        f"Server={host}",
        f"Database={quote_value(database)}",
        f"User Id={quote_value(username)}",
        f"Password={quote_value(password)}",
    ]
    if server_type == CLOUD_SERVER_TYPE:
        parts += ["Encrypt=True", "TrustServerCertificate=False"]
    else:
        parts += ["Encrypt=False", "TrustServerCertificate=True"]
    parts.append("Connection Timeout=30")
    return ";".join(parts)


class JsonFileStorage:
    """
    A single JSON document on disk.

    Connection server, username, password and database are encrypted with
    the cipher before they are written. Every mutation rewrites the whole
    file through a temp file and an atomic rename.
    """

    def __init__(self, path: str, cipher: CredentialCipher):
        self.path = Path(path)
        self.cipher = cipher
        self._lock = threading.RLock()
        self._data = self._load()

    def _empty(self) -> Dict[str, List[Dict[str, Any]]]:
        return {"connections": [], "scripts": [], "replication_configs": []}

    def _load(self) -> Dict[str, List[Dict[str, Any]]]:
        if not self.path.exists():
            logger.info(f"Storage file does not exist yet, starting empty: {self.path}")
            return self._empty()

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        merged = self._empty()
        merged.update({k: v for k, v in data.items() if k in merged})
        logger.info(
            f"Loaded storage: {len(merged['connections'])} connections, "
            f"{len(merged['scripts'])} scripts, {len(merged['replication_configs'])} replication configs"
        )
        return merged

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".storage-", suffix=".json", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _find(self, collection: str, item_id: str) -> Optional[Dict[str, Any]]:
        for item in self._data[collection]:
            if item.get("id") == item_id:
                return item
        return None

    # Connections

    def create_connection(
        self,
        name: str,
        server: str,
        database: str,
        username: str,
        password: str,
        port: Optional[int] = None,
        server_type: str = "sqlserver",
        is_target_database: bool = False,
        description: str = "",
    ) -> StoredConnection:
        if not name or not server or not database:
            raise ValidationError("Connection name, server and database are required")

        connection = StoredConnection(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            server=self.cipher.encrypt(server),
            username=self.cipher.encrypt(username or ""),
            password=self.cipher.encrypt(password or ""),
            database=self.cipher.encrypt(database),
            port=port,
            server_type=server_type,
            is_target_database=is_target_database,
        )
        with self._lock:
            self._data["connections"].append(connection.to_dict())
            self._save()
        logger.info(f"Created connection: {name} ({connection.id})")
        return connection

    def list_connections(self) -> List[StoredConnection]:
        with self._lock:
            return [StoredConnection.from_dict(c) for c in self._data["connections"]]

    def get_connection(self, connection_id: str) -> StoredConnection:
        with self._lock:
            item = self._find("connections", connection_id)
        if item is None:
            raise NotFoundError(f"Connection not found: {connection_id}")
        return StoredConnection.from_dict(item)

    def delete_connection(self, connection_id: str) -> None:
        with self._lock:
            item = self._find("connections", connection_id)
            if item is None:
                raise NotFoundError(f"Connection not found: {connection_id}")
            self._data["connections"].remove(item)
            self._save()

    def get_connection_string(self, connection_id: str) -> str:
        """Decrypt a saved connection into a connection string and stamp last_used."""
        with self._lock:
            item = self._find("connections", connection_id)
            if item is None:
                raise NotFoundError(f"Connection not found: {connection_id}")
            connection = StoredConnection.from_dict(item)

            connection_string = build_connection_string(
                server=self.cipher.decrypt(connection.server),
                database=self.cipher.decrypt(connection.database),
                username=self.cipher.decrypt(connection.username),
                password=self.cipher.decrypt(connection.password),
                port=connection.port,
                server_type=connection.server_type,
            )

            item["last_used"] = utcnow().isoformat()
            self._save()
        return connection_string

    # Scripts

    def create_script(
        self,
        name: str,
        content: str,
        description: str = "",
        language: str = "sql",
        tags: Optional[List[str]] = None,
    ) -> StoredScript:
        if not name or not content:
            raise ValidationError("Script name and content are required")

        script = StoredScript(
            id=str(uuid.uuid4()),
            name=name,
            content=content,
            description=description,
            language=language,
            tags=list(tags or []),
        )
        with self._lock:
            self._data["scripts"].append(script.to_dict())
            self._save()
        logger.info(f"Created script: {name} ({script.id})")
        return script

    def list_scripts(self) -> List[StoredScript]:
        with self._lock:
            return [StoredScript.from_dict(s) for s in self._data["scripts"]]

    def get_script(self, script_id: str) -> StoredScript:
        with self._lock:
            item = self._find("scripts", script_id)
        if item is None:
            raise NotFoundError(f"Script not found: {script_id}")
        return StoredScript.from_dict(item)

    # Replication configs

    def create_replication_config(
        self,
        name: str,
        source_connection_id: str,
        target_id: str,
        config_script_ids: Optional[List[str]] = None,
        settings: Optional[ReplicationSettings] = None,
        description: str = "",
    ) -> StoredReplicationConfig:
        # Referenced records must exist
        self.get_connection(source_connection_id)
        self.get_connection(target_id)
        for script_id in config_script_ids or []:
            self.get_script(script_id)

        config = StoredReplicationConfig(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            source_connection_id=source_connection_id,
            target_id=target_id,
            config_script_ids=list(config_script_ids or []),
            settings=settings or ReplicationSettings(),
        )
        with self._lock:
            self._data["replication_configs"].append(config.to_dict())
            self._save()
        logger.info(f"Created replication config: {name} ({config.id})")
        return config

    def list_replication_configs(self) -> List[StoredReplicationConfig]:
        with self._lock:
            return [StoredReplicationConfig.from_dict(c) for c in self._data["replication_configs"]]

    def get_replication_config(self, config_id: str) -> StoredReplicationConfig:
        with self._lock:
            item = self._find("replication_configs", config_id)
        if item is None:
            raise NotFoundError(f"Replication config not found: {config_id}")
        return StoredReplicationConfig.from_dict(item)

    def update_replication_config_last_run(self, config_id: str) -> None:
        with self._lock:
            item = self._find("replication_configs", config_id)
            if item is None:
                raise NotFoundError(f"Replication config not found: {config_id}")
            now = utcnow().isoformat()
            item["last_run"] = now
            item["updated_at"] = now
            self._save()
