"""Records held by the storage layer."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .replication import ReplicationSettings, utcnow


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class StoredConnection:
    """A saved connection. Server, username, password and database are ciphertext."""
    id: str
    name: str
    server: str
    username: str
    password: str
    database: str
    port: Optional[int] = None
    server_type: str = "sqlserver"  # sqlserver, azure-sql
    is_target_database: bool = False
    description: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_used: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "server": self.server,
            "username": self.username,
            "password": self.password,
            "database": self.database,
            "port": self.port,
            "server_type": self.server_type,
            "is_target_database": self.is_target_database,
            "created_at": _format_datetime(self.created_at),
            "updated_at": _format_datetime(self.updated_at),
            "last_used": _format_datetime(self.last_used),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredConnection":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            server=data.get("server", ""),
            username=data.get("username", ""),
            password=data.get("password", ""),
            database=data.get("database", ""),
            port=data.get("port"),
            server_type=data.get("server_type", "sqlserver"),
            is_target_database=bool(data.get("is_target_database", False)),
            created_at=_parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=_parse_datetime(data.get("updated_at")) or utcnow(),
            last_used=_parse_datetime(data.get("last_used")),
        )


@dataclass
class StoredScript:
    """A saved post-migration script."""
    id: str
    name: str
    content: str
    description: str = ""
    language: str = "sql"
    tags: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "content": self.content,
            "language": self.language,
            "tags": self.tags,
            "created_at": _format_datetime(self.created_at),
            "updated_at": _format_datetime(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredScript":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            content=data.get("content", ""),
            language=data.get("language", "sql"),
            tags=list(data.get("tags", [])),
            created_at=_parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=_parse_datetime(data.get("updated_at")) or utcnow(),
        )


@dataclass
class StoredReplicationConfig:
    """A saved replication: source connection, target connection, scripts."""
    id: str
    name: str
    source_connection_id: str
    target_id: str
    config_script_ids: List[str] = field(default_factory=list)
    settings: ReplicationSettings = field(default_factory=ReplicationSettings)
    description: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    last_run: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "source_connection_id": self.source_connection_id,
            "target_id": self.target_id,
            "config_script_ids": self.config_script_ids,
            "settings": self.settings.to_dict(),
            "created_at": _format_datetime(self.created_at),
            "updated_at": _format_datetime(self.updated_at),
            "last_run": _format_datetime(self.last_run),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoredReplicationConfig":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            source_connection_id=data.get("source_connection_id", ""),
            target_id=data.get("target_id", ""),
            config_script_ids=list(data.get("config_script_ids", [])),
            settings=ReplicationSettings.from_dict(data.get("settings")),
            created_at=_parse_datetime(data.get("created_at")) or utcnow(),
            updated_at=_parse_datetime(data.get("updated_at")) or utcnow(),
            last_run=_parse_datetime(data.get("last_run")),
        )
