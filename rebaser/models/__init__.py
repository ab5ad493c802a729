"""Data models for the replication engine."""

from .connection import (
    ConnectionConfig,
    ConnectionTestResult,
    CredentialMode,
)
from .replication import (
    ArchiveArtifact,
    JobState,
    ReplicationJob,
    ReplicationRequest,
    ReplicationSettings,
    TargetDescriptor,
    TargetType,
)
from .storage import (
    StoredConnection,
    StoredReplicationConfig,
    StoredScript,
)

__all__ = [
    "ConnectionConfig",
    "ConnectionTestResult",
    "CredentialMode",
    "ArchiveArtifact",
    "JobState",
    "ReplicationJob",
    "ReplicationRequest",
    "ReplicationSettings",
    "TargetDescriptor",
    "TargetType",
    "StoredConnection",
    "StoredReplicationConfig",
    "StoredScript",
]
