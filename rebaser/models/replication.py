"""Replication request and job models."""

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobState(str, Enum):
    """Lifecycle state of a replication job."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


class TargetType(str, Enum):
    """Kinds of replication targets."""
    SQLSERVER = "sqlserver"


@dataclass(frozen=True)
class TargetDescriptor:
    """Where a replication writes to, and how the target database is handled."""
    connection_string: str
    target_type: TargetType = TargetType.SQLSERVER
    overwrite_existing: bool = False
    backup_before: bool = False
    create_new_database: bool = True

    def with_connection_string(self, connection_string: str) -> "TargetDescriptor":
        return replace(self, connection_string=connection_string)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_type": self.target_type.value,
            "overwrite_existing": self.overwrite_existing,
            "backup_before": self.backup_before,
            "create_new_database": self.create_new_database,
        }


@dataclass(frozen=True)
class ReplicationSettings:
    """What the archive should capture."""
    include_schema: bool = True
    include_data: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"include_schema": self.include_schema, "include_data": self.include_data}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ReplicationSettings":
        data = data or {}
        return cls(
            include_schema=data.get("include_schema") is not False,
            include_data=data.get("include_data") is not False,
        )


@dataclass(frozen=True)
class ReplicationRequest:
    """A single replication: source, target, and post-migration scripts."""
    source_connection_string: str
    target: TargetDescriptor
    scripts: Tuple[str, ...] = ()
    settings: ReplicationSettings = field(default_factory=ReplicationSettings)

    # Originating saved configuration, if any
    config_id: Optional[str] = None
    config_name: Optional[str] = None

    def __post_init__(self):
        # Callers commonly pass lists; freeze them
        if not isinstance(self.scripts, tuple):
            object.__setattr__(self, "scripts", tuple(self.scripts))


@dataclass
class ArchiveArtifact:
    """An exported archive on disk."""
    path: Path
    database_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"path": str(self.path), "database_name": self.database_name}


@dataclass
class ReplicationJob:
    """
    Status record of a replication job.

    The orchestrator is the only writer. Every mutation goes through a
    method that holds the job lock, and readers get copies from
    ``snapshot()``, so progress and message always change together.
    """
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: JobState = JobState.PENDING
    progress: int = 0
    message: str = ""
    started_at: datetime = field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    error: Optional[str] = None
    config_id: Optional[str] = None
    config_name: Optional[str] = None
    database_name: Optional[str] = None

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def mark_running(self, message: str) -> bool:
        """Move pending -> running."""
        with self._lock:
            if self.state != JobState.PENDING:
                return False
            self.state = JobState.RUNNING
            self.message = message
            return True

    def advance(self, progress: int, message: Optional[str] = None) -> bool:
        """Record progress while running. Progress never moves backwards."""
        with self._lock:
            if self.state != JobState.RUNNING:
                return False
            self.progress = max(self.progress, min(100, max(0, int(progress))))
            if message is not None:
                self.message = message
            return True

    def set_database_name(self, database_name: str) -> None:
        with self._lock:
            self.database_name = database_name

    def finish(
        self,
        state: JobState,
        message: str,
        error: Optional[str] = None,
        expected: Optional[JobState] = None,
    ) -> bool:
        """
        Move the job to a terminal state.

        Args:
            state: Terminal state to enter
            message: Human-readable status message
            error: Error message, for failures
            expected: Only transition when the job is currently in this state

        Returns:
            True if the transition happened; the first terminal transition wins
        """
        if not state.is_terminal:
            raise ValueError(f"Not a terminal state: {state}")

        with self._lock:
            if self.state.is_terminal:
                return False
            if expected is not None and self.state != expected:
                return False
            self.state = state
            self.message = message
            self.error = error
            self.ended_at = utcnow()
            if state == JobState.COMPLETED:
                self.progress = 100
            return True

    def snapshot(self) -> "ReplicationJob":
        """Consistent copy for readers."""
        with self._lock:
            return replace(self)

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.ended_at:
            return (self.ended_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "job_id": self.id,
            "status": self.state.value,
            "progress": self.progress,
            "message": self.message,
            "start_time": self.started_at.isoformat(),
            "end_time": self.ended_at.isoformat() if self.ended_at else None,
            "error": self.error,
            "config_id": self.config_id,
            "config_name": self.config_name,
            "database_name": self.database_name,
        }
