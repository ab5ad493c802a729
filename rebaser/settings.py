"""Runtime configuration for the replication engine."""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_ENCRYPTION_KEY = "default-key-change-in-production"
TEMP_SUBDIRECTORY = "rebaser-replication"


def default_temp_dir() -> str:
    return str(Path(tempfile.gettempdir()) / TEMP_SUBDIRECTORY)


@dataclass
class ReplicatorSettings:
    """Settings shared by the orchestrator, the API and the CLI."""
    encryption_key: str = DEFAULT_ENCRYPTION_KEY

    # External tooling
    sqlpackage_path: str = "sqlpackage"
    odbc_driver: str = "ODBC Driver 18 for SQL Server"
    temp_dir: str = field(default_factory=default_temp_dir)
    process_kill_grace_seconds: float = 5.0

    # Connections
    connect_timeout: int = 30

    # Storage
    storage_path: str = "./data/storage.json"

    # Job registry
    job_retention_seconds: float = 3600.0
    max_finished_jobs: int = 500

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation (without the encryption key)."""
        return {
            "sqlpackage_path": self.sqlpackage_path,
            "odbc_driver": self.odbc_driver,
            "temp_dir": self.temp_dir,
            "process_kill_grace_seconds": self.process_kill_grace_seconds,
            "connect_timeout": self.connect_timeout,
            "storage_path": self.storage_path,
            "job_retention_seconds": self.job_retention_seconds,
            "max_finished_jobs": self.max_finished_jobs,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReplicatorSettings":
        """Create from dictionary representation."""
        return cls(
            encryption_key=data.get("encryption_key") or DEFAULT_ENCRYPTION_KEY,
            sqlpackage_path=data.get("sqlpackage_path", "sqlpackage"),
            odbc_driver=data.get("odbc_driver", "ODBC Driver 18 for SQL Server"),
            temp_dir=data.get("temp_dir") or default_temp_dir(),
            process_kill_grace_seconds=float(data.get("process_kill_grace_seconds", 5.0)),
            connect_timeout=int(data.get("connect_timeout", 30)),
            storage_path=data.get("storage_path", "./data/storage.json"),
            job_retention_seconds=float(data.get("job_retention_seconds", 3600.0)),
            max_finished_jobs=int(data.get("max_finished_jobs", 500)),
        )

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "ReplicatorSettings":
        """Build settings from REBASER_* environment variables."""
        env = os.environ if environ is None else environ
        data: Dict[str, Any] = {}

        mapping = {
            "REBASER_ENCRYPTION_KEY": "encryption_key",
            "REBASER_SQLPACKAGE": "sqlpackage_path",
            "REBASER_ODBC_DRIVER": "odbc_driver",
            "REBASER_TEMP_DIR": "temp_dir",
            "REBASER_KILL_GRACE_SECONDS": "process_kill_grace_seconds",
            "REBASER_CONNECT_TIMEOUT": "connect_timeout",
            "REBASER_STORAGE_PATH": "storage_path",
            "REBASER_JOB_RETENTION_SECONDS": "job_retention_seconds",
            "REBASER_MAX_FINISHED_JOBS": "max_finished_jobs",
        }
        for env_name, key in mapping.items():
            value = env.get(env_name)
            if value:
                data[key] = value

        return cls.from_dict(data)
