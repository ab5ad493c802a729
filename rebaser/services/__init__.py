"""Service layer for the replication engine."""

from .connection import ConnectionResolver, parse_connection_string
from .crypto import CredentialCipher, get_cipher
from .job_registry import JobRegistry
from .provisioner import ProvisionResult, TargetProvisioner
from .scripts import ScriptRunner
from .storage import JsonFileStorage, StorageBackend

__all__ = [
    "ConnectionResolver",
    "parse_connection_string",
    "CredentialCipher",
    "get_cipher",
    "JobRegistry",
    "ProvisionResult",
    "TargetProvisioner",
    "ScriptRunner",
    "JsonFileStorage",
    "StorageBackend",
]
