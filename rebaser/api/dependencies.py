"""Shared dependencies for the API routes."""

import logging
import threading
from typing import Optional

from fastapi import HTTPException

from ..errors import NotFoundError, ReplicatorError
from ..orchestrator import ReplicationOrchestrator
from ..services.crypto import get_cipher
from ..services.storage import JsonFileStorage
from ..settings import ReplicatorSettings

logger = logging.getLogger(__name__)

_orchestrator: Optional[ReplicationOrchestrator] = None
_orchestrator_lock = threading.Lock()


def build_orchestrator(settings: Optional[ReplicatorSettings] = None) -> ReplicationOrchestrator:
    """Wire an orchestrator with JSON file storage from settings."""
    settings = settings or ReplicatorSettings.from_env()
    storage = JsonFileStorage(settings.storage_path, get_cipher(settings))
    return ReplicationOrchestrator(settings=settings, storage=storage)


def get_orchestrator() -> ReplicationOrchestrator:
    """Process-wide orchestrator, created on first use."""
    global _orchestrator
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = build_orchestrator()
        return _orchestrator


def shutdown_orchestrator() -> None:
    global _orchestrator
    with _orchestrator_lock:
        orchestrator, _orchestrator = _orchestrator, None
    if orchestrator is not None:
        orchestrator.shutdown()


def http_error(error: ReplicatorError) -> HTTPException:
    """Map an engine error to an HTTP error response."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
