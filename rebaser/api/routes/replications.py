"""Replication job endpoints."""

from fastapi import APIRouter, Depends

from ...errors import ReplicatorError
from ...models.replication import (
    ReplicationJob,
    ReplicationRequest,
    ReplicationSettings,
    TargetDescriptor,
    TargetType,
)
from ...orchestrator import ReplicationOrchestrator
from ..dependencies import get_orchestrator, http_error
from ..models import (
    JobListResponse,
    JobResponse,
    ReplicationCreate,
    ReplicationStartResponse,
)

router = APIRouter()


def _job_response(job: ReplicationJob) -> JobResponse:
    return JobResponse(**job.to_dict())


@router.post("", response_model=ReplicationStartResponse)
def start_replication(
    data: ReplicationCreate,
    orchestrator: ReplicationOrchestrator = Depends(get_orchestrator),
):
    """Start an ad-hoc replication."""
    request = ReplicationRequest(
        source_connection_string=data.source_connection_string,
        target=TargetDescriptor(
            connection_string=data.target.connection_string,
            target_type=TargetType(data.target.target_type.value),
            overwrite_existing=data.target.overwrite_existing,
            backup_before=data.target.backup_before,
            create_new_database=data.target.create_new_database,
        ),
        scripts=data.scripts,
        settings=ReplicationSettings(
            include_schema=data.settings.include_schema,
            include_data=data.settings.include_data,
        ),
    )
    try:
        job_id = orchestrator.start_replication(request)
    except ReplicatorError as e:
        raise http_error(e) from e
    return ReplicationStartResponse(job_id=job_id, message="Replication job started")


@router.post("/stored/{config_id}/start", response_model=ReplicationStartResponse)
def start_stored_replication(
    config_id: str,
    orchestrator: ReplicationOrchestrator = Depends(get_orchestrator),
):
    """Start a replication from a saved configuration."""
    try:
        job_id = orchestrator.start_stored_replication(config_id)
    except ReplicatorError as e:
        raise http_error(e) from e
    return ReplicationStartResponse(job_id=job_id, message="Stored replication job queued")


@router.get("", response_model=JobListResponse)
def list_replications(orchestrator: ReplicationOrchestrator = Depends(get_orchestrator)):
    """List known replication jobs."""
    jobs = [_job_response(job) for job in orchestrator.list_jobs()]
    return JobListResponse(jobs=jobs, total=len(jobs))


@router.get("/{job_id}", response_model=JobResponse)
def get_replication(job_id: str, orchestrator: ReplicationOrchestrator = Depends(get_orchestrator)):
    """Get the status of a replication job."""
    try:
        job = orchestrator.get_status(job_id)
    except ReplicatorError as e:
        raise http_error(e) from e
    return _job_response(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
def cancel_replication(job_id: str, orchestrator: ReplicationOrchestrator = Depends(get_orchestrator)):
    """Cancel a running replication job."""
    try:
        job = orchestrator.cancel(job_id)
    except ReplicatorError as e:
        raise http_error(e) from e
    return _job_response(job)
