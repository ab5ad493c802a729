"""Replication orchestrator - runs replication jobs end to end."""

import logging
import threading
from typing import Callable, Dict, List, Optional

from .cancellation import CancellationToken
from .errors import JobCancelled, ValidationError
from .logging_utils import redact_connection_string
from .models.connection import ConnectionTestResult
from .models.replication import (
    JobState,
    ReplicationJob,
    ReplicationRequest,
    TargetDescriptor,
    TargetType,
)
from .services.connection import ConnectionResolver
from .services.job_registry import JobRegistry
from .services.provisioner import TargetProvisioner
from .services.scripts import ScriptRunner
from .services.storage import StorageBackend
from .settings import ReplicatorSettings
from .transfer.base import ArchiveTransfer
from .transfer.sqlpackage import SqlPackageTransfer

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Replication cancelled by user"
COMPLETED_MESSAGE = "Database replication completed successfully"


class ReplicationOrchestrator:
    """
    Orchestrates database replication jobs.

    Handles:
    - Starting ad-hoc and stored replications in background threads
    - Export of the source database to a BACPAC archive
    - Collision-safe provisioning of the target database
    - Import of the archive and post-migration scripts
    - Progress tracking, cancellation and status queries
    """

    def __init__(
        self,
        settings: Optional[ReplicatorSettings] = None,
        resolver: Optional[ConnectionResolver] = None,
        provisioner: Optional[TargetProvisioner] = None,
        transfer: Optional[ArchiveTransfer] = None,
        script_runner: Optional[ScriptRunner] = None,
        storage: Optional[StorageBackend] = None,
        registry: Optional[JobRegistry] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            settings: Runtime settings (defaults used if None)
            resolver: Connection resolver shared by all components
            provisioner: Target database provisioner
            transfer: Archive export/import adapter
            script_runner: Post-migration script runner
            storage: Saved connections and configurations, for stored replications
            registry: Job registry
        """
        self.settings = settings or ReplicatorSettings()
        self.resolver = resolver or ConnectionResolver(
            odbc_driver=self.settings.odbc_driver,
            connect_timeout=self.settings.connect_timeout,
        )
        self.provisioner = provisioner or TargetProvisioner(self.resolver)
        self.transfer = transfer or SqlPackageTransfer.from_settings(self.settings)
        self.script_runner = script_runner or ScriptRunner(self.resolver)
        self.storage = storage
        self.registry = registry or JobRegistry(
            retention_seconds=self.settings.job_retention_seconds,
            max_finished=self.settings.max_finished_jobs,
        )

        # Runtime state
        self._tokens: Dict[str, CancellationToken] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def start_replication(
        self,
        request: ReplicationRequest,
        on_success: Optional[Callable[[ReplicationJob], None]] = None,
    ) -> str:
        """
        Start a replication in the background.

        Args:
            request: What to replicate and where
            on_success: Called with the job once it has completed

        Returns:
            The new job id
        """
        if not request.source_connection_string or not request.source_connection_string.strip():
            raise ValidationError("Source connection string is required")
        if not request.target.connection_string or not request.target.connection_string.strip():
            raise ValidationError("Target connection string is required")

        job = ReplicationJob(config_id=request.config_id, config_name=request.config_name)
        token = CancellationToken()
        thread = threading.Thread(
            target=self._run_job,
            args=(job, request, token, on_success),
            name=f"replication-{job.id[:8]}",
            daemon=True,
        )

        self.registry.add(job)
        with self._lock:
            self._tokens[job.id] = token
            self._threads[job.id] = thread
        thread.start()

        logger.info(f"Replication job started: {job.id}")
        return job.id

    def start_stored_replication(self, config_id: str) -> str:
        """
        Start a replication from a saved configuration.

        Raises:
            NotFoundError: If the configuration or a referenced record is missing
            ValidationError: If the target connection is not flagged as a target
        """
        storage = self._require_storage()
        config = storage.get_replication_config(config_id)

        target_connection = storage.get_connection(config.target_id)
        if not target_connection.is_target_database:
            raise ValidationError(
                f"Connection '{target_connection.name}' is not marked as a target database"
            )

        source_connection_string = storage.get_connection_string(config.source_connection_id)
        target_connection_string = storage.get_connection_string(config.target_id)
        scripts = [storage.get_script(script_id).content for script_id in config.config_script_ids]

        request = ReplicationRequest(
            source_connection_string=source_connection_string,
            target=TargetDescriptor(
                connection_string=target_connection_string,
                target_type=TargetType.SQLSERVER,
                overwrite_existing=True,
                backup_before=False,
                create_new_database=config.settings.include_schema is not False,
            ),
            scripts=scripts,
            settings=config.settings,
            config_id=config.id,
            config_name=config.name,
        )

        def record_last_run(job: ReplicationJob) -> None:
            storage.update_replication_config_last_run(config.id)

        job_id = self.start_replication(request, on_success=record_last_run)
        logger.info(f"Stored replication job queued: {job_id} (config '{config.name}')")
        return job_id

    def get_status(self, job_id: str) -> ReplicationJob:
        """Snapshot of a job; raises NotFoundError for unknown ids."""
        return self.registry.get(job_id).snapshot()

    def cancel(self, job_id: str) -> ReplicationJob:
        """
        Cancel a running job.

        Only a running job moves to cancelled; pending and finished jobs are
        left unchanged. Any in-flight sqlpackage process is terminated.

        Returns:
            Snapshot of the job after the request
        """
        job = self.registry.get(job_id)
        if job.finish(JobState.CANCELLED, CANCELLED_MESSAGE, expected=JobState.RUNNING):
            logger.info(f"Replication job cancelled: {job_id}")
            with self._lock:
                token = self._tokens.get(job_id)
            if token is not None:
                token.cancel()
        else:
            logger.info(f"Cancel ignored for job {job_id} in state {job.state.value}")
        return job.snapshot()

    def list_jobs(self) -> List[ReplicationJob]:
        return [job.snapshot() for job in self.registry.list()]

    def wait(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """Block until the job finishes; returns whether it is terminal."""
        job = self.registry.get(job_id)
        with self._lock:
            thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)
        return job.is_terminal

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Cancel every running job and wait for the worker threads."""
        for job in self.registry.list():
            if job.state == JobState.RUNNING:
                self.cancel(job.id)

        with self._lock:
            threads = list(self._threads.values())
        for thread in threads:
            thread.join(timeout)
        logger.info("Replication orchestrator shut down")

    def test_connection(self, connection_string: str) -> ConnectionTestResult:
        return self.resolver.test_connection(connection_string)

    def test_stored_connection(self, connection_id: str) -> ConnectionTestResult:
        storage = self._require_storage()
        return self.test_connection(storage.get_connection_string(connection_id))

    def _require_storage(self) -> StorageBackend:
        if self.storage is None:
            raise ValidationError("No storage configured for saved connections")
        return self.storage

    def _run_job(
        self,
        job: ReplicationJob,
        request: ReplicationRequest,
        token: CancellationToken,
        on_success: Optional[Callable[[ReplicationJob], None]],
    ) -> None:
        """Thread body: run the pipeline and record the outcome."""
        if not job.mark_running("Connecting to source database"):
            return

        try:
            self._run_pipeline(job, request, token)

            if job.finish(JobState.COMPLETED, COMPLETED_MESSAGE, expected=JobState.RUNNING):
                logger.info(f"=== REPLICATION COMPLETED === ({job.id})")
                if on_success is not None:
                    try:
                        on_success(job)
                    except Exception as e:
                        logger.warning(f"Post-completion hook failed for job {job.id}: {e}")

        except JobCancelled:
            job.finish(JobState.CANCELLED, CANCELLED_MESSAGE)
            logger.info(f"=== REPLICATION CANCELLED === ({job.id})")

        except Exception as e:
            error = redact_connection_string(str(e))
            logger.error(f"Replication failed: {error}")
            job.finish(JobState.FAILED, f"Replication failed: {error}", error=error)

        finally:
            with self._lock:
                self._tokens.pop(job.id, None)
                self._threads.pop(job.id, None)

    def _run_pipeline(
        self,
        job: ReplicationJob,
        request: ReplicationRequest,
        token: CancellationToken,
    ) -> None:
        # Phase 1: Export
        logger.info("=== PHASE 1: EXPORT ===")
        with self.resolver.open(request.source_connection_string, cancel_token=token):
            token.raise_if_cancelled()
            job.advance(10, "Creating BACPAC export")
            artifact = self.transfer.export(
                request.source_connection_string,
                on_progress=job.advance,
                cancel_token=token,
            )

        try:
            # Phase 2: Provisioning
            logger.info("=== PHASE 2: TARGET SETUP ===")
            token.raise_if_cancelled()
            job.advance(60, "Setting up target database")
            target = self.provisioner.ensure_target(request.target, cancel_token=token)
            job.set_database_name(target.database_name)

            # Phase 3: Import
            logger.info("=== PHASE 3: IMPORT ===")
            token.raise_if_cancelled()
            job.advance(70, f"Importing BACPAC to target database: {target.database_name}")
            self.transfer.import_archive(
                artifact,
                target.connection_string,
                on_progress=job.advance,
                cancel_token=token,
            )

            # Phase 4: Configuration scripts
            token.raise_if_cancelled()
            job.advance(90, "Executing configuration scripts")
            if request.scripts:
                logger.info("=== PHASE 4: CONFIGURATION SCRIPTS ===")
                self.script_runner.run(target.connection_string, request.scripts, cancel_token=token)

            token.raise_if_cancelled()
            job.advance(95, "Cleaning up temporary files")
        finally:
            self.transfer.cleanup(artifact)

        token.raise_if_cancelled()
