"""In-memory registry of replication jobs with bounded retention."""

import logging
import threading
from datetime import timedelta
from typing import Dict, List, Optional

from ..errors import NotFoundError
from ..models.replication import ReplicationJob, utcnow

logger = logging.getLogger(__name__)


class JobRegistry:
    """
    Holds every known job by id.

    Finished jobs are kept for ``retention_seconds`` after they end and at
    most ``max_finished`` of them are retained; the oldest are evicted first.
    Pending and running jobs are never evicted.
    """

    def __init__(self, retention_seconds: float = 3600.0, max_finished: int = 500):
        self.retention_seconds = retention_seconds
        self.max_finished = max_finished
        self._jobs: Dict[str, ReplicationJob] = {}
        self._lock = threading.Lock()

    def add(self, job: ReplicationJob) -> None:
        with self._lock:
            self._jobs[job.id] = job
            self._evict_locked()

    def get(self, job_id: str) -> ReplicationJob:
        """
        Look up a live job record.

        Raises:
            NotFoundError: If the id is unknown or has been evicted
        """
        with self._lock:
            self._evict_locked()
            job = self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"Replication job not found: {job_id}")
        return job

    def find(self, job_id: str) -> Optional[ReplicationJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def list(self) -> List[ReplicationJob]:
        """Live job records, oldest first."""
        with self._lock:
            self._evict_locked()
            jobs = list(self._jobs.values())
        return sorted(jobs, key=lambda j: j.started_at)

    def evict(self) -> int:
        """Drop expired finished jobs; returns how many were removed."""
        with self._lock:
            return self._evict_locked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _evict_locked(self) -> int:
        finished = [job for job in self._jobs.values() if job.is_terminal and job.ended_at]
        if not finished:
            return 0

        cutoff = utcnow() - timedelta(seconds=self.retention_seconds)
        expired = {job.id for job in finished if job.ended_at < cutoff}

        survivors = sorted(
            (job for job in finished if job.id not in expired),
            key=lambda j: j.ended_at,
        )
        overflow = len(survivors) - self.max_finished
        if overflow > 0:
            expired.update(job.id for job in survivors[:overflow])

        for job_id in expired:
            del self._jobs[job_id]
        if expired:
            logger.debug(f"Evicted {len(expired)} finished job(s)")
        return len(expired)
