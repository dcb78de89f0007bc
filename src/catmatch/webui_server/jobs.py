from __future__ import annotations

import logging
import uuid
from collections import OrderedDict
from threading import Lock

from ..batch_processor import CategorizationJob
from ..errors import JobStateError
from ..models import JobStatus

logger = logging.getLogger(__name__)


class JobRegistry:
    """In-memory job handles keyed by id; finished jobs are evicted oldest first."""

    def __init__(self, max_jobs: int = 20) -> None:
        self.max_jobs = max(1, int(max_jobs))
        self._jobs: OrderedDict[str, CategorizationJob] = OrderedDict()
        self._lock = Lock()

    def add(self, job: CategorizationJob) -> str:
        with self._lock:
            self._evict_locked()
            if len(self._jobs) >= self.max_jobs:
                raise JobStateError(f"Too many active jobs (limit {self.max_jobs}); cancel one first.")
            job_id = uuid.uuid4().hex
            self._jobs[job_id] = job
        logger.info("registered job %s", job_id)
        return job_id

    def get(self, job_id: str) -> CategorizationJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._jobs)

    def _evict_locked(self) -> None:
        while len(self._jobs) >= self.max_jobs:
            finished = next(
                (job_id for job_id, job in self._jobs.items() if job.state.status != JobStatus.RUNNING),
                None,
            )
            if finished is None:
                return
            del self._jobs[finished]
            logger.info("evicted finished job %s", finished)
