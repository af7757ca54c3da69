"""Job repository: persistence and state machine for pipeline jobs."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from src.core.exceptions import InvalidJobTransitionError
from src.models.enums import JobStatus, JobType, TERMINAL_JOB_STATUSES
from src.models.job import Job
from .base import BaseRepository


class JobRepository(BaseRepository[Job]):
    """Repository for Job rows."""

    def __init__(self, db: Session):
        super().__init__(Job, db)

    def create_job(
        self,
        job_id: str,
        job_type: JobType,
        collection_id: str,
        payload: Dict[str, Any],
        triggered_by_job_id: Optional[str] = None,
        commit: bool = True,
    ) -> Job:
        return self.create(
            {
                'id': job_id,
                'job_type': job_type,
                'collection_id': collection_id,
                'status': JobStatus.PENDING,
                'progress': 0,
                'payload': payload,
                'triggered_by_job_id': triggered_by_job_id,
            },
            commit=commit,
        )

    def list_by_collection(self, collection_id: str) -> List[Job]:
        """Jobs for one collection, newest first."""
        return (
            self.db.query(Job)
            .filter(Job.collection_id == collection_id)
            .order_by(desc(Job.created_at))
            .all()
        )

    def lock(self, job: Job) -> Job:
        """
        Re-read the row under a row lock.

        Pending changes are flushed first; the lock lasts until the
        session commits or rolls back.
        """
        self.db.flush()
        self.db.refresh(job, with_for_update=True)
        return job

    def transition(self, job: Job, status: JobStatus, commit: bool = True, **fields: Any) -> Job:
        """
        Move a job to ``status``, enforcing the state machine.

        The check runs against the locked row, not the in-memory copy, so a
        status written by another session in the meantime wins.

        Raises:
            InvalidJobTransitionError: transition not allowed
        """
        self.lock(job)
        if not job.can_transition_to(status):
            raise InvalidJobTransitionError(job.id, JobStatus(job.status).value, status.value)

        now = datetime.utcnow()
        job.status = status
        if status == JobStatus.PROCESSING:
            job.started_at = now
        if status in TERMINAL_JOB_STATUSES:
            job.finished_at = now
        if status == JobStatus.COMPLETED:
            job.progress = 100

        for field, value in fields.items():
            setattr(job, field, value)

        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return job

    def set_progress(self, job: Job, progress: int, commit: bool = True) -> Job:
        """Raise progress; never lowers it and clamps to [0, 100]."""
        progress = max(0, min(100, int(progress)))
        if progress > (job.progress or 0):
            job.progress = progress
            if commit:
                self.db.commit()
        return job

    def delete_finished_before(self, cutoff: datetime) -> int:
        """Delete terminal jobs that finished before ``cutoff``."""
        deleted = (
            self.db.query(Job)
            .filter(
                Job.status.in_(list(TERMINAL_JOB_STATUSES)),
                Job.finished_at.isnot(None),
                Job.finished_at < cutoff,
            )
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted
