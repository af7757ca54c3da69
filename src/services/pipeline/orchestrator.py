"""
Job Pipeline Orchestrator
=========================

Owns the Job rows: validates and enqueues stage requests, runs a stage
body against its job with the state machine enforced, and handles
cancellation and reaping.

Execution is delegated to a dispatcher (Celery in production) that is
told "run job X"; the job row is the source of truth for payload, status
and progress.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
import logging
import uuid

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from src.app.config import settings
from src.core.exceptions import (
    InvalidJobPayloadError,
    InvalidJobTransitionError,
    JobCancelledError,
    JobNotFoundError,
    TransientVisionError,
)
from src.models.enums import JobStatus, JobType
from src.models.job import Job
from src.repositories.base import as_uuid
from src.repositories.job_repo import JobRepository

logger = logging.getLogger(__name__)

# Errors that leave the job PROCESSING so the queue can retry it
RETRYABLE_ERRORS = (TransientVisionError, OperationalError)

CLEANUP_INTERRUPTED_ERROR = "Cleanup interrupted; re-trigger manually"


class JobContext:
    """
    Handle a stage uses to talk back to its job row.

    ``checkpoint`` re-reads the row and raises JobCancelledError once a
    cancel was requested. ``after_commit`` callbacks run after the job is
    marked COMPLETED (used to dispatch chained jobs).
    """

    def __init__(
        self,
        db: Session,
        job: Job,
        on_progress: Optional[Callable[[int], None]] = None,
        orchestrator: Optional["JobOrchestrator"] = None,
    ):
        self.db = db
        self.job = job
        self.jobs = JobRepository(db)
        self.on_progress = on_progress
        self.orchestrator = orchestrator
        self.after_commit: List[Callable[[], None]] = []

    @property
    def payload(self) -> Dict[str, Any]:
        return self.job.payload or {}

    def checkpoint(self) -> None:
        self.db.refresh(self.job, ['status', 'cancel_requested'])
        if self.job.cancel_requested or self.job.status == JobStatus.CANCELLED:
            raise JobCancelledError(self.job.id)

    def progress(self, value: float) -> None:
        self.jobs.set_progress(self.job, int(value))
        if self.on_progress:
            self.on_progress(self.job.progress)


def _uuid_list(payload: Dict[str, Any], key: str) -> List[str]:
    values = payload.get(key)
    if not isinstance(values, (list, tuple)) or not values:
        raise InvalidJobPayloadError(f"'{key}' must be a non-empty list")
    try:
        return list(dict.fromkeys(str(as_uuid(v)) for v in values))
    except (TypeError, ValueError):
        raise InvalidJobPayloadError(f"'{key}' must contain UUIDs")


def _naive_utc(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            raise InvalidJobPayloadError(f"Invalid cutoff timestamp: {value}")
    if not isinstance(value, datetime):
        raise InvalidJobPayloadError("'cutoff' must be an ISO-8601 timestamp")
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def validate_payload(job_type: JobType, payload: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Check and normalise an enqueue payload.

    Returns:
        (group id, normalised payload)

    Raises:
        InvalidJobPayloadError: payload unusable for this job type
    """
    if not isinstance(payload, dict):
        raise InvalidJobPayloadError("Payload must be an object")
    try:
        group_id = str(as_uuid(payload.get('group_id')))
    except (TypeError, ValueError):
        raise InvalidJobPayloadError("'group_id' must be a UUID")

    normalized: Dict[str, Any] = {'group_id': group_id}

    if job_type == JobType.DETECTION:
        normalized['media_ids'] = _uuid_list(payload, 'media_ids')

    elif job_type == JobType.GROUPING:
        if payload.get('recluster'):
            if payload.get('incremental'):
                raise InvalidJobPayloadError("A recluster pass cannot be incremental")
            # Re-clustering covers every indexed face of the group
            normalized['face_detection_ids'] = []
            normalized['incremental'] = False
            normalized['recluster'] = True
        else:
            normalized['face_detection_ids'] = _uuid_list(payload, 'face_detection_ids')
            normalized['incremental'] = bool(payload.get('incremental', False))

    elif job_type == JobType.CLEANUP:
        has_media = bool(payload.get('media_ids'))
        has_cutoff = payload.get('cutoff') is not None
        if has_media == has_cutoff:
            raise InvalidJobPayloadError("Cleanup needs exactly one of 'media_ids' or 'cutoff'")
        if has_media:
            normalized['media_ids'] = _uuid_list(payload, 'media_ids')
        else:
            normalized['cutoff'] = _naive_utc(payload['cutoff']).isoformat()

    return group_id, normalized


class JobOrchestrator:
    """
    Public surface of the pipeline: enqueue, status, cancel, list.

    Constructed per unit of work with a session and a dispatcher.
    """

    def __init__(self, db: Session, dispatcher=None):
        if dispatcher is None:
            from src.tasks.celery_app import CeleryDispatcher
            dispatcher = CeleryDispatcher()
        self.db = db
        self.dispatcher = dispatcher
        self.jobs = JobRepository(db)

    # ------------------------------------------------------------------
    # Enqueue / dispatch
    # ------------------------------------------------------------------

    def enqueue(
        self,
        job_type: JobType,
        payload: Dict[str, Any],
        triggered_by_job_id: Optional[str] = None,
        defer_dispatch: bool = False,
    ) -> str:
        """
        Create a PENDING job and hand it to the dispatcher.

        With ``defer_dispatch`` the row is only flushed; the caller commits
        it with its own unit of work and calls ``dispatch`` afterwards.
        """
        try:
            job_type = JobType(job_type)
        except ValueError:
            raise InvalidJobPayloadError(f"Unknown job type: {job_type}")

        group_id, normalized = validate_payload(job_type, payload)
        job_id = str(uuid.uuid4())

        self.jobs.create_job(
            job_id,
            job_type,
            group_id,
            normalized,
            triggered_by_job_id=triggered_by_job_id,
            commit=not defer_dispatch,
        )
        logger.info(f"Enqueued {job_type.value} job {job_id} for group {group_id}")

        if not defer_dispatch:
            self.dispatch(job_id)
        return job_id

    def enqueue_detection(self, group_id: Any, media_ids: List[Any]) -> str:
        return self.enqueue(JobType.DETECTION, {'group_id': group_id, 'media_ids': media_ids})

    def enqueue_grouping(self, group_id: Any, face_detection_ids: List[Any], incremental: bool = False) -> str:
        return self.enqueue(
            JobType.GROUPING,
            {'group_id': group_id, 'face_detection_ids': face_detection_ids, 'incremental': incremental},
        )

    def enqueue_recluster(self, group_id: Any) -> str:
        """Drop the group's clusters and group all of its indexed faces again."""
        return self.enqueue(JobType.GROUPING, {'group_id': group_id, 'recluster': True})

    def enqueue_cleanup(
        self,
        group_id: Any,
        media_ids: Optional[List[Any]] = None,
        cutoff: Optional[datetime] = None,
    ) -> str:
        payload: Dict[str, Any] = {'group_id': group_id}
        if media_ids:
            payload['media_ids'] = media_ids
        if cutoff is not None:
            payload['cutoff'] = cutoff
        return self.enqueue(JobType.CLEANUP, payload)

    def dispatch(self, job_id: str) -> None:
        job = self.jobs.get(job_id)
        if not job:
            raise JobNotFoundError(f"Job {job_id} not found")
        self.dispatcher.dispatch(JobType(job.job_type), job.id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self, job_id: str) -> Optional[Job]:
        return self.jobs.get(job_id)

    def list_by_collection(self, group_id: Any) -> List[Job]:
        return self.jobs.list_by_collection(str(group_id))

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(self, job_id: str) -> bool:
        """
        Cancel a job.

        A PENDING job is cancelled at once and its queued message revoked.
        A PROCESSING job is flagged; the worker stops at its next
        checkpoint. Returns False for jobs already in a terminal state.
        """
        job = self.jobs.get(job_id)
        if not job:
            raise JobNotFoundError(f"Job {job_id} not found")

        # A worker may have picked the job up since it was loaded
        self.jobs.lock(job)
        if job.is_terminal:
            self.db.rollback()
            return False

        if job.status == JobStatus.PENDING:
            self.jobs.transition(job, JobStatus.CANCELLED, cancel_requested=True)
            self.dispatcher.revoke(job.id)
            logger.info(f"Cancelled pending job {job_id}")
        else:
            job.cancel_requested = True
            self.db.commit()
            logger.info(f"Cancellation requested for running job {job_id}")
        return True

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute(self, job_id: str, stage, on_progress: Optional[Callable[[int], None]] = None) -> Job:
        """
        Run ``stage`` for a job, moving it through the state machine.

        Cancellation ends in CANCELLED. Retryable errors propagate with the
        job left PROCESSING; any other error marks it FAILED with the
        message verbatim and propagates. A CLEANUP job found PROCESSING was
        interrupted mid-delete and is failed instead of being run again.
        """
        job = self.jobs.get(job_id)
        if not job:
            raise JobNotFoundError(f"Job {job_id} not found")

        if job.is_terminal:
            logger.info(f"Job {job_id} already {JobStatus(job.status).value}, skipping")
            return job

        if job.status == JobStatus.PENDING:
            try:
                self.jobs.transition(job, JobStatus.PROCESSING, attempts=(job.attempts or 0) + 1)
            except InvalidJobTransitionError:
                self.db.rollback()
                self.db.refresh(job)
                logger.info(f"Job {job_id} became {JobStatus(job.status).value} before start, skipping")
                return job
        elif JobType(job.job_type) == JobType.CLEANUP:
            logger.warning(f"Cleanup job {job_id} was interrupted, not resuming")
            return self.fail(job_id, CLEANUP_INTERRUPTED_ERROR)
        else:
            job.attempts = (job.attempts or 0) + 1
            self.db.commit()
            logger.info(f"Resuming job {job_id} (attempt {job.attempts})")

        ctx = JobContext(self.db, job, on_progress=on_progress, orchestrator=self)
        try:
            result = stage.run(ctx)
        except JobCancelledError:
            self.db.rollback()
            self.db.refresh(job)
            if not job.is_terminal:
                self.jobs.transition(job, JobStatus.CANCELLED)
            logger.info(f"Job {job_id} cancelled at progress {job.progress}")
            return job
        except RETRYABLE_ERRORS as e:
            self.db.rollback()
            logger.warning(f"Job {job_id} hit a retryable error: {e}")
            raise
        except Exception as e:
            self.db.rollback()
            self.fail(job_id, str(e))
            raise

        try:
            self.jobs.transition(job, JobStatus.COMPLETED, result=result)
        except InvalidJobTransitionError:
            # Lost the race against cancel or fail; chained work is discarded
            self.db.rollback()
            self.db.refresh(job)
            logger.info(f"Job {job_id} became {JobStatus(job.status).value} while finishing")
            return job
        for callback in ctx.after_commit:
            callback()
        return job

    def fail(self, job_id: str, error: str) -> Optional[Job]:
        """Record a final failure; a no-op for terminal jobs."""
        job = self.jobs.get(job_id)
        if not job:
            return None
        self.db.refresh(job)
        if job.is_terminal:
            return job
        if job.status == JobStatus.PENDING:
            self.jobs.transition(job, JobStatus.PROCESSING, commit=False)
        self.jobs.transition(job, JobStatus.FAILED, error=error)
        logger.error(f"Job {job_id} failed: {error}")
        return job

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def reap_finished(self, retention_hours: Optional[int] = None) -> int:
        hours = settings.JOB_RETENTION_HOURS if retention_hours is None else retention_hours
        cutoff = datetime.utcnow() - timedelta(hours=hours)
        deleted = self.jobs.delete_finished_before(cutoff)
        if deleted:
            logger.info(f"Reaped {deleted} finished jobs older than {hours}h")
        return deleted
