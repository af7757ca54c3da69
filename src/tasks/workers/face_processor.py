"""
Face Processing Celery Workers
===============================

Detection and grouping jobs. The task bodies only build collaborators
and hand the job to JobOrchestrator.execute.

- Automatic retries with exponential backoff for throttling errors
- Progress mirrored into Celery task state
- One grouping pass per collection at a time (Redis lock)
"""

from typing import Any, Dict, Optional
import logging

from celery import Task
from sqlalchemy.orm import Session

from src.app.config import settings
from src.core.cache import cache
from src.core.locks import LockManager, create_lock_manager, grouping_lock_name
from src.db.base import SessionLocal
from src.models.job import Job
from src.services.face.clustering import SimilarityClusterer
from src.services.face.enhancement import FaceEnhancer
from src.services.pipeline.orchestrator import JobOrchestrator, RETRYABLE_ERRORS
from src.services.pipeline.stages import DetectionStage, GroupingStage
from src.services.storage.s3 import S3Service
from src.services.vision.rekognition import RekognitionGateway
from src.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


# ============================================================================
# Base Task Class
# ============================================================================

class PipelineTask(Task):
    """Base task class with common functionality."""

    # Retry configuration
    autoretry_for = RETRYABLE_ERRORS
    retry_kwargs = {'max_retries': settings.JOB_MAX_RETRIES}
    retry_backoff = True
    retry_backoff_max = settings.JOB_RETRY_BACKOFF_MAX
    retry_jitter = True

    # Shared clients per worker process
    _vision: Optional[RekognitionGateway] = None
    _s3_service: Optional[S3Service] = None
    _locks: Optional[LockManager] = None

    @property
    def vision(self) -> RekognitionGateway:
        if self._vision is None:
            self._vision = RekognitionGateway()
        return self._vision

    @property
    def s3_service(self) -> S3Service:
        if self._s3_service is None:
            self._s3_service = S3Service()
        return self._s3_service

    @property
    def locks(self) -> LockManager:
        if self._locks is None:
            self._locks = create_lock_manager()
        return self._locks

    def get_db(self) -> Session:
        return SessionLocal()

    def report_progress(self, progress: int) -> None:
        self.update_state(state='PROGRESS', meta={'progress': progress})

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Out of retries or a non-retryable error: record it on the job row."""
        job_id = args[0] if args else kwargs.get('job_id')
        logger.error(f"Task {self.name} failed for job {job_id}: {exc}", extra={'task_id': task_id})
        if not job_id:
            return
        db = self.get_db()
        try:
            JobOrchestrator(db).fail(job_id, str(exc))
        finally:
            db.close()

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"Task {self.name} finished", extra={'task_id': task_id})


def _summary(job: Job) -> Dict[str, Any]:
    return {
        'job_id': job.id,
        'status': job.status.value if hasattr(job.status, 'value') else job.status,
        'progress': job.progress,
        'result': job.result,
    }


# ============================================================================
# Face Detection Task
# ============================================================================

@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='tasks.detect_faces',
    track_started=True
)
def detect_faces_task(self, job_id: str) -> Dict[str, Any]:
    """
    Detect, enhance and index faces for the media of one DETECTION job,
    then chain a GROUPING job for the new faces.
    """
    db = self.get_db()
    try:
        stage = DetectionStage(
            vision=self.vision,
            enhancer=FaceEnhancer(output_size=settings.FACE_ENHANCED_SIZE),
            storage=self.s3_service,
            cache=cache,
        )
        job = JobOrchestrator(db).execute(job_id, stage, on_progress=self.report_progress)
        return _summary(job)
    finally:
        db.close()


# ============================================================================
# Face Grouping Task
# ============================================================================

@celery_app.task(
    bind=True,
    base=PipelineTask,
    name='tasks.group_faces',
    track_started=True
)
def group_faces_task(self, job_id: str) -> Dict[str, Any]:
    """
    Cluster the faces of one GROUPING job.

    Holds the collection's grouping lock for the whole run; if another
    grouping job owns it, a fresh message is sent for the same job and the
    job row stays PENDING. Waiting does not use up the retry budget.
    """
    db = self.get_db()
    try:
        job = JobOrchestrator(db).get_status(job_id)
        collection_key = job.collection_id if job else job_id

        with self.locks.hold(grouping_lock_name(collection_key)) as acquired:
            if not acquired:
                logger.info(f"Grouping already running for {collection_key}, re-queueing job {job_id}")
                self.apply_async(
                    args=[job_id],
                    task_id=job_id,
                    countdown=settings.GROUPING_LOCK_RETRY_SECONDS,
                )
                return {'job_id': job_id, 'status': 'REQUEUED', 'progress': 0, 'result': None}

            clusterer = SimilarityClusterer(
                self.vision,
                max_results=settings.FACE_SEARCH_MAX_RESULTS,
                batch_size=settings.FACE_SEARCH_BATCH_SIZE,
                batch_delay=settings.FACE_SEARCH_BATCH_DELAY_SECONDS,
                merge_sample_size=settings.FACE_MERGE_SAMPLE_SIZE,
                merge_delay=settings.FACE_MERGE_SEARCH_DELAY_SECONDS,
                second_pass_delta=settings.FACE_SECOND_PASS_DELTA,
                incremental_delay=settings.FACE_INCREMENTAL_DELAY_SECONDS,
            )
            stage = GroupingStage(clusterer, cache=cache)
            job = JobOrchestrator(db).execute(job_id, stage, on_progress=self.report_progress)
            return _summary(job)
    finally:
        db.close()
