"""Cleanup and maintenance Celery tasks."""
from typing import Any, Dict
import logging

from src.core.cache import cache
from src.db.base import SessionLocal
from src.services.pipeline.orchestrator import JobOrchestrator
from src.services.pipeline.stages import CleanupStage
from src.tasks.celery_app import celery_app
from src.tasks.workers.face_processor import PipelineTask, _summary

logger = logging.getLogger(__name__)


class CleanupTask(PipelineTask):
    """
    Never retried: a replayed partial delete could double-decrement storage.

    Acknowledged on receipt, so a worker lost mid-run does not put the
    message back on the queue.
    """

    autoretry_for = ()
    max_retries = 0
    retry_kwargs = {'max_retries': 0}
    acks_late = False
    reject_on_worker_lost = False


@celery_app.task(
    bind=True,
    base=CleanupTask,
    name='tasks.cleanup_media',
    track_started=True
)
def cleanup_media_task(self, job_id: str) -> Dict[str, Any]:
    """Delete the media of one CLEANUP job with their faces and stored bytes."""
    db = self.get_db()
    try:
        stage = CleanupStage(vision=self.vision, storage=self.s3_service, cache=cache)
        job = JobOrchestrator(db).execute(job_id, stage, on_progress=self.report_progress)
        return _summary(job)
    finally:
        db.close()


@celery_app.task(
    bind=True,
    name='tasks.reap_finished_jobs'
)
def reap_finished_jobs_task(self) -> Dict[str, Any]:
    """Delete terminal jobs past their retention window."""
    db = SessionLocal()
    try:
        deleted = JobOrchestrator(db).reap_finished()
        return {'status': 'completed', 'jobs_deleted': deleted}
    except Exception as e:
        logger.error(f"Job reaping failed: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()
