"""
Celery task layer tests.

Tasks run eagerly through ``Task.apply`` with the worker collaborators
(session, vision gateway, lock manager) swapped for the test doubles.
"""
from functools import partial

import pytest

from src.app.config import settings
from src.core.exceptions import TransientVisionError
from src.core.locks import LocalLockManager, grouping_lock_name
from src.models import Job
from src.models.enums import JobStatus, JobType
from src.services.face.clustering import SimilarityClusterer
from src.services.pipeline.orchestrator import JobOrchestrator
from src.tasks.workers.cleanup_worker import cleanup_media_task
from src.tasks.workers.face_processor import PipelineTask, detect_faces_task, group_faces_task


@pytest.fixture
def locks():
    return LocalLockManager()


@pytest.fixture
def worker(mocker, db_session, vision, storage, locks):
    """Point every task at the test session and fakes."""
    mocker.patch.object(PipelineTask, 'get_db', return_value=db_session)
    mocker.patch.object(PipelineTask, 'report_progress')
    mocker.patch.object(PipelineTask, 'vision', new_callable=mocker.PropertyMock, return_value=vision)
    mocker.patch.object(PipelineTask, 's3_service', new_callable=mocker.PropertyMock, return_value=storage)
    mocker.patch.object(PipelineTask, 'locks', new_callable=mocker.PropertyMock, return_value=locks)
    mocker.patch(
        'src.tasks.workers.face_processor.SimilarityClusterer',
        partial(SimilarityClusterer, sleep=lambda seconds: None),
    )
    return mocker.patch.object(PipelineTask, 'apply_async')


@pytest.fixture
def grouping_job(db_session, dispatcher, vision, make_group, make_media, make_face):
    group = make_group(collection_id="face-media-group-test")
    a = make_face(make_media(group), "A")
    b = make_face(make_media(group), "B")
    vision.set_similarity("A", "B", 95.0)
    job_id = JobOrchestrator(db_session, dispatcher=dispatcher).enqueue_grouping(group.id, [a.id, b.id])
    return job_id, str(group.id)


# ============================================================================
# Grouping lock
# ============================================================================

class TestGroupingLock:

    def test_busy_collection_requeues_without_touching_job(self, worker, locks, db_session, grouping_job):
        job_id, collection_id = grouping_job

        with locks.hold(grouping_lock_name(collection_id)) as acquired:
            assert acquired
            outcome = group_faces_task.apply(args=[job_id])

        assert outcome.successful()
        assert outcome.result['status'] == 'REQUEUED'
        worker.assert_called_once_with(args=[job_id], task_id=job_id, countdown=settings.GROUPING_LOCK_RETRY_SECONDS)
        job = db_session.get(Job, job_id)
        assert job.status == JobStatus.PENDING
        assert job.attempts == 0
        assert job.error is None

    def test_free_collection_runs_and_releases_lock(self, worker, locks, db_session, grouping_job):
        job_id, collection_id = grouping_job

        outcome = group_faces_task.apply(args=[job_id])

        assert outcome.result['status'] == 'COMPLETED'
        assert outcome.result['result']['clustersCreated'] == 1
        worker.assert_not_called()
        assert db_session.get(Job, job_id).status == JobStatus.COMPLETED
        with locks.hold(grouping_lock_name(collection_id)) as acquired:
            assert acquired


# ============================================================================
# Failure handling
# ============================================================================

class TestOnFailure:

    def test_records_error_verbatim(self, worker, db_session, make_job):
        job = make_job(JobType.DETECTION, status=JobStatus.PROCESSING)
        job_id = job.id
        error = TransientVisionError("Rate exceeded: ProvisionedThroughputExceededException")

        detect_faces_task.on_failure(error, job_id, [job_id], {}, None)

        job = db_session.get(Job, job_id)
        assert job.status == JobStatus.FAILED
        assert job.error == "Rate exceeded: ProvisionedThroughputExceededException"

    def test_missing_job_id_is_ignored(self, worker, db_session):
        detect_faces_task.on_failure(RuntimeError("boom"), "task-1", [], {}, None)

        assert db_session.query(Job).count() == 0


# ============================================================================
# Cleanup delivery
# ============================================================================

class TestCleanupTaskSettings:

    def test_cleanup_is_never_redelivered_or_retried(self):
        assert cleanup_media_task.acks_late is False
        assert cleanup_media_task.reject_on_worker_lost is False
        assert cleanup_media_task.autoretry_for == ()
        assert cleanup_media_task.max_retries == 0

    def test_detection_and_grouping_ack_late(self):
        assert detect_faces_task.acks_late is True
        assert group_faces_task.acks_late is True

    def test_interrupted_cleanup_fails_instead_of_running_again(self, worker, db_session, storage, make_group, make_job, make_media):
        group = make_group()
        media = make_media(group)
        job = make_job(
            JobType.CLEANUP,
            collection_id=str(group.id),
            status=JobStatus.PROCESSING,
            payload={'group_id': str(group.id), 'media_ids': [str(media.id)]},
        )
        job_id, s3_key = job.id, media.s3_key

        outcome = cleanup_media_task.apply(args=[job_id])

        assert outcome.result['status'] == 'FAILED'
        job = db_session.get(Job, job_id)
        assert job.error == "Cleanup interrupted; re-trigger manually"
        assert s3_key in storage.objects
