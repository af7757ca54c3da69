import uuid

import pytest

from src.core.cache import media_list_pattern
from src.core.exceptions import JobSetupError, TransientVisionError, VisionServiceError
from src.models import FaceDetection, Job
from src.models.enums import JobStatus, JobType
from src.services.pipeline.orchestrator import JobOrchestrator
from src.services.pipeline.stages import DetectionStage
from src.services.storage.s3 import thumbnail_key
from src.services.vision.base import BoundingBox, FaceRecord
from src.services.vision.rekognition import collection_id_for_group


def detected_face(confidence=99.0):
    return FaceRecord(
        bounding_box=BoundingBox(0.2, 0.2, 0.25, 0.3),
        confidence=confidence,
        quality={'brightness': 55.0, 'sharpness': 70.0},
        pose={'roll': 1.0, 'yaw': 2.0, 'pitch': 3.0},
    )


@pytest.fixture
def orchestrator(db_session, dispatcher):
    return JobOrchestrator(db_session, dispatcher=dispatcher)


@pytest.fixture
def stage(vision, enhancer, storage, memory_cache, no_sleep):
    return DetectionStage(vision, enhancer, storage, cache=memory_cache, image_delay=0, sleep=no_sleep)


@pytest.fixture
def group(make_group):
    return make_group()


def grouping_jobs(db_session):
    return db_session.query(Job).filter(Job.job_type == JobType.GROUPING).all()


class TestDetectionStage:

    def test_zero_faces_completes_without_grouping(self, orchestrator, stage, dispatcher, db_session, group, make_media):
        media = make_media(group)
        job_id = orchestrator.enqueue_detection(group.id, [media.id])

        job = orchestrator.execute(job_id, stage)

        assert job.status == JobStatus.COMPLETED
        assert job.result['facesDetected'] == 0
        assert job.result['mediaProcessed'] == 1
        assert job.result['groupingJobId'] is None
        assert grouping_jobs(db_session) == []
        assert dispatcher.dispatched == [(JobType.DETECTION, job_id)]
        assert media.processed is True

    def test_creates_collection_on_first_run(self, orchestrator, stage, vision, group, make_media):
        media = make_media(group)
        job_id = orchestrator.enqueue_detection(group.id, [media.id])

        orchestrator.execute(job_id, stage)

        expected = collection_id_for_group(group.id)
        assert vision.collections == [expected]
        assert group.collection_id == expected

    def test_faces_are_indexed_and_grouping_chained(
        self, orchestrator, stage, vision, enhancer, storage, dispatcher, db_session, group, make_media
    ):
        first = make_media(group)
        second = make_media(group)
        vision.detections[first.s3_key] = [detected_face()]
        vision.detections[second.s3_key] = [detected_face(), detected_face(confidence=90.0)]
        job_id = orchestrator.enqueue_detection(group.id, [first.id, second.id])

        job = orchestrator.execute(job_id, stage)

        assert job.status == JobStatus.COMPLETED
        assert job.result['facesDetected'] == 3
        assert job.result['mediaFailed'] == 0
        assert len(enhancer.calls) == 3

        faces = db_session.query(FaceDetection).all()
        assert len(faces) == 3
        assert all(not f.processed for f in faces)
        assert {f.rekognition_face_id for f in faces} == {
            f"vendor-{first.id}-0", f"vendor-{second.id}-0", f"vendor-{second.id}-1",
        }

        face = next(f for f in faces if f.media_id == first.id)
        assert face.bounding_box == {'x': 0.2, 'y': 0.2, 'width': 0.25, 'height': 0.3}
        assert face.confidence == 99.0
        # Quality and pose come from the indexed record
        assert face.quality == {'brightness': 60.0, 'sharpness': 80.0}
        assert face.quality_score == 95
        assert face.thumbnail_s3_key == thumbnail_key(group.id, first.id, 0)
        assert storage.objects[face.thumbnail_s3_key].startswith(b"enhanced:")

        grouping = grouping_jobs(db_session)
        assert len(grouping) == 1
        assert grouping[0].id == job.result['groupingJobId']
        assert grouping[0].status == JobStatus.PENDING
        assert grouping[0].triggered_by_job_id == job_id
        assert sorted(grouping[0].payload['face_detection_ids']) == sorted(str(f.id) for f in faces)
        assert dispatcher.dispatched[-1] == (JobType.GROUPING, grouping[0].id)

    def test_image_read_from_media_bucket(self, orchestrator, stage, vision, storage, group, make_media):
        media = make_media(group)
        vision.detections[media.s3_key] = [detected_face()]
        job_id = orchestrator.enqueue_detection(group.id, [media.id])

        orchestrator.execute(job_id, stage)

        assert storage.download_buckets == ["test-bucket"]

    def test_failing_media_is_skipped(self, orchestrator, stage, vision, group, make_media):
        good = make_media(group)
        broken = make_media(group, content=None)
        vision.detections[good.s3_key] = [detected_face()]
        vision.detections[broken.s3_key] = [detected_face()]
        job_id = orchestrator.enqueue_detection(group.id, [broken.id, good.id])

        job = orchestrator.execute(job_id, stage)

        assert job.status == JobStatus.COMPLETED
        assert job.result['mediaFailed'] == 1
        assert job.result['mediaProcessed'] == 1
        assert job.result['facesDetected'] == 1
        assert broken.processed is False

    def test_vendor_error_on_one_image_is_skipped(self, orchestrator, stage, vision, group, make_media):
        media = make_media(group)
        vision.detect_errors[media.s3_key] = VisionServiceError("invalid image")
        job_id = orchestrator.enqueue_detection(group.id, [media.id])

        job = orchestrator.execute(job_id, stage)

        assert job.status == JobStatus.COMPLETED
        assert job.result['mediaFailed'] == 1

    def test_throttling_leaves_job_for_retry(self, orchestrator, stage, vision, group, make_media):
        media = make_media(group)
        vision.detect_errors[media.s3_key] = TransientVisionError("throttled")
        job_id = orchestrator.enqueue_detection(group.id, [media.id])

        with pytest.raises(TransientVisionError):
            orchestrator.execute(job_id, stage)

        assert orchestrator.get_status(job_id).status == JobStatus.PROCESSING

    def test_retry_skips_processed_media(self, orchestrator, stage, vision, group, make_media, make_face):
        done = make_media(group, processed=True)
        existing = make_face(done, "vendor-existing")
        pending = make_media(group)
        vision.detections[pending.s3_key] = [detected_face()]
        job_id = orchestrator.enqueue_detection(group.id, [done.id, pending.id])

        job = orchestrator.execute(job_id, stage)

        assert vision.detect_calls == [pending.s3_key]
        assert str(existing.id) in job.result['faceDetectionIds']
        assert job.result['facesDetected'] == 2

    def test_media_list_cache_invalidated(self, orchestrator, stage, memory_cache, group, make_media):
        media = make_media(group)
        page_key = media_list_pattern(group.id).replace("*", "1")
        memory_cache.set(page_key, ["stale"])
        job_id = orchestrator.enqueue_detection(group.id, [media.id])

        orchestrator.execute(job_id, stage)

        assert memory_cache.get(page_key) is None

    def test_unknown_group_fails_job(self, orchestrator, stage):
        job_id = orchestrator.enqueue_detection(uuid.uuid4(), [uuid.uuid4()])

        with pytest.raises(JobSetupError):
            orchestrator.execute(job_id, stage)

        job = orchestrator.get_status(job_id)
        assert job.status == JobStatus.FAILED
        assert "not found" in job.error

    def test_collection_creation_failure_fails_job(self, orchestrator, stage, vision, group, make_media):
        media = make_media(group)

        def refuse(collection_id):
            raise VisionServiceError("access denied")

        vision.create_collection = refuse
        job_id = orchestrator.enqueue_detection(group.id, [media.id])

        with pytest.raises(JobSetupError):
            orchestrator.execute(job_id, stage)
        assert orchestrator.get_status(job_id).status == JobStatus.FAILED

    def test_cancel_between_images(self, orchestrator, stage, vision, db_session, group, make_media):
        first = make_media(group)
        second = make_media(group)
        job_id = orchestrator.enqueue_detection(group.id, [first.id, second.id])

        def cancel_after_first(progress):
            if progress >= 50:
                job = db_session.get(Job, job_id)
                job.cancel_requested = True
                db_session.commit()

        job = orchestrator.execute(job_id, stage, on_progress=cancel_after_first)

        assert job.status == JobStatus.CANCELLED
        assert vision.detect_calls == [first.s3_key]
        assert first.processed is True
        assert second.processed is False
