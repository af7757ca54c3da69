"""
Shared test configuration
"""
import os

# Settings are read at import time
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL_OVERRIDE"] = "sqlite://"

import uuid
from datetime import datetime
from typing import Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.core.cache import InMemoryCache
from src.db.base import Base
from src.models import Group, Media, FaceDetection, Job
from src.models.enums import JobStatus, JobType
from src.services.storage.s3 import S3ServiceError
from src.services.vision.base import BoundingBox, FaceMatch, FaceRecord, VisionGateway


# ============================================================================
# Fakes
# ============================================================================

class FakeVisionGateway(VisionGateway):
    """In-memory vision service driven by a symmetric similarity table."""

    def __init__(self):
        self.similarities: Dict[frozenset, float] = {}
        self.detections: Dict[str, List[FaceRecord]] = {}
        self.collections: List[str] = []
        self.indexed: List[tuple] = []
        self.deleted: List[tuple] = []
        self.detect_calls: List[str] = []
        self.search_calls: List[tuple] = []
        self.search_errors: Dict[str, Exception] = {}
        self.detect_errors: Dict[str, Exception] = {}
        self.delete_error: Optional[Exception] = None

    def set_similarity(self, a: str, b: str, score: float) -> None:
        self.similarities[frozenset((a, b))] = score

    def create_collection(self, collection_id: str) -> None:
        if collection_id not in self.collections:
            self.collections.append(collection_id)

    def detect_faces(self, bucket: str, key: str) -> List[FaceRecord]:
        self.detect_calls.append(key)
        if key in self.detect_errors:
            raise self.detect_errors[key]
        return list(self.detections.get(key, []))

    def index_face(self, collection_id: str, image_bytes: bytes, external_id: str) -> List[FaceRecord]:
        face_id = f"vendor-{external_id}"
        self.indexed.append((collection_id, external_id, face_id))
        return [FaceRecord(
            bounding_box=BoundingBox(0.1, 0.1, 0.3, 0.3),
            confidence=99.0,
            quality={'brightness': 60.0, 'sharpness': 80.0},
            pose={'roll': 0.0, 'yaw': 0.0, 'pitch': 0.0},
            face_id=face_id,
        )]

    def search_similar(self, collection_id: str, face_id: str, max_results: int, threshold: float) -> List[FaceMatch]:
        self.search_calls.append((face_id, threshold))
        if face_id in self.search_errors:
            raise self.search_errors[face_id]
        matches = []
        for pair, score in self.similarities.items():
            if face_id in pair and score >= threshold:
                other = next(iter(pair - {face_id}))
                matches.append(FaceMatch(face_id=other, similarity=score))
        matches.sort(key=lambda m: (-m.similarity, m.face_id))
        return matches[:max_results]

    def delete_faces(self, collection_id: str, face_ids: List[str]) -> None:
        if self.delete_error:
            raise self.delete_error
        self.deleted.append((collection_id, list(face_ids)))


class FakeEnhancer:
    def __init__(self):
        self.calls = []

    def enhance(self, image_bytes: bytes, bbox: BoundingBox) -> bytes:
        self.calls.append(bbox)
        return b"enhanced:" + image_bytes


class FakeStorage:
    """Object store keeping bytes in a dict."""

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.failing_keys: set = set()
        self.download_buckets: List[Optional[str]] = []

    def download_file(self, s3_key: str, bucket: Optional[str] = None) -> bytes:
        self.download_buckets.append(bucket)
        if s3_key not in self.objects:
            raise S3ServiceError(f"Object not found: {s3_key}")
        return self.objects[s3_key]

    def upload_file(self, file_data: bytes, s3_key: str, content_type: str = 'application/octet-stream', metadata=None) -> bool:
        self.objects[s3_key] = file_data
        return True

    def delete_objects_bulk(self, s3_keys):
        deleted = 0
        failed = []
        for key in s3_keys:
            if key in self.failing_keys:
                failed.append(key)
                continue
            self.objects.pop(key, None)
            deleted += 1
        return deleted, failed


class FakeDispatcher:
    def __init__(self):
        self.dispatched: List[tuple] = []
        self.revoked: List[str] = []

    def dispatch(self, job_type: JobType, job_id: str) -> None:
        self.dispatched.append((JobType(job_type), job_id))

    def revoke(self, job_id: str) -> None:
        self.revoked.append(job_id)


# ============================================================================
# Database
# ============================================================================

@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    """Create test database session."""
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    yield session
    session.close()


# ============================================================================
# Collaborators
# ============================================================================

@pytest.fixture
def vision():
    return FakeVisionGateway()


@pytest.fixture
def enhancer():
    return FakeEnhancer()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def memory_cache():
    return InMemoryCache()


@pytest.fixture
def no_sleep():
    return lambda seconds: None


# ============================================================================
# Factories
# ============================================================================

@pytest.fixture
def make_group(db_session):
    def _make(name: str = "Wedding", collection_id: Optional[str] = None, storage_used: int = 0) -> Group:
        group = Group(name=name, collection_id=collection_id, storage_used=storage_used)
        db_session.add(group)
        db_session.commit()
        return group
    return _make


@pytest.fixture
def make_media(db_session, storage):
    def _make(
        group: Group,
        file_size: int = 100,
        processed: bool = False,
        created_at: Optional[datetime] = None,
        content: Optional[bytes] = b"jpeg-bytes",
    ) -> Media:
        s3_key = f"media/{group.id}/{uuid.uuid4()}.jpg"
        media = Media(
            group_id=group.id,
            s3_key=s3_key,
            s3_bucket="test-bucket",
            file_size=file_size,
            processed=processed,
        )
        if created_at is not None:
            media.created_at = created_at
        db_session.add(media)
        db_session.commit()
        if content is not None:
            storage.objects[s3_key] = content
        return media
    return _make


@pytest.fixture
def make_face(db_session):
    def _make(
        media: Media,
        vendor_id: str,
        processed: bool = False,
        thumbnail_s3_key: Optional[str] = None,
    ) -> FaceDetection:
        face = FaceDetection(
            media_id=media.id,
            rekognition_face_id=vendor_id,
            bounding_box={'x': 0.1, 'y': 0.1, 'width': 0.3, 'height': 0.3},
            confidence=99.0,
            quality_score=90,
            thumbnail_s3_key=thumbnail_s3_key,
            processed=processed,
        )
        db_session.add(face)
        db_session.commit()
        return face
    return _make


@pytest.fixture
def make_job(db_session):
    def _make(
        job_type: JobType = JobType.GROUPING,
        collection_id: str = "collection",
        status: JobStatus = JobStatus.PENDING,
        payload: Optional[dict] = None,
        finished_at: Optional[datetime] = None,
    ) -> Job:
        job = Job(
            id=str(uuid.uuid4()),
            job_type=job_type,
            collection_id=collection_id,
            status=status,
            payload=payload or {},
            finished_at=finished_at,
        )
        db_session.add(job)
        db_session.commit()
        return job
    return _make
