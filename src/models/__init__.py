"""Import all models for Alembic."""
from .base import TimestampMixin
from .enums import (
    JobType,
    JobStatus,
    SingletonPolicy,
)
from .group import Group
from .media import Media
from .face_detection import FaceDetection
from .face_cluster import FaceCluster, FaceClusterMember
from .job import Job

__all__ = [
    "TimestampMixin",
    "JobType",
    "JobStatus",
    "SingletonPolicy",
    "Group",
    "Media",
    "FaceDetection",
    "FaceCluster",
    "FaceClusterMember",
    "Job",
]
