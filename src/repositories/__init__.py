from .base import BaseRepository
from .group_repo import GroupRepository, MediaRepository
from .face_detection_repo import FaceDetectionRepository
from .face_cluster_repo import FaceClusterRepository, RemoveFaceResult
from .job_repo import JobRepository

__all__ = [
    "BaseRepository",
    "GroupRepository",
    "MediaRepository",
    "FaceDetectionRepository",
    "FaceClusterRepository",
    "RemoveFaceResult",
    "JobRepository",
]
