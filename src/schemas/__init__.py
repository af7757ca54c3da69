"""
Pipeline schemas package.

Request/response models for job enqueueing, job status polling and
cluster maintenance.
"""

from .job import (
    DetectionJobRequest,
    GroupingJobRequest,
    CleanupJobRequest,
    JobEnqueueResponse,
    JobResponse,
    JobListResponse,
    JobCancelResponse,
)
from .cluster import (
    ClusterMergeRequest,
    ClusterResponse,
    RemoveFaceResponse,
)

__all__ = [
    "DetectionJobRequest",
    "GroupingJobRequest",
    "CleanupJobRequest",
    "JobEnqueueResponse",
    "JobResponse",
    "JobListResponse",
    "JobCancelResponse",
    "ClusterMergeRequest",
    "ClusterResponse",
    "RemoveFaceResponse",
]
