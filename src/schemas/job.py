"""
Job Schemas
============

Pydantic schemas for pipeline job requests and status.
"""

from typing import List, Optional, Dict, Any
from uuid import UUID
from datetime import datetime

from pydantic import BaseModel, Field, ConfigDict, model_validator

from src.models.enums import JobStatus, JobType


class DetectionJobRequest(BaseModel):
    """Run face detection over uploaded media."""
    media_ids: List[UUID] = Field(..., min_length=1)


class GroupingJobRequest(BaseModel):
    """Cluster already indexed face detections."""
    face_detection_ids: List[UUID] = Field(..., min_length=1)
    incremental: bool = Field(False, description="Attach faces to existing clusters instead of a full pass")


class CleanupJobRequest(BaseModel):
    """Delete media either by ID or by age."""
    media_ids: Optional[List[UUID]] = None
    cutoff: Optional[datetime] = Field(None, description="Delete media created before this time")

    @model_validator(mode='after')
    def exactly_one_target(self):
        if bool(self.media_ids) == (self.cutoff is not None):
            raise ValueError("Provide exactly one of media_ids or cutoff")
        return self


class JobEnqueueResponse(BaseModel):
    job_id: str
    job_type: JobType
    status: JobStatus = JobStatus.PENDING


class JobResponse(BaseModel):
    """Job row as exposed to pollers."""
    job_id: str = Field(..., validation_alias='id')
    job_type: JobType
    collection_id: str
    status: JobStatus
    progress: int = Field(0, ge=0, le=100)
    payload: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    cancel_requested: bool = False
    attempts: int = 0
    triggered_by_job_id: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class JobListResponse(BaseModel):
    jobs: List[JobResponse]
    total: int


class JobCancelResponse(BaseModel):
    job_id: str
    cancelled: bool
    status: JobStatus
    message: str
