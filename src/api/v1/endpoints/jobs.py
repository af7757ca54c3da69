"""
Job API Endpoints
=================

Enqueue pipeline jobs for a group and poll or cancel them.
"""

from uuid import UUID
import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from src.api.deps import get_group_or_404, get_orchestrator
from src.core.exceptions import InvalidJobPayloadError, JobNotFoundError
from src.db.base import get_db
from src.models.enums import JobStatus, JobType
from src.models.group import Group
from src.repositories.face_detection_repo import FaceDetectionRepository
from src.services.pipeline.orchestrator import JobOrchestrator
from src.schemas.job import (
    CleanupJobRequest,
    DetectionJobRequest,
    GroupingJobRequest,
    JobCancelResponse,
    JobEnqueueResponse,
    JobListResponse,
    JobResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Enqueue
# ============================================================================

@router.post(
    "/groups/{group_id}/jobs/detection",
    response_model=JobEnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Detect faces in media",
)
async def enqueue_detection(
    request: DetectionJobRequest,
    group: Group = Depends(get_group_or_404),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    job_id = orchestrator.enqueue_detection(group.id, request.media_ids)
    return JobEnqueueResponse(job_id=job_id, job_type=JobType.DETECTION)


@router.post(
    "/groups/{group_id}/jobs/grouping",
    response_model=JobEnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Cluster detected faces",
)
async def enqueue_grouping(
    request: GroupingJobRequest,
    group: Group = Depends(get_group_or_404),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    job_id = orchestrator.enqueue_grouping(group.id, request.face_detection_ids, request.incremental)
    return JobEnqueueResponse(job_id=job_id, job_type=JobType.GROUPING)


@router.post(
    "/groups/{group_id}/jobs/recluster",
    response_model=JobEnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Re-cluster every face of a group",
)
async def enqueue_recluster(
    group: Group = Depends(get_group_or_404),
    db: Session = Depends(get_db),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Replace the group's clusters with a fresh full pass over all of its
    indexed faces. Manual cluster edits are lost.
    """
    if not FaceDetectionRepository(db).find_indexed_by_group(group.id):
        raise InvalidJobPayloadError("No faces found to cluster")
    job_id = orchestrator.enqueue_recluster(group.id)
    return JobEnqueueResponse(job_id=job_id, job_type=JobType.GROUPING)


@router.post(
    "/groups/{group_id}/jobs/cleanup",
    response_model=JobEnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Delete media by ID or age",
)
async def enqueue_cleanup(
    request: CleanupJobRequest,
    group: Group = Depends(get_group_or_404),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    job_id = orchestrator.enqueue_cleanup(group.id, media_ids=request.media_ids, cutoff=request.cutoff)
    return JobEnqueueResponse(job_id=job_id, job_type=JobType.CLEANUP)


# ============================================================================
# Status
# ============================================================================

@router.get(
    "/groups/{group_id}/jobs",
    response_model=JobListResponse,
    summary="List jobs of a group, newest first",
)
async def list_group_jobs(
    group_id: UUID,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    jobs = orchestrator.list_by_collection(group_id)
    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=len(jobs),
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    summary="Get job status",
)
async def get_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    job = orchestrator.get_status(job_id)
    if not job:
        raise JobNotFoundError(f"Job {job_id} not found")
    return JobResponse.model_validate(job)


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=JobCancelResponse,
    summary="Cancel a pending or running job",
)
async def cancel_job(
    job_id: str,
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Pending jobs are cancelled immediately. Running jobs stop at their
    next checkpoint, so the returned status may still be PROCESSING.
    """
    cancelled = orchestrator.cancel(job_id)
    job = orchestrator.get_status(job_id)

    if not cancelled:
        message = f"Job already {JobStatus(job.status).value}"
    elif job.status == JobStatus.CANCELLED:
        message = "Job cancelled"
    else:
        message = "Cancellation requested"

    logger.info(f"Cancel request for job {job_id}: {message}")
    return JobCancelResponse(
        job_id=job_id,
        cancelled=cancelled,
        status=job.status,
        message=message,
    )
