"""Cluster maintenance endpoints: merge and face removal."""
from uuid import UUID
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.api.deps import get_cache
from src.core.cache import CacheBackend, invalidate_group_cache
from src.db.base import get_db
from src.repositories.face_cluster_repo import FaceClusterRepository
from src.schemas.cluster import ClusterMergeRequest, ClusterResponse, RemoveFaceResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/{target_id}/merge",
    response_model=ClusterResponse,
    summary="Merge another cluster into this one",
)
async def merge_clusters(
    target_id: UUID,
    request: ClusterMergeRequest,
    db: Session = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
):
    """All members of the source cluster move to the target; the source is deleted."""
    target = FaceClusterRepository(db).merge_clusters(request.source_cluster_id, target_id)
    invalidate_group_cache(target.group_id, media=False, clusters=True, backend=cache)
    return ClusterResponse.model_validate(target)


@router.delete(
    "/{cluster_id}/faces/{face_detection_id}",
    response_model=RemoveFaceResponse,
    summary="Detach a face from a cluster",
)
async def remove_face_from_cluster(
    cluster_id: UUID,
    face_detection_id: UUID,
    db: Session = Depends(get_db),
    cache: CacheBackend = Depends(get_cache),
):
    repo = FaceClusterRepository(db)
    cluster = repo.get(cluster_id)
    group_id = cluster.group_id if cluster else None

    result = repo.remove_face(cluster_id, face_detection_id)
    if group_id:
        invalidate_group_cache(group_id, media=False, clusters=True, backend=cache)

    return RemoveFaceResponse(
        cluster_id=result.cluster_id,
        cluster_deleted=result.cluster_deleted,
        remaining_faces=result.remaining_faces,
    )
