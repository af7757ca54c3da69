"""Face cluster schemas."""
from typing import Optional
from uuid import UUID
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ClusterMergeRequest(BaseModel):
    source_cluster_id: UUID


class ClusterResponse(BaseModel):
    id: UUID
    group_id: UUID
    cluster_name: Optional[str] = None
    appearance_count: int
    confidence: float
    representative_face_detection_id: Optional[UUID] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RemoveFaceResponse(BaseModel):
    cluster_id: UUID
    cluster_deleted: bool
    remaining_faces: int
