"""Face cluster repository."""
from dataclasses import dataclass
from typing import Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.core.exceptions import ClusterNotFoundError, ClusterOperationError, NotFoundError
from src.models.face_cluster import FaceCluster, FaceClusterMember
from .base import BaseRepository

logger = logging.getLogger(__name__)


@dataclass
class RemoveFaceResult:
    """Outcome of detaching a face from a cluster."""
    cluster_id: UUID
    cluster_deleted: bool
    remaining_faces: int


class FaceClusterRepository(BaseRepository[FaceCluster]):
    """
    Repository for clusters and their members.

    Every operation that changes membership finishes with
    ``refresh_appearance_count`` so the stored count always equals the
    number of member rows, and a cluster left without members is deleted.
    """

    def __init__(self, db: Session):
        super().__init__(FaceCluster, db)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_by_group(self, group_id: UUID) -> List[FaceCluster]:
        return (
            self.db.query(FaceCluster)
            .filter(FaceCluster.group_id == group_id)
            .order_by(FaceCluster.created_at, FaceCluster.id)
            .all()
        )

    def get_members(self, cluster_id: UUID) -> List[FaceClusterMember]:
        return (
            self.db.query(FaceClusterMember)
            .filter(FaceClusterMember.cluster_id == cluster_id)
            .order_by(FaceClusterMember.created_at)
            .all()
        )

    def count_members(self, cluster_id: UUID) -> int:
        return (
            self.db.query(func.count(FaceClusterMember.id))
            .filter(FaceClusterMember.cluster_id == cluster_id)
            .scalar()
        ) or 0

    def clustered_face_ids(self, face_detection_ids: Iterable[UUID]) -> set:
        """Subset of ``face_detection_ids`` that already belong to some cluster."""
        face_detection_ids = list(face_detection_ids)
        if not face_detection_ids:
            return set()
        rows = (
            self.db.query(FaceClusterMember.face_detection_id)
            .filter(FaceClusterMember.face_detection_id.in_(face_detection_ids))
            .all()
        )
        return {row[0] for row in rows}

    def cluster_ids_for_faces(self, face_detection_ids: Iterable[UUID]) -> set:
        face_detection_ids = list(face_detection_ids)
        if not face_detection_ids:
            return set()
        rows = (
            self.db.query(FaceClusterMember.cluster_id)
            .filter(FaceClusterMember.face_detection_id.in_(face_detection_ids))
            .distinct()
            .all()
        )
        return {row[0] for row in rows}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_cluster(
        self,
        group_id: UUID,
        face_detection_ids: Iterable[UUID],
        confidence: float,
        representative_face_detection_id: Optional[UUID] = None,
        job_id: Optional[str] = None,
        commit: bool = True,
    ) -> Optional[FaceCluster]:
        """
        Create a cluster with one member row per face detection.

        Detections that already belong to another cluster are skipped.
        Returns None (and creates nothing) when no member remains.
        """
        face_detection_ids = list(dict.fromkeys(face_detection_ids))
        taken = self.clustered_face_ids(face_detection_ids)
        free_ids = [fid for fid in face_detection_ids if fid not in taken]
        if taken:
            logger.warning(f"Skipping {len(taken)} faces already assigned to a cluster")
        if not free_ids:
            return None

        if representative_face_detection_id not in free_ids:
            representative_face_detection_id = free_ids[0]

        cluster = FaceCluster(
            group_id=group_id,
            appearance_count=0,
            confidence=confidence,
            representative_face_detection_id=representative_face_detection_id,
            job_id=job_id,
        )
        self.db.add(cluster)
        self.db.flush()

        self._add_member_rows(cluster.id, free_ids, confidence)
        self.refresh_appearance_count(cluster, commit=False)

        if commit:
            self.db.commit()
        return cluster

    def add_members(
        self,
        cluster: FaceCluster,
        face_detection_ids: Iterable[UUID],
        confidence: float,
        commit: bool = True,
    ) -> int:
        """Attach unassigned detections to an existing cluster."""
        face_detection_ids = list(dict.fromkeys(face_detection_ids))
        taken = self.clustered_face_ids(face_detection_ids)
        free_ids = [fid for fid in face_detection_ids if fid not in taken]

        self._add_member_rows(cluster.id, free_ids, confidence)
        self.refresh_appearance_count(cluster, commit=False)

        if commit:
            self.db.commit()
        return len(free_ids)

    def _add_member_rows(self, cluster_id: UUID, face_detection_ids: List[UUID], confidence: float) -> None:
        for face_detection_id in face_detection_ids:
            self.db.add(FaceClusterMember(
                cluster_id=cluster_id,
                face_detection_id=face_detection_id,
                confidence=confidence,
            ))
        self.db.flush()

    def refresh_appearance_count(self, cluster: FaceCluster, commit: bool = True) -> Optional[FaceCluster]:
        """
        Recompute appearance_count from member rows.

        Deletes the cluster and returns None when it has no members left.
        """
        self.db.flush()
        member_face_ids = [m.face_detection_id for m in self.get_members(cluster.id)]
        if not member_face_ids:
            logger.info(f"Deleting empty cluster {cluster.id}")
            self.db.delete(cluster)
            cluster = None
        else:
            cluster.appearance_count = len(member_face_ids)
            if cluster.representative_face_detection_id not in member_face_ids:
                cluster.representative_face_detection_id = member_face_ids[0]

        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return cluster

    def refresh_clusters(self, cluster_ids: Iterable[UUID], commit: bool = True) -> int:
        """Refresh counts for several clusters; returns how many were deleted."""
        deleted = 0
        for cluster in self.get_many(cluster_ids):
            self.db.expire(cluster, ['members'])
            if self.refresh_appearance_count(cluster, commit=False) is None:
                deleted += 1
        if commit:
            self.db.commit()
        return deleted

    def merge_clusters(self, source_cluster_id: UUID, target_cluster_id: UUID) -> FaceCluster:
        """
        Re-parent every member of the source cluster onto the target and
        delete the source.

        The target keeps its name unless it has none, in which case the
        source name is adopted. Confidence becomes the member-weighted mean
        of both clusters.
        """
        if source_cluster_id == target_cluster_id:
            raise ClusterOperationError("Cannot merge a cluster with itself")

        source = self.get(source_cluster_id)
        if not source:
            raise ClusterNotFoundError(f"Source cluster {source_cluster_id} not found")
        target = self.get(target_cluster_id)
        if not target:
            raise ClusterNotFoundError(f"Target cluster {target_cluster_id} not found")
        if source.group_id != target.group_id:
            raise ClusterOperationError("Cannot merge clusters from different groups")

        source_count = self.count_members(source.id)
        target_count = self.count_members(target.id)
        total = source_count + target_count

        logger.info(
            f"Merging cluster {source.id} ({source_count} members) "
            f"into {target.id} ({target_count} members)"
        )

        (
            self.db.query(FaceClusterMember)
            .filter(FaceClusterMember.cluster_id == source.id)
            .update({FaceClusterMember.cluster_id: target.id}, synchronize_session='fetch')
        )

        if total > 0:
            target.confidence = (
                source.confidence * source_count + target.confidence * target_count
            ) / total
        if not target.cluster_name and source.cluster_name:
            target.cluster_name = source.cluster_name

        self.db.expire(source, ['members'])
        self.db.delete(source)
        self.db.expire(target, ['members'])
        target = self.refresh_appearance_count(target, commit=False)

        self.db.commit()
        return target

    def remove_face(self, cluster_id: UUID, face_detection_id: UUID) -> RemoveFaceResult:
        """Detach one face; deletes the cluster if it becomes empty."""
        cluster = self.get(cluster_id)
        if not cluster:
            raise ClusterNotFoundError(f"Cluster {cluster_id} not found")

        member = (
            self.db.query(FaceClusterMember)
            .filter(
                FaceClusterMember.cluster_id == cluster_id,
                FaceClusterMember.face_detection_id == face_detection_id,
            )
            .first()
        )
        if not member:
            raise NotFoundError(f"Face {face_detection_id} is not in cluster {cluster_id}")

        self.db.delete(member)
        self.db.flush()
        self.db.expire(cluster, ['members'])

        cluster = self.refresh_appearance_count(cluster, commit=False)
        self.db.commit()

        if cluster is None:
            return RemoveFaceResult(cluster_id=cluster_id, cluster_deleted=True, remaining_faces=0)
        return RemoveFaceResult(
            cluster_id=cluster_id,
            cluster_deleted=False,
            remaining_faces=cluster.appearance_count,
        )

    def delete_by_group(self, group_id: UUID, commit: bool = True) -> int:
        """Delete every cluster of a group together with its member rows."""
        clusters = self.find_by_group(group_id)
        for cluster in clusters:
            self.db.delete(cluster)
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return len(clusters)
